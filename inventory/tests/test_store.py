"""
Tests — Inventory lot store (invariant-checked writes).

@file inventory/tests/test_store.py
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from django.db import IntegrityError, transaction
from django.utils import timezone

from core.exceptions import (
    BusinessRuleViolation,
    DuplicateResourceError,
    InsufficientQuantityError,
    InvariantViolation,
    ResourceNotFoundError,
)
from inventory.models import Lot, LotStatus
from inventory.states import Deployed, InStock, Reserved, state_of
from inventory.store import LotStore, check_invariants, to_lot_id, to_money, to_quantity
from tests.factories import (
    DeployedLotFactory,
    LotFactory,
    ProductFactory,
    SerializedProductFactory,
    UserFactory,
)


pytestmark = pytest.mark.django_db


class TestQuantityParsing:

    def test_accepts_two_decimal_places(self):
        assert to_quantity('12.50') == Decimal('12.50')
        assert to_quantity(3) == Decimal('3')

    def test_rejects_three_decimal_places(self):
        with pytest.raises(BusinessRuleViolation):
            to_quantity('1.234')

    def test_rejects_non_numbers(self):
        for value in ('abc', 'NaN', 'Infinity', None):
            with pytest.raises(BusinessRuleViolation):
                to_quantity(value)

    def test_money_is_quantized_and_non_negative(self):
        assert to_money('5') == Decimal('5.00')
        with pytest.raises(BusinessRuleViolation):
            to_money('-0.01')

    def test_rejects_values_beyond_column_precision(self):
        assert to_quantity('9999999999.99') == Decimal('9999999999.99')
        assert to_money('999999999999.99') == Decimal('999999999999.99')
        for value in ('10000000000', '1e11', '-10000000000'):
            with pytest.raises(BusinessRuleViolation):
                to_quantity(value)
        with pytest.raises(BusinessRuleViolation):
            to_money('1000000000000')


class TestCheckInvariants:

    def _lot(self, **kwargs):
        fields = {
            'product': ProductFactory(),
            'quantity': Decimal('5'),
            'unit_cost': Decimal('10.00'),
            'status': LotStatus.IN_STOCK,
        }
        fields.update(kwargs)
        return Lot(**fields)

    def test_valid_in_stock_lot(self):
        check_invariants(self._lot())

    def test_negative_quantity(self):
        with pytest.raises(InvariantViolation):
            check_invariants(self._lot(quantity=Decimal('-1')))

    def test_zero_quantity_only_when_deleted(self):
        with pytest.raises(InvariantViolation):
            check_invariants(self._lot(quantity=Decimal('0')))
        check_invariants(self._lot(quantity=Decimal('0'), is_deleted=True))

    def test_serial_requires_single_unit(self):
        with pytest.raises(InvariantViolation):
            check_invariants(self._lot(serial_number='SN-1', quantity=Decimal('2')))
        check_invariants(self._lot(serial_number='SN-1', quantity=Decimal('1')))

    def test_deployed_requires_site(self):
        now = timezone.now()
        lot = self._lot(status=LotStatus.DEPLOYED, warranty_start=now, warranty_end=now + timedelta(days=365))
        with pytest.raises(InvariantViolation):
            check_invariants(lot)

    def test_reserved_requires_document(self):
        with pytest.raises(InvariantViolation):
            check_invariants(self._lot(status=LotStatus.RESERVED))

    def test_in_stock_cannot_carry_site(self):
        with pytest.raises(InvariantViolation):
            check_invariants(self._lot(site_id=uuid.uuid4()))

    def test_fresh_deployment_warranty_must_match_product(self):
        now = timezone.now()
        lot = self._lot(
            status=LotStatus.DEPLOYED, site_id=uuid.uuid4(),
            warranty_start=now, warranty_end=now + timedelta(days=30),
        )
        with pytest.raises(InvariantViolation):
            check_invariants(lot, previous=InStock())
        lot.warranty_end = now + lot.product.warranty_period
        check_invariants(lot, previous=InStock())


class TestCreateLot:

    def test_create_in_stock_lot(self):
        product = ProductFactory()
        user = UserFactory()
        lot = LotStore.create_lot(product=product, quantity='10', unit_cost='5', actor=user)
        lot.refresh_from_db()
        assert lot.quantity == Decimal('10')
        assert lot.unit_cost == Decimal('5.00')
        assert lot.status == LotStatus.IN_STOCK
        assert lot.created_by == user
        assert isinstance(state_of(lot), InStock)

    def test_create_reserved_lot(self):
        document_id = uuid.uuid4()
        lot = LotStore.create_lot(
            product=ProductFactory(), quantity=2, unit_cost=1,
            state=Reserved(document_id=document_id),
        )
        assert lot.status == LotStatus.RESERVED
        assert lot.reserved_for_document_id == document_id
        assert lot.site_id is None

    def test_create_deployed_with_wrong_warranty_raises(self):
        product = ProductFactory(warranty_days=365)
        now = timezone.now()
        state = Deployed(site_id=uuid.uuid4(), warranty_start=now, warranty_end=now + timedelta(days=1))
        with pytest.raises(InvariantViolation):
            LotStore.create_lot(product=product, quantity=1, unit_cost=1, state=state)
        assert not Lot.objects.filter(product=product).exists()

    def test_blank_serial_is_stored_as_null(self):
        lot = LotStore.create_lot(product=ProductFactory(), quantity=3, unit_cost=1, serial_number='   ')
        assert lot.serial_number is None

    def test_duplicate_serial_same_product_raises(self):
        product = SerializedProductFactory()
        LotStore.create_lot(product=product, quantity=1, unit_cost=1, serial_number='SN-001')
        with pytest.raises(DuplicateResourceError):
            LotStore.create_lot(product=product, quantity=1, unit_cost=1, serial_number='SN-001')

    def test_same_serial_on_other_product_is_allowed(self):
        LotStore.create_lot(product=SerializedProductFactory(), quantity=1, unit_cost=1, serial_number='SN-001')
        lot = LotStore.create_lot(
            product=SerializedProductFactory(), quantity=1, unit_cost=1, serial_number='SN-001',
        )
        assert lot.serial_number == 'SN-001'


class TestUpdateLot:

    def test_patch_unit_cost(self):
        lot = LotFactory()
        LotStore.update_lot(lot, unit_cost='7.5')
        lot.refresh_from_db()
        assert lot.unit_cost == Decimal('7.50')

    def test_update_by_id_loads_the_lot(self):
        lot = LotFactory(quantity=Decimal('4'))
        updated = LotStore.update_lot(lot.pk, quantity=3)
        assert updated.pk == lot.pk
        assert Lot.objects.get(pk=lot.pk).quantity == Decimal('3')

    def test_immutable_fields_rejected(self):
        lot = LotFactory()
        for field, value in (
            ('product', ProductFactory()),
            ('source_lot', LotFactory()),
            ('created_at', timezone.now()),
        ):
            with pytest.raises(BusinessRuleViolation):
                LotStore.update_lot(lot, **{field: value})

    def test_unknown_field_rejected(self):
        with pytest.raises(BusinessRuleViolation):
            LotStore.update_lot(LotFactory(), colour='red')

    def test_zero_quantity_soft_deletes(self):
        lot = LotFactory(quantity=Decimal('2'))
        LotStore.update_lot(lot, quantity=0)
        row = Lot.objects.get(pk=lot.pk)
        assert row.is_deleted
        assert row.deleted_at is not None
        with pytest.raises(ResourceNotFoundError):
            LotStore.get_lot(lot.pk)

    def test_failed_check_restores_instance(self):
        lot = LotFactory(quantity=Decimal('10'))
        with pytest.raises(InvariantViolation):
            LotStore.update_lot(lot, serial_number='SN-9')
        assert lot.serial_number is None
        assert Lot.objects.get(pk=lot.pk).serial_number is None

    def test_state_change_clears_companions(self):
        lot = LotFactory()
        document_id = uuid.uuid4()
        LotStore.update_lot(lot, state=Reserved(document_id=document_id))
        assert lot.reserved_for_document_id == document_id
        LotStore.update_lot(lot, state=InStock())
        lot.refresh_from_db()
        assert lot.status == LotStatus.IN_STOCK
        assert lot.reserved_for_document_id is None

    def test_deployed_warranty_window_cannot_change(self):
        lot = DeployedLotFactory()
        with pytest.raises(InvariantViolation):
            LotStore.update_lot(lot, warranty_end=lot.warranty_end + timedelta(days=10))

    def test_serial_clash_on_update(self):
        product = SerializedProductFactory()
        LotFactory(product=product, quantity=Decimal('1'), serial_number='SN-7')
        other = LotFactory(product=product, quantity=Decimal('1'))
        with pytest.raises(DuplicateResourceError):
            LotStore.update_lot(other, serial_number='SN-7')


class TestDecrement:

    def test_decrement_leaves_remainder(self):
        lot = LotFactory(quantity=Decimal('10'))
        LotStore.decrement(lot, Decimal('4'))
        assert lot.quantity == Decimal('6')
        assert Lot.objects.get(pk=lot.pk).quantity == Decimal('6')

    def test_decrement_whole_quantity_refused(self):
        lot = LotFactory(quantity=Decimal('3'))
        with pytest.raises(InsufficientQuantityError):
            LotStore.decrement(lot, Decimal('3'))

    def test_decrement_against_stale_quantity(self):
        lot = LotFactory(quantity=Decimal('10'))
        # Another writer took most of the lot after we read it.
        Lot.objects.filter(pk=lot.pk).update(quantity=Decimal('2'))
        with pytest.raises(InsufficientQuantityError) as exc_info:
            LotStore.decrement(lot, Decimal('3'))
        assert exc_info.value.available == Decimal('2')
        assert Lot.objects.get(pk=lot.pk).quantity == Decimal('2')


class TestReads:

    def test_get_lot_invalid_id(self):
        with pytest.raises(ResourceNotFoundError):
            LotStore.get_lot('not-a-uuid')
        with pytest.raises(ResourceNotFoundError):
            LotStore.get_lot(uuid.uuid4())

    def test_lock_lots_missing_id(self):
        lot = LotFactory()
        with pytest.raises(ResourceNotFoundError):
            LotStore.lock_lots([lot.pk, uuid.uuid4()])

    def test_lock_lots_keyed_by_id(self):
        lots = LotFactory.create_batch(3)
        locked = LotStore.lock_lots([lot.pk for lot in lots])
        assert set(locked) == {lot.pk for lot in lots}

    def test_lock_lots_accepts_any_uuid_spelling(self):
        lot = LotFactory()
        locked = LotStore.lock_lots([str(lot.pk).upper(), lot.pk.hex])
        assert list(locked) == [lot.pk]
        assert locked[lot.pk] == lot

    def test_to_lot_id(self):
        lot_id = uuid.uuid4()
        assert to_lot_id(str(lot_id).upper()) == lot_id
        assert to_lot_id(lot_id.hex) == lot_id
        assert to_lot_id(lot_id) is lot_id
        for value in ('not-a-uuid', None, 42):
            with pytest.raises(ResourceNotFoundError):
                to_lot_id(value)

    def test_list_lots_filters(self):
        product = ProductFactory()
        LotFactory(product=product)
        deployed = DeployedLotFactory(product=product)
        LotFactory(product=product, is_deleted=True)
        LotFactory()
        assert LotStore.list_lots(product_id=product.pk).count() == 2
        assert list(LotStore.list_lots(site_id=deployed.site_id)) == [deployed]
        assert LotStore.list_lots(product_id=product.pk, include_deleted=True).count() == 3

    def test_soft_delete(self):
        lot = LotFactory()
        LotStore.soft_delete(lot.pk)
        assert Lot.objects.get(pk=lot.pk).is_deleted


class TestDatabaseConstraints:

    def test_active_lot_with_zero_quantity_rejected(self):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                LotFactory(quantity=Decimal('0'))

    def test_serial_with_quantity_above_one_rejected(self):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                LotFactory(quantity=Decimal('2'), serial_number='SN-X')

    def test_deployed_without_site_rejected(self):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                LotFactory(status=LotStatus.DEPLOYED)
