"""
Tests — Inventory service layer (lot lifecycle operations).

@file inventory/tests/test_services.py
"""

import logging
import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.db.models import Sum

from core.exceptions import (
    BusinessRuleViolation,
    DuplicateResourceError,
    InsufficientQuantityError,
    InvalidStateTransition,
    MissingSerialNumbers,
    ResourceNotFoundError,
)
from core.models import AuditLog
from inventory.history import HistoryService
from inventory.models import HistoryEntry, Lot, LotStatus, ReplacementReason, ReturnReason
from inventory.services import (
    DeploymentRequest,
    DeploymentService,
    LotCorrectionService,
    ReceptionService,
    ReplacementService,
    ReturnService,
    ScrapService,
    StockQueryService,
)
from tests.factories import (
    DeployedLotFactory,
    LotFactory,
    ProductFactory,
    ReservedLotFactory,
    SerializedProductFactory,
    UserFactory,
)


pytestmark = pytest.mark.django_db

Action = HistoryEntry.ActionType


def _total(product) -> Decimal:
    """Quantity held by all active lots of a product, whatever their state."""
    return (
        Lot.objects
        .filter(product=product, is_deleted=False)
        .aggregate(total=Sum('quantity'))['total'] or Decimal('0')
    )


def _receive(product, quantity, **kwargs):
    kwargs.setdefault('unit_cost', '5.00')
    return ReceptionService.receive(product_id=product.pk, quantity=quantity, **kwargs)


# ---------------------------------------------------------------------------
# Reception
# ---------------------------------------------------------------------------

class TestReceive:

    def test_receive_single_lot(self):
        product = ProductFactory()
        user = UserFactory()
        lots = _receive(product, 10, actor=user)
        assert len(lots) == 1
        lot = lots[0]
        assert lot.quantity == Decimal('10')
        assert lot.unit_cost == Decimal('5.00')
        assert lot.status == LotStatus.IN_STOCK
        entries = list(HistoryService.for_lot(lot.pk))
        assert [e.action_type for e in entries] == [Action.RECEIVE]
        assert entries[0].quantity == Decimal('10')
        assert entries[0].actor == user

    def test_receive_split_into_units(self):
        product = SerializedProductFactory()
        lots = _receive(product, 4, split_into_units=True)
        assert len(lots) == 4
        assert all(lot.quantity == 1 and lot.serial_number is None for lot in lots)
        assert HistoryEntry.objects.filter(lot__product=product, action_type=Action.RECEIVE).count() == 4
        assert len({lot.created_at for lot in lots}) == 1

    def test_receive_fractional_quantity(self):
        product = ProductFactory(unit='m')
        lot = _receive(product, '152.50')[0]
        assert lot.quantity == Decimal('152.50')

    def test_split_fractional_quantity_rejected(self):
        with pytest.raises(BusinessRuleViolation):
            _receive(ProductFactory(), '2.5', split_into_units=True)

    def test_serial_with_split_rejected(self):
        with pytest.raises(BusinessRuleViolation):
            _receive(SerializedProductFactory(), 1, serial_number='SN-1', split_into_units=True)

    def test_serial_requires_quantity_one(self):
        with pytest.raises(BusinessRuleViolation):
            _receive(SerializedProductFactory(), 2, serial_number='SN-1')

    def test_serial_on_untracked_product_rejected(self):
        with pytest.raises(BusinessRuleViolation):
            _receive(ProductFactory(), 1, serial_number='SN-1')

    def test_duplicate_serial_rejected(self):
        product = SerializedProductFactory()
        _receive(product, 1, serial_number='SN-1')
        with pytest.raises(DuplicateResourceError):
            _receive(product, 1, serial_number='SN-1')

    def test_non_positive_quantity_rejected(self):
        for quantity in (0, -3):
            with pytest.raises(BusinessRuleViolation):
                _receive(ProductFactory(), quantity)

    def test_negative_cost_rejected(self):
        with pytest.raises(BusinessRuleViolation):
            _receive(ProductFactory(), 1, unit_cost='-1')

    def test_archived_product_rejected(self):
        product = ProductFactory(is_archived=True)
        with pytest.raises(ResourceNotFoundError):
            _receive(product, 1)

    def test_quantity_beyond_column_precision_rejected(self):
        product = ProductFactory()
        with pytest.raises(BusinessRuleViolation):
            _receive(product, Decimal('100000000000'))
        with pytest.raises(BusinessRuleViolation):
            _receive(product, 1, unit_cost=Decimal('1000000000000'))
        assert not Lot.objects.filter(product=product).exists()
        assert not HistoryEntry.objects.filter(lot__product=product).exists()

    def test_unknown_product_rejected(self):
        with pytest.raises(ResourceNotFoundError):
            ReceptionService.receive(product_id=uuid.uuid4(), quantity=1, unit_cost=1)


# ---------------------------------------------------------------------------
# Deployment
# ---------------------------------------------------------------------------

class TestDeploy:

    def test_partial_deploy_splits_lot(self, site_id):
        product = ProductFactory(warranty_days=730)
        stock = _receive(product, 10)[0]
        deployed = DeploymentService.deploy(lot_id=stock.pk, quantity=4, site_id=site_id)

        stock.refresh_from_db()
        assert stock.quantity == Decimal('6')
        assert stock.status == LotStatus.IN_STOCK
        assert deployed.pk != stock.pk
        assert deployed.quantity == Decimal('4')
        assert deployed.status == LotStatus.DEPLOYED
        assert deployed.site_id == site_id
        assert deployed.source_lot_id == stock.pk
        assert deployed.unit_cost == stock.unit_cost
        assert deployed.warranty_end - deployed.warranty_start == timedelta(days=730)

        assert [e.action_type for e in HistoryService.for_lot(stock.pk)] == [Action.RECEIVE]
        entries = list(HistoryService.for_lot(deployed.pk))
        assert [e.action_type for e in entries] == [Action.DEPLOY]
        assert entries[0].to_site_id == site_id
        assert entries[0].source_lot_id == stock.pk
        assert _total(product) == Decimal('10')

    def test_full_deploy_keeps_lot(self, site_id):
        stock = _receive(ProductFactory(), 3)[0]
        deployed = DeploymentService.deploy(lot_id=stock.pk, quantity=3, site_id=site_id)
        assert deployed.pk == stock.pk
        assert Lot.objects.filter(product=stock.product).count() == 1
        assert [e.action_type for e in HistoryService.for_lot(stock.pk)] == [Action.RECEIVE, Action.DEPLOY]

    def test_deploy_with_serial(self, site_id):
        product = SerializedProductFactory()
        stock = _receive(product, 3)[0]
        deployed = DeploymentService.deploy(lot_id=stock.pk, quantity=1, site_id=site_id, serial_number='SN-42')
        assert deployed.serial_number == 'SN-42'
        assert deployed.quantity == Decimal('1')

    def test_deploy_more_than_lot_holds(self, site_id):
        stock = _receive(ProductFactory(), 2)[0]
        with pytest.raises(InsufficientQuantityError):
            DeploymentService.deploy(lot_id=stock.pk, quantity=3, site_id=site_id)

    def test_deploy_reserved_lot_rejected(self, site_id):
        lot = ReservedLotFactory()
        with pytest.raises(InvalidStateTransition):
            DeploymentService.deploy(lot_id=lot.pk, quantity=1, site_id=site_id)

    def test_deploy_requires_site(self):
        stock = _receive(ProductFactory(), 2)[0]
        with pytest.raises(BusinessRuleViolation):
            DeploymentService.deploy(lot_id=stock.pk, quantity=1, site_id=None)


class TestDeployBatch:

    def test_serialized_line_gets_one_lot_per_serial(self, site_id):
        product = SerializedProductFactory()
        stock = _receive(product, 5)[0]
        result = DeploymentService.deploy_batch(
            items=[DeploymentRequest(lot_id=stock.pk, quantity=Decimal('2'), serials=('SN-1', 'SN-2'))],
            site_id=site_id,
        )
        assert len(result.deployed_lot_ids) == 2
        deployed = Lot.objects.filter(pk__in=result.deployed_lot_ids)
        assert {lot.serial_number for lot in deployed} == {'SN-1', 'SN-2'}
        assert all(lot.quantity == 1 and lot.site_id == site_id for lot in deployed)
        stock.refresh_from_db()
        assert stock.quantity == Decimal('3')

    def test_entries_share_shipment(self, site_id):
        first = _receive(ProductFactory(), 4)[0]
        second = _receive(ProductFactory(), 2)[0]
        result = DeploymentService.deploy_batch(
            items=[
                DeploymentRequest(lot_id=first.pk, quantity=Decimal('1')),
                DeploymentRequest(lot_id=second.pk, quantity=Decimal('2')),
            ],
            site_id=site_id,
        )
        entries = HistoryEntry.objects.filter(shipment_id=result.shipment_id)
        assert entries.count() == 2
        assert {e.to_site_id for e in entries} == {site_id}
        assert len({e.created_at for e in entries}) == 1

    def test_missing_serials_raise_before_any_write(self, site_id):
        product = SerializedProductFactory()
        stock = _receive(product, 3)[0]
        before = HistoryEntry.objects.count()
        with pytest.raises(MissingSerialNumbers) as exc_info:
            DeploymentService.deploy_batch(
                items=[DeploymentRequest(lot_id=stock.pk, quantity=Decimal('3'), serials=('SN-1',))],
                site_id=site_id,
            )
        assert exc_info.value.lots == {stock.pk: (Decimal('3'), 1)}
        assert HistoryEntry.objects.count() == before
        assert Lot.objects.get(pk=stock.pk).quantity == Decimal('3')

    def test_missing_serials_confirmed(self, site_id, caplog):
        product = SerializedProductFactory()
        stock = _receive(product, 3)[0]
        with caplog.at_level(logging.WARNING, logger='installstock'):
            result = DeploymentService.deploy_batch(
                items=[DeploymentRequest(lot_id=stock.pk, quantity=Decimal('3'), serials=('SN-1',))],
                site_id=site_id,
                allow_missing_serials=True,
            )
        deployed = Lot.objects.filter(pk__in=result.deployed_lot_ids)
        assert sorted((lot.quantity, lot.serial_number or '') for lot in deployed) == [
            (Decimal('1'), 'SN-1'),
            (Decimal('2'), ''),
        ]
        assert 'without serial numbers' in caplog.text
        assert _total(product) == Decimal('3')

    def test_lot_id_spelling_is_normalised(self, site_id):
        stock = _receive(ProductFactory(), 5)[0]
        result = DeploymentService.deploy_batch(
            items=[DeploymentRequest(lot_id=str(stock.pk).upper(), quantity=Decimal('2'))],
            site_id=site_id,
        )
        assert len(result.deployed_lot_ids) == 1
        assert Lot.objects.get(pk=stock.pk).quantity == Decimal('3')

    def test_same_lot_in_two_spellings_rejected(self, site_id):
        stock = _receive(ProductFactory(), 5)[0]
        with pytest.raises(BusinessRuleViolation):
            DeploymentService.deploy_batch(
                items=[
                    DeploymentRequest(lot_id=str(stock.pk), quantity=Decimal('1')),
                    DeploymentRequest(lot_id=stock.pk.hex, quantity=Decimal('1')),
                ],
                site_id=site_id,
            )
        assert Lot.objects.get(pk=stock.pk).quantity == Decimal('5')

    def test_duplicate_serial_in_shipment(self, site_id):
        product = SerializedProductFactory()
        first = _receive(product, 1)[0]
        second = _receive(product, 1)[0]
        with pytest.raises(BusinessRuleViolation):
            DeploymentService.deploy_batch(
                items=[
                    DeploymentRequest(lot_id=first.pk, quantity=Decimal('1'), serials=('SN-1',)),
                    DeploymentRequest(lot_id=second.pk, quantity=Decimal('1'), serials=('SN-1',)),
                ],
                site_id=site_id,
            )

    def test_serial_already_in_use(self, site_id):
        product = SerializedProductFactory()
        _receive(product, 1, serial_number='SN-1')
        stock = _receive(product, 2)[0]
        with pytest.raises(DuplicateResourceError):
            DeploymentService.deploy_batch(
                items=[DeploymentRequest(lot_id=stock.pk, quantity=Decimal('1'), serials=('SN-1',))],
                site_id=site_id,
            )

    def test_same_lot_twice_rejected(self, site_id):
        stock = _receive(ProductFactory(), 4)[0]
        with pytest.raises(BusinessRuleViolation):
            DeploymentService.deploy_batch(
                items=[
                    DeploymentRequest(lot_id=stock.pk, quantity=Decimal('1')),
                    DeploymentRequest(lot_id=stock.pk, quantity=Decimal('1')),
                ],
                site_id=site_id,
            )

    def test_invalid_line_aborts_whole_shipment(self, site_id):
        good = _receive(ProductFactory(), 4)[0]
        short = _receive(ProductFactory(), 1)[0]
        with pytest.raises(InsufficientQuantityError):
            DeploymentService.deploy_batch(
                items=[
                    DeploymentRequest(lot_id=good.pk, quantity=Decimal('2')),
                    DeploymentRequest(lot_id=short.pk, quantity=Decimal('5')),
                ],
                site_id=site_id,
            )
        assert Lot.objects.get(pk=good.pk).quantity == Decimal('4')
        assert not HistoryEntry.objects.filter(action_type=Action.DEPLOY).exists()

    def test_rollback_when_history_write_fails(self, site_id):
        """A failure half-way through a shipment leaves no trace."""
        first = _receive(ProductFactory(), 4)[0]
        second = _receive(ProductFactory(), 4)[0]
        before_entries = HistoryEntry.objects.count()
        before_lots = Lot.objects.count()

        real_record = HistoryService.record
        calls = []

        def flaky_record(**kwargs):
            calls.append(kwargs)
            if len(calls) == 2:
                raise RuntimeError('simulated failure')
            return real_record(**kwargs)

        with patch.object(HistoryService, 'record', side_effect=flaky_record):
            with pytest.raises(RuntimeError, match='simulated failure'):
                DeploymentService.deploy_batch(
                    items=[
                        DeploymentRequest(lot_id=first.pk, quantity=Decimal('1')),
                        DeploymentRequest(lot_id=second.pk, quantity=Decimal('1')),
                    ],
                    site_id=site_id,
                )

        assert HistoryEntry.objects.count() == before_entries
        assert Lot.objects.count() == before_lots
        assert Lot.objects.get(pk=first.pk).quantity == Decimal('4')
        assert Lot.objects.get(pk=second.pk).quantity == Decimal('4')


# ---------------------------------------------------------------------------
# Return / Replacement / Scrap
# ---------------------------------------------------------------------------

class TestReturn:

    def test_return_serialized_unit(self, site_id):
        product = SerializedProductFactory()
        stock = _receive(product, 1, serial_number='SN-001')[0]
        deployed = DeploymentService.deploy(lot_id=stock.pk, quantity=1, site_id=site_id)
        returned = ReturnService.return_to_stock(
            lot_id=deployed.pk, quantity=1, reason=ReturnReason.SURPLUS,
        )
        assert returned.pk == stock.pk
        assert returned.status == LotStatus.IN_STOCK
        assert returned.serial_number == 'SN-001'
        assert returned.site_id is None
        entries = list(HistoryService.for_lot(stock.pk))
        assert [e.action_type for e in entries] == [Action.RECEIVE, Action.DEPLOY, Action.RETURN]
        assert entries[-1].from_site_id == site_id
        assert entries[-1].comment == 'Surplus'

    def test_partial_return(self, site_id):
        product = ProductFactory()
        stock = _receive(product, 10)[0]
        deployed = DeploymentService.deploy(lot_id=stock.pk, quantity=6, site_id=site_id)
        returned = ReturnService.return_to_stock(
            lot_id=deployed.pk, quantity=2, reason=ReturnReason.WRONG_ITEM, comment='wrong colour',
        )
        deployed.refresh_from_db()
        assert deployed.quantity == Decimal('4')
        assert deployed.status == LotStatus.DEPLOYED
        assert returned.quantity == Decimal('2')
        assert returned.source_lot_id == deployed.pk
        entry = HistoryService.for_lot(returned.pk).get()
        assert entry.comment == 'Wrong item: wrong colour'
        assert _total(product) == Decimal('10')

    def test_return_in_stock_lot_rejected(self):
        with pytest.raises(InvalidStateTransition):
            ReturnService.return_to_stock(lot_id=LotFactory().pk, quantity=1, reason=ReturnReason.SURPLUS)

    def test_unknown_reason_rejected(self):
        with pytest.raises(BusinessRuleViolation):
            ReturnService.return_to_stock(lot_id=DeployedLotFactory().pk, quantity=1, reason='lost')

    def test_redeploy_opens_fresh_warranty(self, site_id):
        stock = _receive(ProductFactory(), 1)[0]
        first = DeploymentService.deploy(lot_id=stock.pk, quantity=1, site_id=site_id)
        first_end = first.warranty_end
        ReturnService.return_to_stock(lot_id=first.pk, quantity=1, reason=ReturnReason.CANCELLATION)
        other_site = uuid.uuid4()
        again = DeploymentService.deploy(lot_id=stock.pk, quantity=1, site_id=other_site)
        assert again.site_id == other_site
        assert again.warranty_end >= first_end


class TestReplace:

    def test_replace_partial_deployment(self, site_id):
        old_product = ProductFactory(warranty_days=365)
        new_product = ProductFactory(name='Hub v2', warranty_days=730)
        old_stock = _receive(old_product, 5)[0]
        old_deployed = DeploymentService.deploy(lot_id=old_stock.pk, quantity=5, site_id=site_id)
        new_stock = _receive(new_product, 6)[0]

        result = ReplacementService.replace(
            old_lot_id=old_deployed.pk, old_quantity=2,
            new_lot_id=new_stock.pk, new_quantity=2,
            reason=ReplacementReason.DEFECT,
        )

        old_deployed.refresh_from_db()
        assert old_deployed.quantity == Decimal('3')
        assert old_deployed.status == LotStatus.DEPLOYED
        assert result.scrapped_lot.status == LotStatus.SCRAPPED
        assert result.scrapped_lot.quantity == Decimal('2')
        assert result.deployed_lot.status == LotStatus.DEPLOYED
        assert result.deployed_lot.site_id == site_id
        assert result.deployed_lot.quantity == Decimal('2')
        assert result.deployed_lot.product == new_product
        window = result.deployed_lot.warranty_end - result.deployed_lot.warranty_start
        assert window == timedelta(days=730)
        assert result.deployed_lot.warranty_start >= old_deployed.warranty_start

        new_stock.refresh_from_db()
        assert new_stock.quantity == Decimal('4')
        scrap_entry = HistoryService.for_lot(result.scrapped_lot.pk).get()
        assert scrap_entry.action_type == Action.SCRAP
        assert scrap_entry.from_site_id == site_id
        deploy_entry = HistoryService.for_lot(result.deployed_lot.pk).get()
        assert deploy_entry.action_type == Action.DEPLOY
        assert old_product.name in deploy_entry.comment
        assert 'Defect' in deploy_entry.comment

    def test_replace_names_serial(self, site_id):
        product = SerializedProductFactory()
        old = _receive(product, 1, serial_number='SN-OLD')[0]
        DeploymentService.deploy(lot_id=old.pk, quantity=1, site_id=site_id)
        new = _receive(product, 1, serial_number='SN-NEW')[0]
        result = ReplacementService.replace(
            old_lot_id=old.pk, old_quantity=1, new_lot_id=new.pk, new_quantity=1,
            reason=ReplacementReason.DAMAGE,
        )
        assert result.scrapped_lot.pk == old.pk
        assert result.deployed_lot.serial_number == 'SN-NEW'
        comment = HistoryService.for_lot(new.pk).last().comment
        assert 'S/N SN-OLD' in comment

    def test_replace_requires_deployed_old_lot(self):
        with pytest.raises(InvalidStateTransition):
            ReplacementService.replace(
                old_lot_id=LotFactory().pk, old_quantity=1,
                new_lot_id=LotFactory().pk, new_quantity=1,
                reason=ReplacementReason.UPGRADE,
            )

    def test_replace_requires_stock_new_lot(self):
        with pytest.raises(InvalidStateTransition):
            ReplacementService.replace(
                old_lot_id=DeployedLotFactory().pk, old_quantity=1,
                new_lot_id=DeployedLotFactory().pk, new_quantity=1,
                reason=ReplacementReason.UPGRADE,
            )

    def test_replace_short_new_stock_changes_nothing(self):
        old = DeployedLotFactory(quantity=Decimal('2'))
        new = LotFactory(quantity=Decimal('1'))
        with pytest.raises(InsufficientQuantityError):
            ReplacementService.replace(
                old_lot_id=old.pk, old_quantity=2, new_lot_id=new.pk, new_quantity=2,
                reason=ReplacementReason.ERROR,
            )
        assert Lot.objects.get(pk=old.pk).status == LotStatus.DEPLOYED
        assert not HistoryEntry.objects.exists()

    def test_replace_itself_rejected(self):
        lot = DeployedLotFactory()
        with pytest.raises(BusinessRuleViolation):
            ReplacementService.replace(
                old_lot_id=lot.pk, old_quantity=1, new_lot_id=lot.pk, new_quantity=1,
                reason=ReplacementReason.DEFECT,
            )

    def test_replace_itself_in_other_spelling_rejected(self):
        lot = DeployedLotFactory()
        with pytest.raises(BusinessRuleViolation):
            ReplacementService.replace(
                old_lot_id=str(lot.pk).upper(), old_quantity=1, new_lot_id=lot.pk.hex, new_quantity=1,
                reason=ReplacementReason.DEFECT,
            )


class TestScrap:

    def test_scrap_part_of_stock(self):
        product = ProductFactory()
        stock = _receive(product, 10)[0]
        scrapped = ScrapService.scrap(lot_id=stock.pk, quantity=3, comment='water damage')
        stock.refresh_from_db()
        assert stock.quantity == Decimal('7')
        assert scrapped.status == LotStatus.SCRAPPED
        assert scrapped.quantity == Decimal('3')
        assert _total(product) == Decimal('10')

    def test_scrap_deployed_records_site(self):
        lot = DeployedLotFactory(quantity=Decimal('1'))
        site_id = lot.site_id
        ScrapService.scrap(lot_id=lot.pk, quantity=1)
        lot.refresh_from_db()
        assert lot.status == LotStatus.SCRAPPED
        assert lot.site_id is None
        assert HistoryService.for_lot(lot.pk).get().from_site_id == site_id

    def test_scrap_scrapped_lot_rejected(self):
        lot = LotFactory(status=LotStatus.SCRAPPED)
        with pytest.raises(InvalidStateTransition):
            ScrapService.scrap(lot_id=lot.pk, quantity=1)

    def test_scrap_reserved_lot_rejected(self):
        with pytest.raises(InvalidStateTransition):
            ScrapService.scrap(lot_id=ReservedLotFactory().pk, quantity=1)


# ---------------------------------------------------------------------------
# Corrections
# ---------------------------------------------------------------------------

class TestCorrect:

    def test_correct_quantity_writes_adjust_and_audit(self):
        user = UserFactory()
        stock = _receive(ProductFactory(), 10)[0]
        LotCorrectionService.correct(lot_id=stock.pk, quantity='9.5', comment='stock count', actor=user)
        stock.refresh_from_db()
        assert stock.quantity == Decimal('9.50')
        entry = HistoryService.for_lot(stock.pk).last()
        assert entry.action_type == Action.ADJUST
        assert entry.quantity == Decimal('9.50')
        assert entry.comment == 'stock count'
        audit = AuditLog.objects.get(model_name='Lot', object_id=str(stock.pk))
        assert audit.action == AuditLog.ActionChoices.UPDATE
        assert audit.old_values == {'quantity': '10.00'}
        assert audit.new_values == {'quantity': '9.50'}

    def test_correct_cost_only_has_no_history(self):
        stock = _receive(ProductFactory(), 2)[0]
        LotCorrectionService.correct(lot_id=stock.pk, unit_cost='6.25')
        stock.refresh_from_db()
        assert stock.unit_cost == Decimal('6.25')
        assert HistoryService.for_lot(stock.pk).count() == 1

    def test_correct_to_zero_closes_lot(self):
        stock = _receive(ProductFactory(), 2)[0]
        LotCorrectionService.correct(lot_id=stock.pk, quantity=0)
        assert Lot.objects.get(pk=stock.pk).is_deleted

    def test_correct_without_change_is_noop(self):
        stock = _receive(ProductFactory(), 2)[0]
        LotCorrectionService.correct(lot_id=stock.pk, quantity=2)
        assert not AuditLog.objects.filter(model_name='Lot').exists()

    def test_correct_deployed_rejected(self):
        with pytest.raises(InvalidStateTransition):
            LotCorrectionService.correct(lot_id=DeployedLotFactory().pk, quantity=1)


class TestAssignSerial:

    def test_assign_on_single_unit_in_place(self, site_id):
        product = SerializedProductFactory()
        stock = _receive(product, 1)[0]
        lot = LotCorrectionService.assign_serial(lot_id=stock.pk, serial_number='SN-5')
        assert lot.pk == stock.pk
        assert Lot.objects.get(pk=stock.pk).serial_number == 'SN-5'

    def test_assign_splits_deployed_unserialized_lot(self, site_id):
        product = SerializedProductFactory()
        stock = _receive(product, 3)[0]
        result = DeploymentService.deploy_batch(
            items=[DeploymentRequest(lot_id=stock.pk, quantity=Decimal('3'))],
            site_id=site_id,
            allow_missing_serials=True,
        )
        deployed = Lot.objects.get(pk=result.deployed_lot_ids[0])
        unit = LotCorrectionService.assign_serial(lot_id=deployed.pk, serial_number='SN-LATE')
        deployed.refresh_from_db()
        assert deployed.quantity == Decimal('2')
        assert unit.serial_number == 'SN-LATE'
        assert unit.status == LotStatus.DEPLOYED
        assert unit.site_id == site_id
        assert (unit.warranty_start, unit.warranty_end) == (deployed.warranty_start, deployed.warranty_end)
        entry = HistoryService.for_lot(unit.pk).get()
        assert entry.action_type == Action.ADJUST
        assert entry.source_lot_id == deployed.pk

    def test_assign_on_untracked_product_rejected(self):
        with pytest.raises(BusinessRuleViolation):
            LotCorrectionService.assign_serial(lot_id=LotFactory().pk, serial_number='SN-1')

    def test_assign_twice_rejected(self):
        lot = LotFactory(product=SerializedProductFactory(), quantity=Decimal('1'), serial_number='SN-1')
        with pytest.raises(BusinessRuleViolation):
            LotCorrectionService.assign_serial(lot_id=lot.pk, serial_number='SN-2')

    def test_assign_serial_in_use(self):
        product = SerializedProductFactory()
        LotFactory(product=product, quantity=Decimal('1'), serial_number='SN-1')
        lot = LotFactory(product=product, quantity=Decimal('2'))
        with pytest.raises(DuplicateResourceError):
            LotCorrectionService.assign_serial(lot_id=lot.pk, serial_number='SN-1')


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

class TestStockQueries:

    def test_availability(self, document_id):
        product = ProductFactory()
        LotFactory(product=product, quantity=Decimal('10'))
        LotFactory(product=product, quantity=Decimal('2.5'))
        ReservedLotFactory(product=product, quantity=Decimal('4'), reserved_for_document_id=document_id)
        ReservedLotFactory(product=product, quantity=Decimal('7'))
        DeployedLotFactory(product=product)
        empty = ProductFactory()

        rows = StockQueryService.availability(product_ids=[product.pk, empty.pk], document_id=document_id)
        assert rows[0].product_id == product.pk
        assert rows[0].free == Decimal('12.5')
        assert rows[0].reserved == Decimal('4')
        assert rows[0].total == Decimal('16.5')
        assert rows[1].free == Decimal('0')
        assert rows[1].reserved == Decimal('0')

    def test_availability_without_document(self):
        product = ProductFactory()
        ReservedLotFactory(product=product, quantity=Decimal('4'))
        row = StockQueryService.availability(product_ids=[product.pk])[0]
        assert row.reserved == Decimal('0')
        assert row.free == Decimal('0')

    def test_low_stock_products(self):
        low = ProductFactory(stock_min_level=Decimal('5'))
        LotFactory(product=low, quantity=Decimal('3'))
        DeployedLotFactory(product=low, quantity=Decimal('10'))
        ok = ProductFactory(stock_min_level=Decimal('5'))
        LotFactory(product=ok, quantity=Decimal('5'))
        empty = ProductFactory(stock_min_level=Decimal('1'))
        ProductFactory(stock_min_level=Decimal('0'))
        ProductFactory(stock_min_level=Decimal('5'), is_archived=True)

        products = list(StockQueryService.low_stock_products())
        assert {p.pk for p in products} == {low.pk, empty.pk}
        free = {p.pk: p.free_stock for p in products}
        assert free[low.pk] == Decimal('3')
        assert free[empty.pk] == Decimal('0')


# ---------------------------------------------------------------------------
# Serial and conservation rules across a full lifecycle
# ---------------------------------------------------------------------------

class TestLifecycleInvariants:

    def test_quantity_conserved_across_operations(self, site_id):
        product = ProductFactory()
        stock = _receive(product, 20)[0]
        deployed = DeploymentService.deploy(lot_id=stock.pk, quantity=8, site_id=site_id)
        ReturnService.return_to_stock(lot_id=deployed.pk, quantity=3, reason=ReturnReason.SURPLUS)
        ScrapService.scrap(lot_id=stock.pk, quantity=2)
        replacement_stock = _receive(product, 5)[0]
        ReplacementService.replace(
            old_lot_id=deployed.pk, old_quantity=1,
            new_lot_id=replacement_stock.pk, new_quantity=1,
            reason=ReplacementReason.DEFECT,
        )
        assert _total(product) == Decimal('25')
        by_status = dict(
            Lot.objects.filter(product=product, is_deleted=False)
            .values_list('status')
            .annotate(total=Sum('quantity'))
        )
        assert by_status[LotStatus.SCRAPPED] == Decimal('3')
        assert by_status[LotStatus.DEPLOYED] == Decimal('5')
        assert by_status[LotStatus.IN_STOCK] == Decimal('17')

    def test_serialized_lots_always_hold_one_unit(self, site_id):
        product = SerializedProductFactory()
        stock = _receive(product, 4)[0]
        DeploymentService.deploy_batch(
            items=[DeploymentRequest(lot_id=stock.pk, quantity=Decimal('3'), serials=('A', 'B', 'C'))],
            site_id=site_id,
        )
        LotCorrectionService.assign_serial(lot_id=stock.pk, serial_number='D')
        serialized = Lot.objects.filter(product=product, serial_number__isnull=False, is_deleted=False)
        assert serialized.count() == 4
        assert all(lot.quantity == 1 for lot in serialized)
