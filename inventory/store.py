"""
Inventory — Lot Store

The only code path that writes Lot rows. Every create and update is
checked against the lot invariants before it reaches the database, and
the database check constraints on Lot back the same rules up.

Callers running a composite operation lock the lots they touch with
lock_lots()/get_lot(for_update=True) inside their own transaction.atomic
block; quantity decrements go through a compare-and-swap UPDATE so two
concurrent writers can never take more than a lot holds.

@file inventory/store.py
"""

import logging
import uuid
from decimal import Decimal, InvalidOperation

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import F, QuerySet
from django.utils import timezone

from core.constants import MONEY_LIMIT, MONEY_STEP, QUANTITY_LIMIT, QUANTITY_STEP
from core.exceptions import (
    BusinessRuleViolation,
    DuplicateResourceError,
    InsufficientQuantityError,
    InvariantViolation,
    ResourceNotFoundError,
)

from .models import Lot, LotStatus
from .states import Deployed, InStock, LotState, state_fields, state_of

logger = logging.getLogger('installstock')

PATCHABLE_FIELDS = frozenset({
    'quantity', 'unit_cost', 'serial_number', 'status', 'site_id',
    'reserved_for_document_id', 'warranty_start', 'warranty_end',
})
IMMUTABLE_FIELDS = frozenset({
    'id', 'pk', 'product', 'product_id', 'source_lot', 'source_lot_id', 'created_at',
})


# ---------------------------------------------------------------------------
# Input normalisation
# ---------------------------------------------------------------------------

def to_quantity(value, *, field: str = 'quantity') -> Decimal:
    """Parse a quantity (int, str, Decimal) with at most two decimal places."""
    try:
        quantity = Decimal(str(value))
        rounded = quantity.quantize(QUANTITY_STEP) if quantity.is_finite() else None
    except (InvalidOperation, TypeError, ValueError):
        raise BusinessRuleViolation(detail=f'Invalid {field}: {value!r}.')
    if rounded is None:
        raise BusinessRuleViolation(detail=f'Invalid {field}: {value!r}.')
    if quantity != rounded:
        raise BusinessRuleViolation(detail=f'{field} supports at most two decimal places.')
    if abs(rounded) >= QUANTITY_LIMIT:
        raise BusinessRuleViolation(detail=f'{field} must be below {QUANTITY_LIMIT:,.0f}.')
    return rounded


def to_positive_quantity(value, *, field: str = 'quantity') -> Decimal:
    quantity = to_quantity(value, field=field)
    if quantity <= 0:
        raise BusinessRuleViolation(detail=f'{field} must be positive.')
    return quantity


def to_money(value, *, field: str = 'unit_cost') -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise BusinessRuleViolation(detail=f'Invalid {field}: {value!r}.')
    if not amount.is_finite() or amount < 0:
        raise BusinessRuleViolation(detail=f'{field} must be zero or positive.')
    if amount >= MONEY_LIMIT:
        raise BusinessRuleViolation(detail=f'{field} must be below {MONEY_LIMIT:,.0f}.')
    return amount.quantize(MONEY_STEP)


def to_lot_id(value) -> uuid.UUID:
    """Parse a lot id in any UUID spelling; an unparseable id is an unknown lot."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise ResourceNotFoundError(detail=f'Lot {value} not found.')


def normalize_serial(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------

def check_invariants(lot: Lot, *, previous: LotState | None = None) -> None:
    """
    Raise InvariantViolation if ``lot`` (in memory, not yet saved) breaks
    a lot rule. ``previous`` is the state the row held before this write,
    or the parent's state for a lot being split off.
    """
    if lot.quantity is None or lot.quantity < 0:
        raise InvariantViolation(detail=f'Lot {lot.pk}: quantity {lot.quantity} is negative.')
    if lot.quantity == 0 and not lot.is_deleted:
        raise InvariantViolation(detail=f'Lot {lot.pk}: an active lot must hold a positive quantity.')
    if lot.unit_cost is None or lot.unit_cost < 0:
        raise InvariantViolation(detail=f'Lot {lot.pk}: unit cost must be zero or positive.')

    if lot.serial_number is not None:
        if not lot.serial_number.strip():
            raise InvariantViolation(detail=f'Lot {lot.pk}: serial number cannot be blank.')
        if lot.quantity != 1 and not lot.is_deleted:
            raise InvariantViolation(
                detail=f'Lot {lot.pk}: a serial number requires quantity 1 (quantity={lot.quantity}).',
            )

    if lot.status not in LotStatus.values:
        raise InvariantViolation(detail=f'Lot {lot.pk}: unknown status {lot.status!r}.')
    if lot.status == LotStatus.DEPLOYED:
        if lot.site_id is None:
            raise InvariantViolation(detail=f'Lot {lot.pk}: DEPLOYED requires a site.')
        if lot.reserved_for_document_id is not None:
            raise InvariantViolation(detail=f'Lot {lot.pk}: a DEPLOYED lot cannot hold a reservation.')
    elif lot.status == LotStatus.RESERVED:
        if lot.reserved_for_document_id is None:
            raise InvariantViolation(detail=f'Lot {lot.pk}: RESERVED requires a document.')
        if lot.site_id is not None:
            raise InvariantViolation(detail=f'Lot {lot.pk}: a RESERVED lot cannot carry a site.')
    elif lot.site_id is not None or lot.reserved_for_document_id is not None:
        raise InvariantViolation(
            detail=f'Lot {lot.pk}: status {lot.status} carries neither site nor reservation.',
        )

    if lot.status == LotStatus.DEPLOYED:
        _check_warranty(lot, previous)


def _check_warranty(lot: Lot, previous: LotState | None) -> None:
    if lot.warranty_start is None or lot.warranty_end is None:
        raise InvariantViolation(detail=f'Lot {lot.pk}: DEPLOYED requires a warranty window.')
    if isinstance(previous, Deployed) and previous.site_id == lot.site_id:
        if (lot.warranty_start, lot.warranty_end) != (previous.warranty_start, previous.warranty_end):
            raise InvariantViolation(
                detail=f'Lot {lot.pk}: the warranty window of a deployed lot cannot change.',
            )
        return
    expected = lot.warranty_start + lot.product.warranty_period
    if lot.warranty_end != expected:
        raise InvariantViolation(
            detail=(
                f'Lot {lot.pk}: warranty must end {expected.isoformat()} '
                f'({lot.product.warranty_days} days after deployment).'
            ),
        )


def _check_serial_unique(lot: Lot) -> None:
    if lot.serial_number is None or lot.is_deleted:
        return
    clash = (
        Lot.objects
        .filter(product_id=lot.product_id, serial_number=lot.serial_number, is_deleted=False)
        .exclude(pk=lot.pk)
        .exists()
    )
    if clash:
        raise DuplicateResourceError(
            detail=f'Serial number {lot.serial_number} is already in use for product {lot.product_id}.',
        )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class LotStore:
    """Reads and invariant-checked writes of Lot rows."""

    @staticmethod
    def get_lot(lot_id, *, for_update: bool = False) -> Lot:
        qs = Lot.objects.select_related('product')
        if for_update:
            qs = qs.select_for_update(of=('self',))
        try:
            return qs.get(pk=lot_id, is_deleted=False)
        except (Lot.DoesNotExist, DjangoValidationError, ValueError):
            raise ResourceNotFoundError(detail=f'Lot {lot_id} not found.')

    @staticmethod
    def lock_lots(lot_ids) -> dict:
        """
        Lock several lots in primary-key order (so concurrent batches
        cannot deadlock) and return them keyed by UUID (see to_lot_id).
        """
        wanted = {to_lot_id(lot_id) for lot_id in lot_ids}
        lots = list(
            Lot.objects
            .select_related('product')
            .select_for_update(of=('self',))
            .filter(pk__in=wanted, is_deleted=False)
            .order_by('pk')
        )
        found = {lot.pk: lot for lot in lots}
        missing = wanted - set(found)
        if missing:
            raise ResourceNotFoundError(detail=f'Lot {sorted(missing)[0]} not found.')
        return found

    @staticmethod
    def list_lots(
        *,
        product_id=None,
        status: str | None = None,
        site_id=None,
        document_id=None,
        serial_number: str | None = None,
        include_deleted: bool = False,
    ) -> QuerySet:
        qs = Lot.objects.select_related('product')
        if not include_deleted:
            qs = qs.filter(is_deleted=False)
        if product_id is not None:
            qs = qs.filter(product_id=product_id)
        if status is not None:
            qs = qs.filter(status=status)
        if site_id is not None:
            qs = qs.filter(site_id=site_id)
        if document_id is not None:
            qs = qs.filter(reserved_for_document_id=document_id)
        if serial_number is not None:
            qs = qs.filter(serial_number=serial_number)
        return qs.order_by('created_at', 'id')

    @staticmethod
    def create_lot(
        *,
        product,
        quantity,
        unit_cost,
        state: LotState | None = None,
        serial_number: str | None = None,
        source_lot: Lot | None = None,
        actor=None,
        created_at=None,
    ) -> Lot:
        state = state or InStock()
        lot = Lot(
            product=product,
            quantity=to_quantity(quantity),
            unit_cost=to_money(unit_cost),
            serial_number=normalize_serial(serial_number),
            source_lot=source_lot,
            created_by=actor,
            updated_by=actor,
            **state_fields(state),
        )
        if created_at is not None:
            lot.created_at = created_at
        previous = state_of(source_lot) if source_lot is not None else None
        check_invariants(lot, previous=previous)
        _check_serial_unique(lot)
        lot.save(force_insert=True)
        logger.debug(
            'Lot %s created: product=%s qty=%s status=%s source=%s',
            lot.pk, product.pk, lot.quantity, lot.status, getattr(source_lot, 'pk', None),
        )
        return lot

    @staticmethod
    def update_lot(lot, *, actor=None, state: LotState | None = None, **patch) -> Lot:
        """
        Apply a patch to a lot. ``lot`` is either a Lot the caller has
        already locked or a lot id, which is then loaded under lock.
        Setting quantity to zero ends the lot (soft delete).
        """
        blocked = set(patch) & IMMUTABLE_FIELDS
        if blocked:
            raise BusinessRuleViolation(detail=f'Cannot modify immutable lot field: {sorted(blocked)[0]}.')
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise BusinessRuleViolation(detail=f'Unknown lot field: {sorted(unknown)[0]}.')

        if not isinstance(lot, Lot):
            lot = LotStore.get_lot(lot, for_update=True)

        changes = dict(patch)
        if state is not None:
            changes.update(state_fields(state))
        if 'quantity' in changes:
            changes['quantity'] = to_quantity(changes['quantity'])
        if 'unit_cost' in changes:
            changes['unit_cost'] = to_money(changes['unit_cost'])
        if 'serial_number' in changes:
            changes['serial_number'] = normalize_serial(changes['serial_number'])
        if changes.get('quantity') == 0:
            changes.update(is_deleted=True, deleted_at=timezone.now(), deleted_by=actor)
        changes['updated_by'] = actor

        previous = state_of(lot)
        old_values = {field: getattr(lot, field) for field in changes}
        for field, value in changes.items():
            setattr(lot, field, value)
        try:
            check_invariants(lot, previous=previous)
            _check_serial_unique(lot)
        except Exception:
            for field, value in old_values.items():
                setattr(lot, field, value)
            raise

        lot.save(update_fields=[*changes, 'updated_at'])
        if lot.is_deleted:
            logger.info('Lot %s reached zero quantity and was closed.', lot.pk)
        return lot

    @staticmethod
    def decrement(lot: Lot, quantity: Decimal, *, actor=None) -> Lot:
        """
        Compare-and-swap decrement that must leave a positive remainder.
        Fails if a concurrent writer already took the quantity.
        """
        updated = (
            Lot.objects
            .filter(pk=lot.pk, is_deleted=False, quantity__gt=quantity)
            .update(
                quantity=F('quantity') - quantity,
                updated_by=actor,
                updated_at=timezone.now(),
            )
        )
        if not updated:
            available = Lot.objects.filter(pk=lot.pk).values_list('quantity', flat=True).first()
            raise InsufficientQuantityError(
                lot_id=lot.pk, requested=quantity, available=available or Decimal('0'),
            )
        lot.refresh_from_db(fields=['quantity', 'updated_by', 'updated_at'])
        return lot

    @staticmethod
    def soft_delete(lot_id, *, actor=None) -> Lot:
        lot = LotStore.get_lot(lot_id, for_update=True)
        lot.soft_delete(user=actor)
        logger.info('Lot %s soft-deleted by %s.', lot.pk, actor)
        return lot
