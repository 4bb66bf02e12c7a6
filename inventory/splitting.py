"""
Inventory — Split primitive

Moves part or all of a lot into a new state. Deployment, return,
replacement, scrap and fulfillment all go through split_lot().

@file inventory/splitting.py
"""

from dataclasses import dataclass

from core.exceptions import BusinessRuleViolation, InsufficientQuantityError

from .models import Lot
from .states import LotState, Scrapped
from .store import LotStore, normalize_serial, to_positive_quantity


@dataclass(frozen=True)
class SplitResult:
    remainder: Lot | None   # the parent, still in its old state; None on the full path
    lot: Lot                # the lot now in the target state
    is_full: bool


def split_lot(lot: Lot, quantity, state: LotState, *, serial_number=None, actor=None) -> SplitResult:
    """
    Put ``quantity`` of ``lot`` into ``state``.

    The whole lot is repurposed in place when the full quantity is taken.
    Otherwise the parent is decremented and a child lot is created with the
    same product and unit cost. The child never inherits the parent's
    serial; it gets one only when ``serial_number`` is passed.

    The caller must hold the row lock on ``lot`` and records the history
    entry for the lot that changed state.
    """
    quantity = to_positive_quantity(quantity)
    if quantity > lot.quantity:
        raise InsufficientQuantityError(lot_id=lot.pk, requested=quantity, available=lot.quantity)

    serial = normalize_serial(serial_number)
    if serial is not None and quantity != 1:
        raise BusinessRuleViolation(detail='A serial number can only be attached to a single unit.')

    if quantity == lot.quantity:
        patch = {}
        if serial is not None:
            if lot.serial_number is not None and lot.serial_number != serial:
                raise BusinessRuleViolation(
                    detail=f'Lot {lot.pk} already carries serial {lot.serial_number}.',
                )
            patch['serial_number'] = serial
        LotStore.update_lot(lot, actor=actor, state=state, **patch)
        return SplitResult(remainder=None, lot=lot, is_full=True)

    if lot.serial_number is not None:
        raise BusinessRuleViolation(detail=f'Serialized lot {lot.pk} cannot be split.')

    LotStore.decrement(lot, quantity, actor=actor)
    child = LotStore.create_lot(
        product=lot.product,
        quantity=quantity,
        unit_cost=lot.unit_cost,
        state=state,
        serial_number=serial,
        source_lot=lot,
        actor=actor,
    )
    return SplitResult(remainder=lot, lot=child, is_full=False)


def scrap_lot(lot: Lot, quantity, *, actor=None) -> SplitResult:
    return split_lot(lot, quantity, Scrapped(), actor=actor)
