"""
Inventory — History Log

Append-only record of every lot state transition, and the replay that
rebuilds a lot's quantity and status from that record alone.

Entries are ordered by their auto-increment id, not created_at: one
batch shipment stamps all its entries with the same timestamp.

@file inventory/history.py
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from django.db.models import Q, QuerySet

from .models import HistoryEntry, Lot, LotStatus
from .store import to_lot_id

logger = logging.getLogger('installstock')

Action = HistoryEntry.ActionType

# Status a lot holds after an entry of each action. ADJUST keeps the status.
ACTION_STATUS = {
    Action.RECEIVE: LotStatus.IN_STOCK,
    Action.RETURN: LotStatus.IN_STOCK,
    Action.RELEASE: LotStatus.IN_STOCK,
    Action.DEPLOY: LotStatus.DEPLOYED,
    Action.REPLACE: LotStatus.DEPLOYED,
    Action.SCRAP: LotStatus.SCRAPPED,
    Action.RESERVE: LotStatus.RESERVED,
}


@dataclass(frozen=True)
class ReplayedState:
    quantity: Decimal
    status: str | None


class HistoryService:

    @staticmethod
    def record(
        *,
        lot: Lot,
        action_type: str,
        quantity: Decimal | None = None,
        source_lot: Lot | None = None,
        from_site_id=None,
        to_site_id=None,
        document_id=None,
        shipment_id=None,
        actor=None,
        comment: str = '',
        created_at=None,
    ) -> HistoryEntry:
        """
        Append one entry. ``quantity`` defaults to the lot's quantity after
        the transition; ``source_lot`` is set only on the first entry of a
        lot that was split off another.
        """
        entry = HistoryEntry(
            lot=lot,
            action_type=action_type,
            quantity=lot.quantity if quantity is None else quantity,
            source_lot=source_lot,
            from_site_id=from_site_id,
            to_site_id=to_site_id,
            document_id=document_id,
            shipment_id=shipment_id,
            actor=actor,
            comment=comment or '',
        )
        if created_at is not None:
            entry.created_at = created_at
        entry.save()
        logger.debug(
            'History %s %s lot=%s qty=%s source=%s',
            entry.pk, action_type, lot.pk, entry.quantity, getattr(source_lot, 'pk', None),
        )
        return entry

    @staticmethod
    def for_lot(lot_id, *, include_splits: bool = False) -> QuerySet:
        """Entries of a lot in the order they were written."""
        condition = Q(lot_id=lot_id)
        if include_splits:
            condition |= Q(source_lot_id=lot_id)
        return (
            HistoryEntry.objects
            .filter(condition)
            .select_related('actor')
            .order_by('id')
        )

    @staticmethod
    def replay(lot_id, *, until: int | None = None) -> ReplayedState:
        """
        Fold the log into the lot's quantity and status.

        The lot's own entries each set quantity and status; the first entry
        of every lot split off it subtracts that child's quantity. A split
        child whose first entry is an ADJUST inherits the status its parent
        held at that moment.
        """
        lot_id = to_lot_id(lot_id)
        entries = HistoryEntry.objects.filter(Q(lot_id=lot_id) | Q(source_lot_id=lot_id))
        if until is not None:
            entries = entries.filter(id__lt=until)

        quantity = Decimal('0')
        status = None
        for entry in entries.order_by('id'):
            if entry.lot_id != lot_id:
                quantity -= entry.quantity
                continue
            quantity = entry.quantity
            if entry.action_type in ACTION_STATUS:
                status = ACTION_STATUS[entry.action_type]
            elif status is None and entry.source_lot_id is not None:
                status = HistoryService.replay(entry.source_lot_id, until=entry.id).status
        return ReplayedState(quantity=quantity, status=status)
