"""
Allocation — Service Layer

Reservation of stock against sales documents, fulfillment of a document
to an installation site (reserved stock first, then free stock, oldest
lots first) and supply requests for whatever could not be shipped.

Allocation of a product's stock is serialised by a PostgreSQL advisory
lock on top of the row locks, so two documents competing for the same
free lots cannot interleave.

@file allocation/services.py
"""

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from catalog.services import ProductService
from core.constants import AUDIT_ACTION_CREATE, AUDIT_ACTION_STATUS_CHANGE
from core.exceptions import (
    BusinessRuleViolation,
    InsufficientQuantityError,
    InvalidStateTransition,
    ResourceNotFoundError,
)
from core.locks import acquire_advisory_lock
from core.services import AuditService
from inventory.history import HistoryService
from inventory.models import HistoryEntry, Lot, LotStatus
from inventory.services import ReceptionService
from inventory.splitting import split_lot
from inventory.states import Deployed, InStock, Reserved
from inventory.store import LotStore, to_money, to_positive_quantity

from .models import FulfillmentStatus, SupplyRequest, SupplyRequestItem

logger = logging.getLogger('installstock')

Action = HistoryEntry.ActionType


def _lock_candidate_lots(product_ids, *, reserved_for=None) -> dict:
    """
    Lock the free lots of every product in ``product_ids``, plus those
    reserved for ``reserved_for`` when given, with one query in
    primary-key order. Returns each product's lots oldest first.
    """
    condition = Q(status=LotStatus.IN_STOCK)
    if reserved_for is not None:
        condition |= Q(status=LotStatus.RESERVED, reserved_for_document_id=reserved_for)
    lots = (
        Lot.objects
        .select_related('product')
        .select_for_update(of=('self',))
        .filter(condition, product_id__in=list(product_ids), is_deleted=False)
        .order_by('pk')
    )
    by_product = {product_id: [] for product_id in product_ids}
    for lot in lots:
        by_product[lot.product_id].append(lot)
    for product_lots in by_product.values():
        product_lots.sort(key=lambda lot: (lot.created_at, lot.pk.hex))
    return by_product


def _lock_product_lots(product_id, *, reserved_for=None) -> list[Lot]:
    return _lock_candidate_lots([product_id], reserved_for=reserved_for)[product_id]


def _check_whole_units(product, quantity: Decimal) -> None:
    if product.requires_serial and quantity != quantity.to_integral_value():
        raise BusinessRuleViolation(
            detail=f'{product} is tracked by serial number; quantity {quantity} must be a whole number.',
        )


# ---------------------------------------------------------------------------
# Reservation
# ---------------------------------------------------------------------------

class ReservationService:

    @staticmethod
    @transaction.atomic
    def reserve(*, lot_id, quantity, document_id, actor=None, comment: str = '') -> Lot:
        """Set aside part or all of an IN_STOCK lot for a document."""
        if not document_id:
            raise BusinessRuleViolation(detail='A document is required to reserve stock.')
        lot = LotStore.get_lot(lot_id, for_update=True)
        if lot.status != LotStatus.IN_STOCK:
            raise InvalidStateTransition(
                detail=f'Cannot reserve lot {lot.pk} in status {lot.status}.',
            )
        result = split_lot(lot, quantity, Reserved(document_id=document_id), actor=actor)
        HistoryService.record(
            lot=result.lot,
            action_type=Action.RESERVE,
            source_lot=None if result.is_full else lot,
            document_id=document_id,
            actor=actor,
            comment=comment,
        )
        logger.info(
            'Reserved lot %s qty=%s for document %s by %s',
            result.lot.pk, result.lot.quantity, document_id, actor,
        )
        return result.lot

    @staticmethod
    @transaction.atomic
    def reserve_product(*, product_id, quantity, document_id, actor=None) -> list[Lot]:
        """
        Reserve ``quantity`` of a product from free stock, oldest lots first.
        Nothing is reserved when free stock cannot cover the full quantity.
        """
        if not document_id:
            raise BusinessRuleViolation(detail='A document is required to reserve stock.')
        product = ProductService.get_product(product_id, require_available=False)
        quantity = to_positive_quantity(quantity)
        _check_whole_units(product, quantity)

        acquire_advisory_lock('product', product.pk)
        free_lots = _lock_product_lots(product.pk)
        available = sum((lot.quantity for lot in free_lots), Decimal('0'))
        if available < quantity:
            raise InsufficientQuantityError(requested=quantity, available=available)

        reserved = []
        remaining = quantity
        for lot in free_lots:
            if remaining <= 0:
                break
            take = min(remaining, lot.quantity)
            result = split_lot(lot, take, Reserved(document_id=document_id), actor=actor)
            HistoryService.record(
                lot=result.lot,
                action_type=Action.RESERVE,
                source_lot=None if result.is_full else lot,
                document_id=document_id,
                actor=actor,
            )
            reserved.append(result.lot)
            remaining -= take

        logger.info(
            'Reserved %s x %s for document %s from %s lot(s) by %s',
            quantity, product.pk, document_id, len(reserved), actor,
        )
        return reserved

    @staticmethod
    @transaction.atomic
    def release(*, lot_id, actor=None, comment: str = '') -> Lot:
        """Return a reserved lot to free stock."""
        lot = LotStore.get_lot(lot_id, for_update=True)
        return ReservationService._release_locked(lot, actor=actor, comment=comment)

    @staticmethod
    @transaction.atomic
    def release_document(*, document_id, actor=None) -> int:
        """Release every lot reserved for a document; returns how many."""
        lots = list(
            Lot.objects
            .select_related('product')
            .select_for_update(of=('self',))
            .filter(status=LotStatus.RESERVED, reserved_for_document_id=document_id, is_deleted=False)
            .order_by('pk')
        )
        for lot in lots:
            ReservationService._release_locked(lot, actor=actor)
        if lots:
            logger.info('Released %s reserved lot(s) of document %s by %s', len(lots), document_id, actor)
        return len(lots)

    @staticmethod
    def _release_locked(lot: Lot, *, actor=None, comment: str = '') -> Lot:
        if lot.status != LotStatus.RESERVED:
            raise InvalidStateTransition(
                detail=f'Cannot release lot {lot.pk} in status {lot.status}.',
            )
        document_id = lot.reserved_for_document_id
        LotStore.update_lot(lot, actor=actor, state=InStock())
        HistoryService.record(
            lot=lot,
            action_type=Action.RELEASE,
            document_id=document_id,
            actor=actor,
            comment=comment,
        )
        logger.info('Released lot %s from document %s by %s', lot.pk, document_id, actor)
        return lot


# ---------------------------------------------------------------------------
# Fulfillment
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FulfillmentLine:
    product_id: UUID
    quantity: Decimal


@dataclass(frozen=True)
class LineOutcome:
    product_id: UUID
    requested: Decimal
    from_reserved: Decimal
    from_free: Decimal
    deployed_lot_ids: tuple[UUID, ...] = ()

    @property
    def shipped(self) -> Decimal:
        return self.from_reserved + self.from_free

    @property
    def outstanding(self) -> Decimal:
        return self.requested - self.shipped

    @property
    def is_complete(self) -> bool:
        return self.outstanding <= 0


@dataclass(frozen=True)
class FulfillmentResult:
    document_id: UUID
    site_id: UUID
    shipment_id: UUID
    lines: tuple[LineOutcome, ...] = field(default_factory=tuple)

    @property
    def status(self) -> str:
        if all(line.is_complete for line in self.lines):
            return FulfillmentStatus.SHIPPED
        if not any(line.shipped > 0 for line in self.lines):
            return FulfillmentStatus.NOTHING_SHIPPED
        return FulfillmentStatus.PARTIAL

    @property
    def is_partial(self) -> bool:
        return self.status == FulfillmentStatus.PARTIAL

    @property
    def shortfall(self) -> tuple[LineOutcome, ...]:
        return tuple(line for line in self.lines if not line.is_complete)


class FulfillmentService:

    @staticmethod
    @transaction.atomic
    def fulfill(
        *,
        document_id,
        site_id,
        lines: Sequence[FulfillmentLine],
        actor=None,
    ) -> FulfillmentResult:
        """
        Ship a document's lines to a site.

        Each line is served from lots reserved for the document first, then
        from free stock, oldest lots first. A short line is reported in the
        result (status PARTIAL or NOTHING_SHIPPED), not raised.
        """
        if not document_id:
            raise BusinessRuleViolation(detail='A document is required for fulfillment.')
        if not site_id:
            raise BusinessRuleViolation(detail='A destination site is required.')
        if not lines:
            raise BusinessRuleViolation(detail='Nothing to fulfill.')
        requests = []
        for line in lines:
            product = ProductService.get_product(line.product_id, require_available=False)
            requested = to_positive_quantity(line.quantity)
            _check_whole_units(product, requested)
            requests.append((product, requested))
        product_ids = [product.pk for product, _ in requests]
        if len(set(product_ids)) != len(product_ids):
            raise BusinessRuleViolation(detail='Each product may appear only once per fulfillment.')

        for product_id in sorted(product_ids, key=str):
            acquire_advisory_lock('document', document_id, product_id)
            acquire_advisory_lock('product', product_id)
        candidates = _lock_candidate_lots(product_ids, reserved_for=document_id)

        shipment_id = uuid.uuid4()
        shipped_at = timezone.now()
        outcomes = []
        for product, requested in requests:
            outcomes.append(FulfillmentService._fulfill_line(
                product, requested, candidates[product.pk],
                document_id=document_id, site_id=site_id,
                shipment_id=shipment_id, shipped_at=shipped_at, actor=actor,
            ))

        result = FulfillmentResult(
            document_id=document_id,
            site_id=site_id,
            shipment_id=shipment_id,
            lines=tuple(outcomes),
        )
        if result.status == FulfillmentStatus.SHIPPED:
            logger.info('Document %s shipped to site %s (shipment %s)', document_id, site_id, shipment_id)
        else:
            logger.warning(
                'Document %s %s to site %s: %s line(s) short',
                document_id, result.status, site_id, len(result.shortfall),
            )
        return result

    @staticmethod
    def _fulfill_line(product, requested, lots, *, document_id, site_id, shipment_id, shipped_at, actor) -> LineOutcome:
        reserved_lots = [lot for lot in lots if lot.status == LotStatus.RESERVED]
        free_lots = [lot for lot in lots if lot.status == LotStatus.IN_STOCK]
        state = Deployed.starting(site_id, product, shipped_at)

        taken = {LotStatus.RESERVED: Decimal('0'), LotStatus.IN_STOCK: Decimal('0')}
        deployed_ids = []
        remaining = requested
        for lot in reserved_lots + free_lots:
            if remaining <= 0:
                break
            source_status = lot.status
            take = min(remaining, lot.quantity)
            result = split_lot(lot, take, state, actor=actor)
            HistoryService.record(
                lot=result.lot,
                action_type=Action.DEPLOY,
                source_lot=None if result.is_full else lot,
                to_site_id=site_id,
                document_id=document_id,
                shipment_id=shipment_id,
                actor=actor,
                created_at=shipped_at,
            )
            taken[source_status] += take
            deployed_ids.append(result.lot.pk)
            remaining -= take

        return LineOutcome(
            product_id=product.pk,
            requested=requested,
            from_reserved=taken[LotStatus.RESERVED],
            from_free=taken[LotStatus.IN_STOCK],
            deployed_lot_ids=tuple(deployed_ids),
        )


# ---------------------------------------------------------------------------
# Supply requests
# ---------------------------------------------------------------------------

REQUEST_TRANSITIONS = {
    SupplyRequest.StatusChoices.OPEN: {
        SupplyRequest.StatusChoices.CLOSED,
        SupplyRequest.StatusChoices.CANCELLED,
    },
    SupplyRequest.StatusChoices.CLOSED: set(),
    SupplyRequest.StatusChoices.CANCELLED: set(),
}

ITEM_TRANSITIONS = {
    SupplyRequestItem.StatusChoices.PENDING: {
        SupplyRequestItem.StatusChoices.ORDERED,
        SupplyRequestItem.StatusChoices.RECEIVED,
    },
    SupplyRequestItem.StatusChoices.ORDERED: {SupplyRequestItem.StatusChoices.RECEIVED},
    SupplyRequestItem.StatusChoices.RECEIVED: set(),
}


def _assert_transition(obj, new_status: str, transitions: dict) -> None:
    allowed = transitions.get(obj.status, set())
    if new_status not in allowed:
        raise InvalidStateTransition(
            detail=f'Cannot transition {obj._meta.model_name} from {obj.status} to {new_status}.',
        )


def _assert_request_open(request: SupplyRequest) -> None:
    if request.status != SupplyRequest.StatusChoices.OPEN:
        raise InvalidStateTransition(detail=f'Supply request {request.pk} is {request.status}.')


class SupplyRequestService:

    @staticmethod
    def _get_item(item_id) -> SupplyRequestItem:
        try:
            return (
                SupplyRequestItem.objects
                .select_for_update(of=('self',))
                .select_related('request', 'product')
                .get(pk=item_id, is_deleted=False)
            )
        except (SupplyRequestItem.DoesNotExist, DjangoValidationError, ValueError):
            raise ResourceNotFoundError(detail=f'Supply request item {item_id} not found.')

    @staticmethod
    def _set_status(obj, new_status: str, transitions: dict, *, actor=None) -> None:
        _assert_transition(obj, new_status, transitions)
        old_status = obj.status
        obj.status = new_status
        obj.updated_by = actor
        obj.save(update_fields=['status', 'updated_by', 'updated_at'])
        AuditService.log(
            actor=actor,
            action=AUDIT_ACTION_STATUS_CHANGE,
            model_name=obj.__class__.__name__,
            object_id=str(obj.pk),
            old_values={'status': old_status},
            new_values={'status': new_status},
        )

    @staticmethod
    @transaction.atomic
    def create_from_shortfall(*, result: FulfillmentResult, actor=None, note: str = '') -> SupplyRequest | None:
        """Open a supply request for the outstanding lines of a fulfillment."""
        shortfall = result.shortfall
        if not shortfall:
            return None
        request = SupplyRequest.objects.create(
            document_id=result.document_id,
            note=note,
            created_by=actor,
        )
        for line in shortfall:
            SupplyRequestItem.objects.create(
                request=request,
                product_id=line.product_id,
                quantity_needed=line.outstanding,
                created_by=actor,
            )
        AuditService.log(
            actor=actor,
            action=AUDIT_ACTION_CREATE,
            model_name='SupplyRequest',
            object_id=str(request.pk),
            new_values={
                'document_id': str(result.document_id),
                'items': {str(line.product_id): str(line.outstanding) for line in shortfall},
            },
        )
        logger.info(
            'Supply request %s opened for document %s (%s item(s))',
            request.pk, result.document_id, len(shortfall),
        )
        return request

    @staticmethod
    @transaction.atomic
    def mark_ordered(*, item_id, quantity_ordered, actor=None) -> SupplyRequestItem:
        item = SupplyRequestService._get_item(item_id)
        _assert_request_open(item.request)
        quantity_ordered = to_positive_quantity(quantity_ordered, field='quantity_ordered')
        _assert_transition(item, SupplyRequestItem.StatusChoices.ORDERED, ITEM_TRANSITIONS)
        item.quantity_ordered = quantity_ordered
        item.save(update_fields=['quantity_ordered'])
        SupplyRequestService._set_status(
            item, SupplyRequestItem.StatusChoices.ORDERED, ITEM_TRANSITIONS, actor=actor,
        )
        logger.info('Supply request item %s ordered qty=%s by %s', item.pk, quantity_ordered, actor)
        return item

    @staticmethod
    @transaction.atomic
    def receive_item(
        *,
        item_id,
        unit_cost,
        quantity=None,
        split_into_units: bool = False,
        actor=None,
    ) -> list[Lot]:
        """
        Book the delivery of an item into stock. Closes the request once all
        of its items are received.
        """
        item = SupplyRequestService._get_item(item_id)
        request = item.request
        _assert_request_open(request)
        _assert_transition(item, SupplyRequestItem.StatusChoices.RECEIVED, ITEM_TRANSITIONS)
        if quantity is None:
            quantity = item.quantity_ordered or item.quantity_needed

        lots = ReceptionService.receive(
            product_id=item.product_id,
            quantity=quantity,
            unit_cost=to_money(unit_cost),
            split_into_units=split_into_units,
            comment=f'Supply request {request.pk}',
            actor=actor,
        )
        SupplyRequestService._set_status(
            item, SupplyRequestItem.StatusChoices.RECEIVED, ITEM_TRANSITIONS, actor=actor,
        )

        pending = (
            request.items
            .filter(is_deleted=False)
            .exclude(status=SupplyRequestItem.StatusChoices.RECEIVED)
            .exists()
        )
        if not pending:
            request = SupplyRequest.objects.select_for_update().get(pk=request.pk)
            SupplyRequestService._set_status(
                request, SupplyRequest.StatusChoices.CLOSED, REQUEST_TRANSITIONS, actor=actor,
            )
            logger.info('Supply request %s closed', request.pk)
        return lots

    @staticmethod
    @transaction.atomic
    def cancel(*, request_id, actor=None) -> SupplyRequest:
        try:
            request = SupplyRequest.objects.select_for_update().get(pk=request_id, is_deleted=False)
        except (SupplyRequest.DoesNotExist, DjangoValidationError, ValueError):
            raise ResourceNotFoundError(detail=f'Supply request {request_id} not found.')
        SupplyRequestService._set_status(
            request, SupplyRequest.StatusChoices.CANCELLED, REQUEST_TRANSITIONS, actor=actor,
        )
        logger.info('Supply request %s cancelled by %s', request.pk, actor)
        return request
