"""
Inventory — Service Layer

Lot lifecycle: receive, deploy (single and batch shipment), return,
replace, scrap, correct, assign serial; plus the stock queries used by
allocation and the low-stock report.

Every operation runs in one transaction, locks the lots it touches and
writes one HistoryEntry per lot that changed state. Any exception rolls
the whole operation back.

@file inventory/services.py
"""

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from django.db import transaction
from django.db.models import DecimalField, F, Q, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from catalog.models import Product
from catalog.services import ProductService
from core.constants import AUDIT_ACTION_UPDATE
from core.exceptions import (
    BusinessRuleViolation,
    DuplicateResourceError,
    InsufficientQuantityError,
    InvalidStateTransition,
    MissingSerialNumbers,
)
from core.services import AuditService

from .history import HistoryService
from .models import HistoryEntry, Lot, LotStatus, ReplacementReason, ReturnReason
from .splitting import scrap_lot, split_lot
from .states import Deployed, InStock, state_of
from .store import LotStore, normalize_serial, to_lot_id, to_money, to_positive_quantity, to_quantity

logger = logging.getLogger('installstock')

Action = HistoryEntry.ActionType


def _assert_status(lot: Lot, *allowed: str, operation: str) -> None:
    if lot.status not in allowed:
        raise InvalidStateTransition(
            detail=f'Cannot {operation} lot {lot.pk} in status {lot.status}.',
        )


def _require_site(site_id) -> None:
    if not site_id:
        raise BusinessRuleViolation(detail='A destination site is required.')


def _serial_in_use(product_id, serial: str) -> bool:
    return Lot.objects.filter(product_id=product_id, serial_number=serial, is_deleted=False).exists()


def _with_comment(label: str, comment: str) -> str:
    return f'{label}: {comment}' if comment else label


# ---------------------------------------------------------------------------
# Reception
# ---------------------------------------------------------------------------

class ReceptionService:

    @staticmethod
    @transaction.atomic
    def receive(
        *,
        product_id,
        quantity,
        unit_cost,
        serial_number: str | None = None,
        split_into_units: bool = False,
        comment: str = '',
        actor=None,
    ) -> list[Lot]:
        """
        Create IN_STOCK lot(s) for incoming goods.

        With ``split_into_units`` an integral quantity N > 1 becomes N lots
        of one unit each, ready to receive serial numbers at deployment.
        """
        product = ProductService.get_product(product_id)
        quantity = to_positive_quantity(quantity)
        unit_cost = to_money(unit_cost)
        serial = normalize_serial(serial_number)

        if serial is not None:
            if split_into_units:
                raise BusinessRuleViolation(detail='A serial number cannot be combined with split into units.')
            if quantity != 1:
                raise BusinessRuleViolation(detail='A lot with a serial number must have quantity 1.')
            if not product.requires_serial:
                raise BusinessRuleViolation(detail=f'Product {product.pk} is not tracked by serial number.')
            if _serial_in_use(product.pk, serial):
                raise DuplicateResourceError(
                    detail=f'Serial number {serial} is already in use for product {product.pk}.',
                )

        if split_into_units:
            if quantity != quantity.to_integral_value():
                raise BusinessRuleViolation(detail='Only a whole quantity can be split into units.')
            unit_quantities = [Decimal('1')] * int(quantity)
        else:
            unit_quantities = [quantity]

        received_at = timezone.now()
        lots = []
        for unit_quantity in unit_quantities:
            lot = LotStore.create_lot(
                product=product,
                quantity=unit_quantity,
                unit_cost=unit_cost,
                state=InStock(),
                serial_number=serial,
                actor=actor,
                created_at=received_at,
            )
            HistoryService.record(
                lot=lot, action_type=Action.RECEIVE, actor=actor,
                comment=comment, created_at=received_at,
            )
            lots.append(lot)

        logger.info(
            'Received %s x %s as %s lot(s) by %s',
            quantity, product.pk, len(lots), actor,
        )
        return lots


# ---------------------------------------------------------------------------
# Deployment
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DeploymentRequest:
    """One line of a batch shipment: take ``quantity`` from a lot."""
    lot_id: UUID
    quantity: Decimal
    serials: tuple[str, ...] = ()


@dataclass(frozen=True)
class BatchDeployment:
    shipment_id: UUID
    deployed_lot_ids: tuple[UUID, ...]


@dataclass(frozen=True)
class _PlannedLine:
    lot: Lot
    quantity: Decimal
    serials: tuple[str, ...]


class DeploymentService:

    @staticmethod
    @transaction.atomic
    def deploy(
        *,
        lot_id,
        quantity,
        site_id,
        serial_number: str | None = None,
        actor=None,
        comment: str = '',
    ) -> Lot:
        """
        Deploy part or all of an IN_STOCK lot to a site. Reserved stock is
        only consumed through fulfillment of its document.
        """
        _require_site(site_id)
        lot = LotStore.get_lot(lot_id, for_update=True)
        _assert_status(lot, LotStatus.IN_STOCK, operation='deploy')
        quantity = to_positive_quantity(quantity)
        if quantity > lot.quantity:
            raise InsufficientQuantityError(lot_id=lot.pk, requested=quantity, available=lot.quantity)

        serial = normalize_serial(serial_number)
        if serial is not None:
            if quantity != 1:
                raise BusinessRuleViolation(detail='A serial number can only be attached to a single unit.')
            if lot.serial_number is not None:
                raise BusinessRuleViolation(detail=f'Lot {lot.pk} already carries serial {lot.serial_number}.')
            if not lot.product.requires_serial:
                raise BusinessRuleViolation(detail=f'Product {lot.product_id} is not tracked by serial number.')

        deployed_at = timezone.now()
        result = split_lot(
            lot, quantity, Deployed.starting(site_id, lot.product, deployed_at),
            serial_number=serial, actor=actor,
        )
        HistoryService.record(
            lot=result.lot,
            action_type=Action.DEPLOY,
            source_lot=None if result.is_full else lot,
            to_site_id=site_id,
            actor=actor,
            comment=comment,
            created_at=deployed_at,
        )
        logger.info(
            'Deployed lot %s qty=%s to site %s (from %s) by %s',
            result.lot.pk, quantity, site_id, lot.pk, actor,
        )
        return result.lot

    @staticmethod
    @transaction.atomic
    def deploy_batch(
        *,
        items: Sequence[DeploymentRequest],
        site_id,
        actor=None,
        allow_missing_serials: bool = False,
        comment: str = '',
    ) -> BatchDeployment:
        """
        Ship several lots to one site as a single shipment.

        Every line is validated before anything is written. Serialized
        products deploy one lot per supplied serial; without enough serials
        the call fails with MissingSerialNumbers unless the caller confirmed
        ``allow_missing_serials``, in which case the rest of the line is
        deployed as one unserialized lot.
        """
        _require_site(site_id)
        if not items:
            raise BusinessRuleViolation(detail='A shipment needs at least one line.')

        lot_ids = [to_lot_id(item.lot_id) for item in items]
        if len(set(lot_ids)) != len(lot_ids):
            raise BusinessRuleViolation(detail='Each lot may appear only once in a shipment.')

        lots = LotStore.lock_lots(lot_ids)
        plan = DeploymentService._plan_batch(items, lots)

        missing = {
            line.lot.pk: (line.quantity, len(line.serials))
            for line in plan
            if line.lot.product.requires_serial
            and line.lot.serial_number is None
            and len(line.serials) < line.quantity
        }
        if missing:
            if not allow_missing_serials:
                raise MissingSerialNumbers(lots=missing)
            logger.warning(
                'Shipment to site %s proceeds without serial numbers for %s line(s): %s',
                site_id, len(missing), ', '.join(str(lot_id) for lot_id in missing),
            )

        shipment_id = uuid.uuid4()
        deployed_at = timezone.now()
        deployed_ids = []
        for line in plan:
            lot = line.lot
            state = Deployed.starting(site_id, lot.product, deployed_at)
            portions = [(Decimal('1'), serial) for serial in line.serials]
            rest = line.quantity - len(line.serials)
            if rest > 0:
                portions.append((rest, None))
            for portion, serial in portions:
                result = split_lot(lot, portion, state, serial_number=serial, actor=actor)
                HistoryService.record(
                    lot=result.lot,
                    action_type=Action.DEPLOY,
                    source_lot=None if result.is_full else lot,
                    to_site_id=site_id,
                    shipment_id=shipment_id,
                    actor=actor,
                    comment=comment,
                    created_at=deployed_at,
                )
                deployed_ids.append(result.lot.pk)

        logger.info(
            'Shipment %s: %s lot(s) deployed to site %s by %s',
            shipment_id, len(deployed_ids), site_id, actor,
        )
        return BatchDeployment(shipment_id=shipment_id, deployed_lot_ids=tuple(deployed_ids))

    @staticmethod
    def _plan_batch(items: Sequence[DeploymentRequest], lots: dict) -> list[_PlannedLine]:
        plan = []
        seen_serials = set()
        for item in items:
            lot = lots[to_lot_id(item.lot_id)]
            _assert_status(lot, LotStatus.IN_STOCK, operation='deploy')
            quantity = to_positive_quantity(item.quantity)
            if quantity > lot.quantity:
                raise InsufficientQuantityError(lot_id=lot.pk, requested=quantity, available=lot.quantity)

            serials = tuple(normalize_serial(serial) for serial in item.serials or ())
            if serials:
                if any(serial is None for serial in serials):
                    raise BusinessRuleViolation(detail=f'Blank serial number for lot {lot.pk}.')
                if not lot.product.requires_serial:
                    raise BusinessRuleViolation(
                        detail=f'Product {lot.product_id} is not tracked by serial number.',
                    )
                if lot.serial_number is not None:
                    raise BusinessRuleViolation(
                        detail=f'Lot {lot.pk} already carries serial {lot.serial_number}.',
                    )
                if len(serials) > quantity:
                    raise BusinessRuleViolation(
                        detail=f'{len(serials)} serial numbers supplied for {quantity} unit(s) of lot {lot.pk}.',
                    )
                for serial in serials:
                    key = (lot.product_id, serial)
                    if key in seen_serials:
                        raise BusinessRuleViolation(detail=f'Serial number {serial} appears twice in the shipment.')
                    seen_serials.add(key)
                    if _serial_in_use(lot.product_id, serial):
                        raise DuplicateResourceError(
                            detail=f'Serial number {serial} is already in use for product {lot.product_id}.',
                        )
            plan.append(_PlannedLine(lot=lot, quantity=quantity, serials=serials))
        return plan


# ---------------------------------------------------------------------------
# Return / Replacement / Scrap
# ---------------------------------------------------------------------------

class ReturnService:

    @staticmethod
    @transaction.atomic
    def return_to_stock(*, lot_id, quantity, reason: str, actor=None, comment: str = '') -> Lot:
        """Bring part or all of a deployed lot back to stock."""
        if reason not in ReturnReason.values:
            raise BusinessRuleViolation(detail=f'Invalid return reason: {reason}.')
        lot = LotStore.get_lot(lot_id, for_update=True)
        _assert_status(lot, LotStatus.DEPLOYED, operation='return')
        site_id = lot.site_id

        result = split_lot(lot, quantity, InStock(), actor=actor)
        HistoryService.record(
            lot=result.lot,
            action_type=Action.RETURN,
            source_lot=None if result.is_full else lot,
            from_site_id=site_id,
            actor=actor,
            comment=_with_comment(str(ReturnReason(reason).label), comment),
        )
        logger.info(
            'Returned lot %s qty=%s from site %s (%s) by %s',
            result.lot.pk, result.lot.quantity, site_id, reason, actor,
        )
        return result.lot


@dataclass(frozen=True)
class Replacement:
    scrapped_lot: Lot
    deployed_lot: Lot


class ReplacementService:

    @staticmethod
    @transaction.atomic
    def replace(
        *,
        old_lot_id,
        old_quantity,
        new_lot_id,
        new_quantity,
        reason: str,
        comment: str = '',
        actor=None,
    ) -> Replacement:
        """
        Scrap deployed equipment and deploy stock in its place, at the same
        site with a fresh warranty window.
        """
        if reason not in ReplacementReason.values:
            raise BusinessRuleViolation(detail=f'Invalid replacement reason: {reason}.')
        old_lot_id, new_lot_id = to_lot_id(old_lot_id), to_lot_id(new_lot_id)
        if old_lot_id == new_lot_id:
            raise BusinessRuleViolation(detail='A lot cannot replace itself.')

        lots = LotStore.lock_lots([old_lot_id, new_lot_id])
        old_lot, new_lot = lots[old_lot_id], lots[new_lot_id]
        _assert_status(old_lot, LotStatus.DEPLOYED, operation='replace')
        _assert_status(new_lot, LotStatus.IN_STOCK, operation='deploy')
        old_quantity = to_positive_quantity(old_quantity, field='old_quantity')
        new_quantity = to_positive_quantity(new_quantity, field='new_quantity')
        if old_quantity > old_lot.quantity:
            raise InsufficientQuantityError(
                lot_id=old_lot.pk, requested=old_quantity, available=old_lot.quantity,
            )
        if new_quantity > new_lot.quantity:
            raise InsufficientQuantityError(
                lot_id=new_lot.pk, requested=new_quantity, available=new_lot.quantity,
            )

        site_id = old_lot.site_id
        reason_label = str(ReplacementReason(reason).label)
        replaced_at = timezone.now()

        scrapped = scrap_lot(old_lot, old_quantity, actor=actor)
        HistoryService.record(
            lot=scrapped.lot,
            action_type=Action.SCRAP,
            source_lot=None if scrapped.is_full else old_lot,
            from_site_id=site_id,
            actor=actor,
            comment=_with_comment(f'Replacement ({reason_label})', comment),
            created_at=replaced_at,
        )

        deployed = split_lot(
            new_lot, new_quantity, Deployed.starting(site_id, new_lot.product, replaced_at),
            actor=actor,
        )
        replaced = old_lot.product.name
        if scrapped.lot.serial_number:
            replaced = f'{replaced} S/N {scrapped.lot.serial_number}'
        HistoryService.record(
            lot=deployed.lot,
            action_type=Action.DEPLOY,
            source_lot=None if deployed.is_full else new_lot,
            to_site_id=site_id,
            actor=actor,
            comment=_with_comment(f'Replaces {replaced} ({reason_label})', comment),
            created_at=replaced_at,
        )
        logger.info(
            'Replacement at site %s: scrapped %s qty=%s, deployed %s qty=%s (%s) by %s',
            site_id, scrapped.lot.pk, old_quantity, deployed.lot.pk, new_quantity, reason, actor,
        )
        return Replacement(scrapped_lot=scrapped.lot, deployed_lot=deployed.lot)


class ScrapService:

    @staticmethod
    @transaction.atomic
    def scrap(*, lot_id, quantity, comment: str = '', actor=None) -> Lot:
        """Write off damaged stock or removed equipment."""
        lot = LotStore.get_lot(lot_id, for_update=True)
        _assert_status(lot, LotStatus.IN_STOCK, LotStatus.DEPLOYED, operation='scrap')
        site_id = lot.site_id

        result = scrap_lot(lot, quantity, actor=actor)
        HistoryService.record(
            lot=result.lot,
            action_type=Action.SCRAP,
            source_lot=None if result.is_full else lot,
            from_site_id=site_id,
            actor=actor,
            comment=comment,
        )
        logger.info('Scrapped lot %s qty=%s by %s', result.lot.pk, result.lot.quantity, actor)
        return result.lot


# ---------------------------------------------------------------------------
# Corrections
# ---------------------------------------------------------------------------

class LotCorrectionService:
    """Manual fixes to lots: counted quantity, unit cost, late serial numbers."""

    @staticmethod
    @transaction.atomic
    def correct(*, lot_id, quantity=None, unit_cost=None, comment: str = '', actor=None) -> Lot:
        lot = LotStore.get_lot(lot_id, for_update=True)
        _assert_status(lot, LotStatus.IN_STOCK, operation='correct')

        patch = {}
        if quantity is not None:
            quantity = to_quantity(quantity)
            if quantity < 0:
                raise BusinessRuleViolation(detail='quantity cannot be negative.')
            if quantity != lot.quantity:
                patch['quantity'] = quantity
        if unit_cost is not None:
            unit_cost = to_money(unit_cost)
            if unit_cost != lot.unit_cost:
                patch['unit_cost'] = unit_cost
        if not patch:
            return lot

        old_values = AuditService.snapshot(lot, fields=list(patch))
        LotStore.update_lot(lot, actor=actor, **patch)
        AuditService.log(
            actor=actor,
            action=AUDIT_ACTION_UPDATE,
            model_name='Lot',
            object_id=str(lot.pk),
            old_values=old_values,
            new_values=AuditService.snapshot(lot, fields=list(patch)),
        )
        if 'quantity' in patch:
            HistoryService.record(
                lot=lot, action_type=Action.ADJUST, actor=actor,
                comment=comment or f'Quantity corrected from {old_values["quantity"]}',
            )
        logger.info('Lot %s corrected by %s: %s', lot.pk, actor, ', '.join(sorted(patch)))
        return lot

    @staticmethod
    @transaction.atomic
    def assign_serial(*, lot_id, serial_number: str, actor=None, comment: str = '') -> Lot:
        """
        Give a serial number to one unit of an unserialized lot of a
        serialized product. A single-unit lot takes the serial in place;
        otherwise one unit is split off in the same state (same site and
        warranty window when deployed) and carries the serial.
        """
        serial = normalize_serial(serial_number)
        if serial is None:
            raise BusinessRuleViolation(detail='serial_number is required.')
        lot = LotStore.get_lot(lot_id, for_update=True)
        if not lot.product.requires_serial:
            raise BusinessRuleViolation(detail=f'Product {lot.product_id} is not tracked by serial number.')
        if lot.serial_number is not None:
            raise BusinessRuleViolation(detail=f'Lot {lot.pk} already carries serial {lot.serial_number}.')
        if lot.status == LotStatus.SCRAPPED:
            raise InvalidStateTransition(detail=f'Cannot assign a serial to scrapped lot {lot.pk}.')
        if lot.quantity < 1:
            raise BusinessRuleViolation(detail=f'Lot {lot.pk} holds less than one unit.')
        if _serial_in_use(lot.product_id, serial):
            raise DuplicateResourceError(
                detail=f'Serial number {serial} is already in use for product {lot.product_id}.',
            )

        result = split_lot(lot, 1, state_of(lot), serial_number=serial, actor=actor)
        HistoryService.record(
            lot=result.lot,
            action_type=Action.ADJUST,
            source_lot=None if result.is_full else lot,
            actor=actor,
            comment=comment or f'Serial number {serial} assigned',
        )
        AuditService.log(
            actor=actor,
            action=AUDIT_ACTION_UPDATE,
            model_name='Lot',
            object_id=str(result.lot.pk),
            old_values={'serial_number': None},
            new_values={'serial_number': serial},
        )
        logger.info('Serial %s assigned to lot %s (from %s) by %s', serial, result.lot.pk, lot.pk, actor)
        return result.lot


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProductAvailability:
    product_id: UUID
    reserved: Decimal
    free: Decimal

    @property
    def total(self) -> Decimal:
        return self.reserved + self.free


_ZERO = Value(Decimal('0'), output_field=DecimalField(max_digits=12, decimal_places=2))


class StockQueryService:
    """Read-only views of stock. Results are advisory; allocation re-checks under lock."""

    @staticmethod
    def list_lots(**filters):
        return LotStore.list_lots(**filters)

    @staticmethod
    def availability(*, product_ids, document_id=None) -> list[ProductAvailability]:
        """Per product: quantity reserved for ``document_id`` and free stock."""
        product_ids = [str(product_id) for product_id in product_ids]
        reserved_filter = Q(status=LotStatus.RESERVED, reserved_for_document_id=document_id)
        rows = (
            Lot.objects
            .filter(product_id__in=product_ids, is_deleted=False)
            .values('product_id')
            .annotate(
                free=Coalesce(Sum('quantity', filter=Q(status=LotStatus.IN_STOCK)), _ZERO),
                reserved=Coalesce(Sum('quantity', filter=reserved_filter), _ZERO),
            )
        )
        by_product = {str(row['product_id']): row for row in rows}
        result = []
        for product_id in product_ids:
            row = by_product.get(product_id)
            reserved = row['reserved'] if row and document_id is not None else Decimal('0')
            result.append(ProductAvailability(
                product_id=UUID(product_id),
                reserved=reserved,
                free=row['free'] if row else Decimal('0'),
            ))
        return result

    @staticmethod
    def low_stock_products():
        """Active products whose free stock is below their minimum level."""
        return (
            Product.objects
            .filter(is_deleted=False, is_archived=False, stock_min_level__gt=0)
            .annotate(
                free_stock=Coalesce(
                    Sum(
                        'lots__quantity',
                        filter=Q(lots__status=LotStatus.IN_STOCK, lots__is_deleted=False),
                    ),
                    _ZERO,
                ),
            )
            .filter(free_stock__lt=F('stock_min_level'))
            .order_by('name')
        )
