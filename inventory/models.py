"""
Inventory — Models

Stock is held in lots: a quantity-divisible batch of one product that is
received, split, reserved, deployed to a site, returned or scrapped.
Every state transition of a lot is recorded in the append-only
HistoryEntry table.

Sites and sales documents are opaque UUIDs resolved in the application
layer, the same way they are referenced across the rest of the system.

@file inventory/models.py
"""

from django.conf import settings
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from core.models import RegulatedModel


class LotStatus(models.TextChoices):
    IN_STOCK = 'IN_STOCK', _('In stock')
    RESERVED = 'RESERVED', _('Reserved')
    DEPLOYED = 'DEPLOYED', _('Deployed')
    SCRAPPED = 'SCRAPPED', _('Scrapped')
    MAINTENANCE = 'MAINTENANCE', _('Maintenance')


class ReturnReason(models.TextChoices):
    SURPLUS = 'surplus', _('Surplus')
    CANCELLATION = 'cancellation', _('Cancellation')
    WRONG_ITEM = 'wrong_item', _('Wrong item')
    REPAIR = 'repair', _('Repair')


class ReplacementReason(models.TextChoices):
    DEFECT = 'defect', _('Defect')
    DAMAGE = 'damage', _('Damage')
    UPGRADE = 'upgrade', _('Upgrade')
    ERROR = 'error', _('Installation error')


class Lot(RegulatedModel):
    """
    A batch of a single product.

    Serialized units are one lot each (quantity 1). A lot is split by
    decrementing it in place and creating a child row pointing back at
    it through source_lot; quantity never reaches zero on an active row.
    """

    product = models.ForeignKey(
        'catalog.Product',
        on_delete=models.PROTECT,
        related_name='lots',
        verbose_name=_('product'),
    )
    serial_number = models.CharField(
        _('serial number'), max_length=100,
        null=True, blank=True, db_index=True,
    )
    quantity = models.DecimalField(_('quantity'), max_digits=12, decimal_places=2)
    unit_cost = models.DecimalField(_('unit cost'), max_digits=14, decimal_places=2)
    status = models.CharField(
        _('status'), max_length=12,
        choices=LotStatus.choices, default=LotStatus.IN_STOCK,
        db_index=True,
    )
    site_id = models.UUIDField(
        _('site ID'), null=True, blank=True, db_index=True,
        help_text=_('Installation site the lot is deployed at'),
    )
    reserved_for_document_id = models.UUIDField(
        _('reserved for document'), null=True, blank=True, db_index=True,
        help_text=_('Sales document (invoice) the lot is reserved for'),
    )
    warranty_start = models.DateTimeField(_('warranty start'), null=True, blank=True)
    warranty_end = models.DateTimeField(_('warranty end'), null=True, blank=True)
    source_lot = models.ForeignKey(
        'self',
        null=True, blank=True,
        on_delete=models.PROTECT,
        related_name='split_lots',
        verbose_name=_('split from'),
    )

    class Meta:
        verbose_name = _('lot')
        verbose_name_plural = _('lots')
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['product', 'status', 'is_deleted'], name='lot_product_status_idx'),
            models.Index(fields=['reserved_for_document_id', 'product'], name='lot_document_product_idx'),
            models.Index(fields=['site_id', 'status'], name='lot_site_status_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=0),
                name='lot_quantity_non_negative',
            ),
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0) | models.Q(is_deleted=True),
                name='lot_quantity_positive_unless_deleted',
            ),
            models.CheckConstraint(
                condition=models.Q(unit_cost__gte=0),
                name='lot_unit_cost_non_negative',
            ),
            models.CheckConstraint(
                condition=models.Q(serial_number__isnull=True) | models.Q(quantity=1),
                name='lot_serial_implies_single_unit',
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(
                        status=LotStatus.DEPLOYED,
                        site_id__isnull=False,
                        reserved_for_document_id__isnull=True,
                    )
                    | models.Q(
                        status=LotStatus.RESERVED,
                        site_id__isnull=True,
                        reserved_for_document_id__isnull=False,
                    )
                    | models.Q(
                        status__in=[LotStatus.IN_STOCK, LotStatus.SCRAPPED, LotStatus.MAINTENANCE],
                        site_id__isnull=True,
                        reserved_for_document_id__isnull=True,
                    )
                ),
                name='lot_status_companions_consistent',
            ),
            models.UniqueConstraint(
                fields=['product', 'serial_number'],
                condition=models.Q(is_deleted=False, serial_number__isnull=False),
                name='unique_active_serial_per_product',
            ),
        ]

    def __str__(self):
        label = f'{self.product} S/N {self.serial_number}' if self.serial_number else str(self.product)
        return f'{label} x{self.quantity} [{self.status}]'

    @property
    def state(self):
        from .states import state_of

        return state_of(self)

    @property
    def is_under_warranty(self) -> bool:
        if self.status != LotStatus.DEPLOYED or not self.warranty_end:
            return False
        return self.warranty_end > timezone.now()


class HistoryEntry(models.Model):
    """
    One immutable record per lot state transition (insert only).

    quantity is the lot's quantity right after the transition. Entries
    of a lot born from a split point at the parent through source_lot so
    the parent's quantity can be replayed from the log.
    """

    class ActionType(models.TextChoices):
        RECEIVE = 'RECEIVE', _('Receive')
        DEPLOY = 'DEPLOY', _('Deploy')
        RETURN = 'RETURN', _('Return')
        SCRAP = 'SCRAP', _('Scrap')
        REPLACE = 'REPLACE', _('Replace')
        RESERVE = 'RESERVE', _('Reserve')
        RELEASE = 'RELEASE', _('Release reservation')
        ADJUST = 'ADJUST', _('Adjust')

    id = models.BigAutoField(primary_key=True)
    lot = models.ForeignKey(
        Lot,
        on_delete=models.PROTECT,
        related_name='history',
        verbose_name=_('lot'),
    )
    source_lot = models.ForeignKey(
        Lot,
        null=True, blank=True,
        on_delete=models.PROTECT,
        related_name='derived_history',
        verbose_name=_('split from'),
    )
    action_type = models.CharField(
        _('action'), max_length=10,
        choices=ActionType.choices, db_index=True,
    )
    quantity = models.DecimalField(_('quantity'), max_digits=12, decimal_places=2)
    from_site_id = models.UUIDField(_('from site'), null=True, blank=True)
    to_site_id = models.UUIDField(_('to site'), null=True, blank=True)
    document_id = models.UUIDField(_('document'), null=True, blank=True, db_index=True)
    shipment_id = models.UUIDField(
        _('shipment'), null=True, blank=True, db_index=True,
        help_text=_('Groups the entries written by one batch shipment'),
    )
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True, blank=True,
        on_delete=models.SET_NULL,
        related_name='+',
        verbose_name=_('actor'),
    )
    comment = models.TextField(_('comment'), blank=True)
    created_at = models.DateTimeField(_('created at'), default=timezone.now, db_index=True)
    # No updated_at — immutable record.

    class Meta:
        verbose_name = _('history entry')
        verbose_name_plural = _('history entries')
        ordering = ['id']
        indexes = [
            models.Index(fields=['lot', 'id'], name='history_lot_seq_idx'),
            models.Index(fields=['source_lot', 'id'], name='history_source_seq_idx'),
        ]

    def __str__(self):
        return f'{self.action_type} {self.quantity} lot={self.lot_id}'

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise NotImplementedError('HistoryEntry is insert-only; updates are not allowed.')
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise NotImplementedError('HistoryEntry records cannot be deleted.')
