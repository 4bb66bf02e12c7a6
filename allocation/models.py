"""
Allocation — Models

Supply requests: the purchasing follow-up for document lines that
fulfillment could not cover from stock. Receiving an item runs a normal
stock reception.

@file allocation/models.py
"""

from django.db import models
from django.utils.translation import gettext_lazy as _

from core.models import RegulatedModel


class FulfillmentStatus(models.TextChoices):
    """Outcome of shipping a document; not stored, reported to the caller."""
    SHIPPED = 'SHIPPED', _('Shipped')
    PARTIAL = 'PARTIAL', _('Partially shipped')
    NOTHING_SHIPPED = 'NOTHING_SHIPPED', _('Nothing shipped')


class SupplyRequest(RegulatedModel):

    class StatusChoices(models.TextChoices):
        OPEN = 'OPEN', _('Open')
        CLOSED = 'CLOSED', _('Closed')
        CANCELLED = 'CANCELLED', _('Cancelled')

    document_id = models.UUIDField(
        _('document'), null=True, blank=True, db_index=True,
        help_text=_('Sales document whose shortfall raised this request'),
    )
    status = models.CharField(
        _('status'), max_length=10,
        choices=StatusChoices.choices, default=StatusChoices.OPEN,
        db_index=True,
    )
    note = models.TextField(_('note'), blank=True)

    class Meta:
        verbose_name = _('supply request')
        verbose_name_plural = _('supply requests')
        ordering = ['-created_at']

    def __str__(self):
        return f'Supply request {self.pk} [{self.status}]'


class SupplyRequestItem(RegulatedModel):

    class StatusChoices(models.TextChoices):
        PENDING = 'PENDING', _('Pending')
        ORDERED = 'ORDERED', _('Ordered')
        RECEIVED = 'RECEIVED', _('Received')

    request = models.ForeignKey(
        SupplyRequest,
        on_delete=models.CASCADE,
        related_name='items',
        verbose_name=_('supply request'),
    )
    product = models.ForeignKey(
        'catalog.Product',
        on_delete=models.PROTECT,
        related_name='supply_request_items',
        verbose_name=_('product'),
    )
    quantity_needed = models.DecimalField(_('quantity needed'), max_digits=12, decimal_places=2)
    quantity_ordered = models.DecimalField(
        _('quantity ordered'), max_digits=12, decimal_places=2, null=True, blank=True,
    )
    status = models.CharField(
        _('status'), max_length=10,
        choices=StatusChoices.choices, default=StatusChoices.PENDING,
        db_index=True,
    )

    class Meta:
        verbose_name = _('supply request item')
        verbose_name_plural = _('supply request items')
        ordering = ['created_at', 'id']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity_needed__gt=0),
                name='supply_item_quantity_positive',
            ),
        ]

    def __str__(self):
        return f'{self.product} x{self.quantity_needed} [{self.status}]'
