"""
Catalog — Models

Product reference data consumed by the inventory engine: unit of
measure, whether each physical unit carries a serial number, warranty
duration and the low-stock threshold. The engine never writes products.

@file catalog/models.py
"""

from datetime import timedelta
from decimal import Decimal

from django.db import models
from django.utils.translation import gettext_lazy as _

from core.models import RegulatedModel


class Product(RegulatedModel):
    """
    A catalogued product type (camera, hub, cable reel, ...).

    Stock of a product is held in inventory.Lot rows; a product with
    requires_serial set is tracked one physical unit per lot.
    """

    class UnitChoices(models.TextChoices):
        PIECE = 'pcs', _('Piece')
        METRE = 'm', _('Metre')
        PACK = 'pack', _('Pack')
        SET = 'set', _('Set')

    name = models.CharField(_('name'), max_length=255)
    sku = models.CharField(_('SKU'), max_length=64, blank=True, db_index=True)
    unit = models.CharField(
        _('unit of measure'), max_length=8,
        choices=UnitChoices.choices, default=UnitChoices.PIECE,
    )
    requires_serial = models.BooleanField(
        _('requires serial number'), default=False,
        help_text=_('Each unit is tracked individually by serial number'),
    )
    warranty_days = models.PositiveIntegerField(
        _('warranty (days)'), default=0,
        help_text=_('Warranty window opened when a unit is deployed to a site'),
    )
    stock_min_level = models.DecimalField(
        _('minimum stock level'), max_digits=12, decimal_places=2,
        default=Decimal('0'),
        help_text=_('Free stock below this level is reported as low'),
    )
    is_archived = models.BooleanField(_('archived'), default=False, db_index=True)
    description = models.TextField(_('description'), blank=True)

    class Meta:
        verbose_name = _('product')
        verbose_name_plural = _('products')
        ordering = ['name']
        indexes = [
            models.Index(fields=['is_archived', 'is_deleted'], name='product_active_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['sku'],
                condition=models.Q(is_deleted=False) & ~models.Q(sku=''),
                name='unique_active_product_sku',
            ),
            models.CheckConstraint(
                condition=models.Q(stock_min_level__gte=0),
                name='product_min_level_non_negative',
            ),
        ]

    def __str__(self):
        return f'{self.name} ({self.sku})' if self.sku else self.name

    @property
    def warranty_period(self) -> timedelta:
        return timedelta(days=self.warranty_days or 0)

    @property
    def is_available(self) -> bool:
        """Only active, non-archived products can receive new stock."""
        return not self.is_archived and not self.is_deleted
