"""
Catalog — Service Layer

Product maintenance and the read accessor the inventory engine uses to
resolve product references.

@file catalog/services.py
"""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction

from core.exceptions import BusinessRuleViolation, ResourceNotFoundError

from .models import Product

logger = logging.getLogger('installstock')


class ProductService:
    """Catalog maintenance. Audit rows are written by catalog.signals."""

    @staticmethod
    def get_product(product_id, *, require_available: bool = True) -> Product:
        """Resolve a product reference; archived products only when asked."""
        try:
            product = Product.objects.get(pk=product_id, is_deleted=False)
        except (Product.DoesNotExist, DjangoValidationError, ValueError):
            raise ResourceNotFoundError(detail=f'Product {product_id} not found.')
        if require_available and product.is_archived:
            raise ResourceNotFoundError(detail=f'Product {product_id} is archived.')
        return product

    @staticmethod
    @transaction.atomic
    def create_product(*, actor=None, **fields) -> Product:
        product = Product(**fields)
        product.full_clean()
        product.created_by = actor
        product._current_user = actor
        product.save()
        logger.info('Product %s created by %s.', product.pk, actor)
        return product

    @staticmethod
    @transaction.atomic
    def update_product(*, product_id, actor=None, **fields) -> Product:
        try:
            product = Product.objects.select_for_update().get(pk=product_id, is_deleted=False)
        except Product.DoesNotExist:
            raise ResourceNotFoundError()

        if 'requires_serial' in fields and fields['requires_serial'] != product.requires_serial:
            if product.lots.filter(is_deleted=False).exists():
                raise BusinessRuleViolation(
                    detail='Cannot change serial tracking of a product that has stock lots.',
                )

        for field, value in fields.items():
            if hasattr(product, field) and field not in ('id', 'pk'):
                setattr(product, field, value)

        product.updated_by = actor
        product._current_user = actor
        product.full_clean()
        product.save()
        return product

    @staticmethod
    @transaction.atomic
    def archive_product(*, product_id, actor=None) -> Product:
        product = ProductService.update_product(
            product_id=product_id, actor=actor, is_archived=True,
        )
        logger.info('Product %s archived by %s.', product.pk, actor)
        return product
