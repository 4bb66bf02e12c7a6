"""
Tests — Catalog service layer.

@file catalog/tests/test_services.py
"""

import uuid
from decimal import Decimal

import pytest

from catalog.models import Product
from catalog.services import ProductService
from core.exceptions import BusinessRuleViolation, ResourceNotFoundError
from core.models import AuditLog
from tests.factories import LotFactory, ProductFactory, UserFactory


pytestmark = pytest.mark.django_db


class TestGetProduct:

    def test_get_product(self):
        product = ProductFactory()
        assert ProductService.get_product(product.pk) == product

    def test_invalid_id(self):
        with pytest.raises(ResourceNotFoundError):
            ProductService.get_product('not-a-uuid')
        with pytest.raises(ResourceNotFoundError):
            ProductService.get_product(uuid.uuid4())

    def test_archived_only_on_request(self):
        product = ProductFactory(is_archived=True)
        with pytest.raises(ResourceNotFoundError):
            ProductService.get_product(product.pk)
        assert ProductService.get_product(product.pk, require_available=False) == product

    def test_deleted_product_not_found(self):
        product = ProductFactory(is_deleted=True)
        with pytest.raises(ResourceNotFoundError):
            ProductService.get_product(product.pk, require_available=False)


class TestProductMaintenance:

    def test_create_product_is_audited(self):
        user = UserFactory()
        product = ProductService.create_product(
            actor=user, name='Smart lock', sku='LCK-01', requires_serial=True, warranty_days=730,
        )
        assert product.warranty_period.days == 730
        log = AuditLog.objects.get(model_name='Product', object_id=str(product.pk))
        assert log.action == AuditLog.ActionChoices.CREATE
        assert log.actor == user

    def test_update_product_records_old_values(self):
        product = ProductFactory(stock_min_level=Decimal('1'))
        ProductService.update_product(product_id=product.pk, stock_min_level=Decimal('4'))
        log = AuditLog.objects.filter(
            model_name='Product', object_id=str(product.pk), action=AuditLog.ActionChoices.UPDATE,
        ).get()
        assert log.old_values['stock_min_level'] == '1.00'
        assert log.new_values['stock_min_level'] == '4'

    def test_cannot_toggle_serial_tracking_with_stock(self):
        product = ProductFactory()
        LotFactory(product=product)
        with pytest.raises(BusinessRuleViolation):
            ProductService.update_product(product_id=product.pk, requires_serial=True)

    def test_toggle_serial_tracking_without_stock(self):
        product = ProductFactory()
        ProductService.update_product(product_id=product.pk, requires_serial=True)
        assert Product.objects.get(pk=product.pk).requires_serial

    def test_archive(self):
        product = ProductFactory()
        ProductService.archive_product(product_id=product.pk)
        product.refresh_from_db()
        assert product.is_archived
        assert not product.is_available

    def test_update_unknown_product(self):
        with pytest.raises(ResourceNotFoundError):
            ProductService.update_product(product_id=uuid.uuid4(), name='x')
