"""
Catalog — Serializers

@file catalog/serializers.py
"""

from rest_framework import serializers

from .models import Product


class ProductReadSerializer(serializers.ModelSerializer):
    unit_display = serializers.CharField(source='get_unit_display', read_only=True)

    class Meta:
        model = Product
        fields = [
            'id', 'name', 'sku', 'unit', 'unit_display',
            'requires_serial', 'warranty_days', 'stock_min_level',
            'is_archived', 'description',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields


class LowStockProductSerializer(ProductReadSerializer):
    free_stock = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta(ProductReadSerializer.Meta):
        fields = [*ProductReadSerializer.Meta.fields, 'free_stock']
        read_only_fields = fields
