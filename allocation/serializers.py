"""
Allocation — Serializers

@file allocation/serializers.py
"""

from rest_framework import serializers

from inventory.serializers import money_field, quantity_field

from .models import SupplyRequest, SupplyRequestItem


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

class AvailabilityQuerySerializer(serializers.Serializer):
    product = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)


class ProductAvailabilitySerializer(serializers.Serializer):
    product_id = serializers.UUIDField(read_only=True)
    reserved = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    free = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    total = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)


class DocumentReserveSerializer(serializers.Serializer):
    product = serializers.UUIDField()
    quantity = quantity_field()


class FulfillmentLineSerializer(serializers.Serializer):
    product = serializers.UUIDField()
    quantity = quantity_field()


class FulfillSerializer(serializers.Serializer):
    site_id = serializers.UUIDField()
    lines = FulfillmentLineSerializer(many=True, allow_empty=False)
    create_supply_request = serializers.BooleanField(default=False)
    note = serializers.CharField(required=False, allow_blank=True, default='')


class LineOutcomeSerializer(serializers.Serializer):
    product_id = serializers.UUIDField(read_only=True)
    requested = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    from_reserved = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    from_free = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    shipped = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    outstanding = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    deployed_lot_ids = serializers.ListField(child=serializers.UUIDField(), read_only=True)


class FulfillmentResultSerializer(serializers.Serializer):
    document_id = serializers.UUIDField(read_only=True)
    site_id = serializers.UUIDField(read_only=True)
    shipment_id = serializers.UUIDField(read_only=True)
    status = serializers.CharField(read_only=True)
    is_partial = serializers.BooleanField(read_only=True)
    lines = LineOutcomeSerializer(many=True, read_only=True)


# ---------------------------------------------------------------------------
# Supply requests
# ---------------------------------------------------------------------------

class SupplyRequestItemReadSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source='product.name', read_only=True)
    status_display = serializers.CharField(source='get_status_display', read_only=True)

    class Meta:
        model = SupplyRequestItem
        fields = [
            'id', 'request', 'product', 'product_name',
            'quantity_needed', 'quantity_ordered',
            'status', 'status_display',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields


class SupplyRequestReadSerializer(serializers.ModelSerializer):
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    items = serializers.SerializerMethodField()

    class Meta:
        model = SupplyRequest
        fields = [
            'id', 'document_id', 'status', 'status_display', 'note',
            'items', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_items(self, obj):
        items = obj.items.filter(is_deleted=False).select_related('product')
        return SupplyRequestItemReadSerializer(items, many=True).data


class MarkOrderedSerializer(serializers.Serializer):
    quantity_ordered = quantity_field()


class ReceiveItemSerializer(serializers.Serializer):
    unit_cost = money_field()
    quantity = quantity_field(required=False)
    split_into_units = serializers.BooleanField(default=False)
