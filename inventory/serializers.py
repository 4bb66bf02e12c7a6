"""
Inventory — Serializers

Read serializers for lots and their history, and input serializers for
each lot operation. Input serializers only shape and type-check the
request; business rules are enforced by inventory.services.

@file inventory/serializers.py
"""

from decimal import Decimal

from rest_framework import serializers

from .models import HistoryEntry, Lot, ReplacementReason, ReturnReason


def quantity_field(**kwargs):
    kwargs.setdefault('min_value', Decimal('0.01'))
    return serializers.DecimalField(max_digits=12, decimal_places=2, **kwargs)


def money_field(**kwargs):
    kwargs.setdefault('min_value', Decimal('0'))
    return serializers.DecimalField(max_digits=14, decimal_places=2, **kwargs)


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------

class LotReadSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source='product.name', read_only=True)
    product_unit = serializers.CharField(source='product.unit', read_only=True)
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    is_under_warranty = serializers.BooleanField(read_only=True)

    class Meta:
        model = Lot
        fields = [
            'id', 'product', 'product_name', 'product_unit',
            'serial_number', 'quantity', 'unit_cost',
            'status', 'status_display',
            'site_id', 'reserved_for_document_id',
            'warranty_start', 'warranty_end', 'is_under_warranty',
            'source_lot',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields


class HistoryEntryReadSerializer(serializers.ModelSerializer):
    action_display = serializers.CharField(source='get_action_type_display', read_only=True)
    actor_username = serializers.CharField(source='actor.username', read_only=True, default=None)

    class Meta:
        model = HistoryEntry
        fields = [
            'id', 'lot', 'source_lot',
            'action_type', 'action_display', 'quantity',
            'from_site_id', 'to_site_id', 'document_id', 'shipment_id',
            'actor', 'actor_username', 'comment', 'created_at',
        ]
        read_only_fields = fields


class LotReplaySerializer(serializers.Serializer):
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    status = serializers.CharField(read_only=True, allow_null=True)


# ---------------------------------------------------------------------------
# Operation input
# ---------------------------------------------------------------------------

class ReceiveSerializer(serializers.Serializer):
    product = serializers.UUIDField()
    quantity = quantity_field()
    unit_cost = money_field()
    serial_number = serializers.CharField(max_length=100, required=False, allow_blank=True, allow_null=True)
    split_into_units = serializers.BooleanField(default=False)
    comment = serializers.CharField(required=False, allow_blank=True, default='')


class DeploySerializer(serializers.Serializer):
    quantity = quantity_field()
    site_id = serializers.UUIDField()
    serial_number = serializers.CharField(max_length=100, required=False, allow_blank=True, allow_null=True)
    comment = serializers.CharField(required=False, allow_blank=True, default='')


class DeploymentLineSerializer(serializers.Serializer):
    lot_id = serializers.UUIDField()
    quantity = quantity_field()
    serials = serializers.ListField(
        child=serializers.CharField(max_length=100), required=False, default=list,
    )


class BatchDeploySerializer(serializers.Serializer):
    site_id = serializers.UUIDField()
    items = DeploymentLineSerializer(many=True, allow_empty=False)
    allow_missing_serials = serializers.BooleanField(default=False)
    comment = serializers.CharField(required=False, allow_blank=True, default='')


class ReturnSerializer(serializers.Serializer):
    quantity = quantity_field()
    reason = serializers.ChoiceField(choices=ReturnReason.choices)
    comment = serializers.CharField(required=False, allow_blank=True, default='')


class ReplaceSerializer(serializers.Serializer):
    old_quantity = quantity_field()
    new_lot_id = serializers.UUIDField()
    new_quantity = quantity_field()
    reason = serializers.ChoiceField(choices=ReplacementReason.choices)
    comment = serializers.CharField(required=False, allow_blank=True, default='')


class ScrapSerializer(serializers.Serializer):
    quantity = quantity_field()
    comment = serializers.CharField(required=False, allow_blank=True, default='')


class CorrectSerializer(serializers.Serializer):
    quantity = quantity_field(min_value=Decimal('0'), required=False)
    unit_cost = money_field(required=False)
    comment = serializers.CharField(required=False, allow_blank=True, default='')

    def validate(self, attrs):
        if 'quantity' not in attrs and 'unit_cost' not in attrs:
            raise serializers.ValidationError('Provide quantity and/or unit_cost.')
        return attrs


class AssignSerialSerializer(serializers.Serializer):
    serial_number = serializers.CharField(max_length=100)
    comment = serializers.CharField(required=False, allow_blank=True, default='')


class ReserveSerializer(serializers.Serializer):
    quantity = quantity_field()
    document_id = serializers.UUIDField()
    comment = serializers.CharField(required=False, allow_blank=True, default='')


class ReleaseSerializer(serializers.Serializer):
    comment = serializers.CharField(required=False, allow_blank=True, default='')
