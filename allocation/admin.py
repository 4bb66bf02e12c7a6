"""
Allocation — Django Admin Configuration

@file allocation/admin.py
"""

from django.contrib import admin
from django.utils.translation import gettext_lazy as _

from .models import SupplyRequest, SupplyRequestItem


class SupplyRequestItemInline(admin.TabularInline):
    model = SupplyRequestItem
    extra = 0
    fields = ('product', 'quantity_needed', 'quantity_ordered', 'status')
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(SupplyRequest)
class SupplyRequestAdmin(admin.ModelAdmin):
    list_display = ('id', 'document_id', 'status', 'items_count', 'created_at')
    list_filter = ('status', 'is_deleted')
    search_fields = ('document_id', 'note')
    readonly_fields = ('id', 'document_id', 'status', 'created_at', 'updated_at', 'created_by', 'updated_by')
    date_hierarchy = 'created_at'
    ordering = ('-created_at',)
    inlines = [SupplyRequestItemInline]

    @admin.display(description=_('Items'))
    def items_count(self, obj):
        return obj.items.filter(is_deleted=False).count()


@admin.register(SupplyRequestItem)
class SupplyRequestItemAdmin(admin.ModelAdmin):
    list_display = ('product', 'request', 'quantity_needed', 'quantity_ordered', 'status', 'created_at')
    list_filter = ('status',)
    search_fields = ('product__name', 'product__sku')
    raw_id_fields = ('request', 'product')
    list_select_related = ('product', 'request')
    readonly_fields = ('id', 'status', 'created_at', 'updated_at', 'created_by', 'updated_by')
