"""
Catalog — Django Admin Configuration

Products are maintained here; the inventory engine only reads them.

@file catalog/admin.py
"""

from django.contrib import admin
from django.db.models import Q, Sum
from django.utils.translation import gettext_lazy as _

from .models import Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = (
        'name', 'sku', 'unit', 'requires_serial', 'warranty_days',
        'stock_min_level', 'free_stock', 'is_archived', 'created_at',
    )
    list_filter = ('requires_serial', 'unit', 'is_archived', 'is_deleted')
    search_fields = ('name', 'sku')
    readonly_fields = ('id', 'created_at', 'updated_at', 'created_by', 'updated_by')
    list_per_page = 30
    ordering = ('name',)

    fieldsets = (
        (_('Product'), {
            'fields': ('id', 'name', 'sku', 'unit', 'description'),
        }),
        (_('Stock tracking'), {
            'fields': ('requires_serial', 'warranty_days', 'stock_min_level', 'is_archived'),
        }),
        (_('Audit'), {
            'fields': ('created_at', 'updated_at', 'created_by', 'updated_by'),
            'classes': ('collapse',),
        }),
    )

    def get_queryset(self, request):
        return super().get_queryset(request).annotate(
            _free_stock=Sum(
                'lots__quantity',
                filter=Q(lots__status='IN_STOCK', lots__is_deleted=False),
            ),
        )

    @admin.display(description=_('Free stock'), ordering='_free_stock')
    def free_stock(self, obj):
        return obj._free_stock or 0

    def save_model(self, request, obj, form, change):
        obj._current_user = request.user
        if change:
            obj.updated_by = request.user
        else:
            obj.created_by = request.user
        super().save_model(request, obj, form, change)
