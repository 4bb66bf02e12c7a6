"""
Inventory — Django Admin Configuration

Lots and their history are read-only here: every change of a lot goes
through inventory.services so that the invariants hold and a history
entry is written.

@file inventory/admin.py
"""

from django.contrib import admin
from django.utils.html import format_html
from django.utils.translation import gettext_lazy as _

from .models import HistoryEntry, Lot

STATUS_COLORS = {
    'IN_STOCK': '#22c55e',
    'RESERVED': '#3b82f6',
    'DEPLOYED': '#7c3aed',
    'SCRAPPED': '#6b7280',
    'MAINTENANCE': '#f97316',
}


def _badge(color, label):
    return format_html(
        '<span style="background:{};color:#fff;padding:2px 8px;'
        'border-radius:4px;font-size:11px;font-weight:600;">{}</span>',
        color, label,
    )


class HistoryEntryInline(admin.TabularInline):
    model = HistoryEntry
    fk_name = 'lot'
    extra = 0
    can_delete = False
    fields = ('id', 'action_type', 'quantity', 'from_site_id', 'to_site_id', 'document_id', 'actor', 'created_at')
    readonly_fields = fields
    ordering = ('id',)

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Lot)
class LotAdmin(admin.ModelAdmin):
    list_display = (
        'product', 'serial_number', 'quantity', 'unit_cost',
        'status_badge', 'site_id', 'reserved_for_document_id',
        'warranty_end', 'created_at',
    )
    list_filter = ('status', 'product__requires_serial', 'is_deleted')
    search_fields = ('serial_number', 'product__name', 'product__sku', 'site_id', 'reserved_for_document_id')
    raw_id_fields = ('product', 'source_lot')
    list_select_related = ('product',)
    date_hierarchy = 'created_at'
    show_full_result_count = False
    list_per_page = 50
    ordering = ('-created_at',)
    inlines = [HistoryEntryInline]

    fieldsets = (
        (_('Lot'), {
            'fields': ('id', 'product', 'serial_number', 'quantity', 'unit_cost', 'source_lot'),
        }),
        (_('State'), {
            'fields': ('status', 'site_id', 'reserved_for_document_id', 'warranty_start', 'warranty_end'),
        }),
        (_('Audit'), {
            'fields': ('created_at', 'updated_at', 'created_by', 'updated_by'),
            'classes': ('collapse',),
        }),
        (_('Soft Delete'), {
            'fields': ('is_deleted', 'deleted_at', 'deleted_by'),
            'classes': ('collapse',),
        }),
    )

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    @admin.display(description=_('Status'), ordering='status')
    def status_badge(self, obj):
        return _badge(STATUS_COLORS.get(obj.status, '#6b7280'), obj.get_status_display())


@admin.register(HistoryEntry)
class HistoryEntryAdmin(admin.ModelAdmin):
    list_display = ('id', 'action_type', 'lot', 'quantity', 'to_site_id', 'document_id', 'actor', 'created_at')
    list_filter = ('action_type',)
    search_fields = ('lot__serial_number', 'lot__product__name', 'comment')
    list_select_related = ('lot', 'lot__product', 'actor')
    date_hierarchy = 'created_at'
    show_full_result_count = False
    list_per_page = 50
    ordering = ('-id',)

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
