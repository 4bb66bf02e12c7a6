"""
Inventory — Filters

@file inventory/filters.py
"""

import django_filters

from .models import HistoryEntry, Lot


class LotFilter(django_filters.FilterSet):
    product = django_filters.UUIDFilter(field_name='product_id')
    status = django_filters.MultipleChoiceFilter(choices=Lot._meta.get_field('status').choices)
    site_id = django_filters.UUIDFilter()
    reserved_for_document_id = django_filters.UUIDFilter()
    serial_number = django_filters.CharFilter()
    has_serial = django_filters.BooleanFilter(field_name='serial_number', lookup_expr='isnull', exclude=True)
    under_warranty_on = django_filters.IsoDateTimeFilter(method='filter_under_warranty_on')

    class Meta:
        model = Lot
        fields = ['product', 'status', 'site_id', 'reserved_for_document_id', 'serial_number']

    def filter_under_warranty_on(self, queryset, name, value):
        return queryset.filter(warranty_start__lte=value, warranty_end__gt=value, status='DEPLOYED')


class HistoryEntryFilter(django_filters.FilterSet):
    action_type = django_filters.MultipleChoiceFilter(choices=HistoryEntry.ActionType.choices)
    shipment_id = django_filters.UUIDFilter()
    document_id = django_filters.UUIDFilter()

    class Meta:
        model = HistoryEntry
        fields = ['action_type', 'shipment_id', 'document_id']
