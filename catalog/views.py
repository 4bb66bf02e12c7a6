"""
Catalog — Views

Read-only product endpoints. Products are maintained in the Django
admin.

@file catalog/views.py
"""

from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from inventory.services import StockQueryService

from .models import Product
from .serializers import LowStockProductSerializer, ProductReadSerializer


class ProductViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = ProductReadSerializer
    permission_classes = [IsAuthenticated]
    filterset_fields = ['requires_serial', 'unit', 'is_archived']
    search_fields = ['name', 'sku']
    ordering_fields = ['name', 'sku', 'created_at']
    ordering = ['name']

    def get_queryset(self):
        return Product.objects.filter(is_deleted=False)

    @action(detail=False, methods=['get'], url_path='low-stock')
    def low_stock(self, request):
        products = StockQueryService.low_stock_products()
        page = self.paginate_queryset(products)
        if page is not None:
            ser = LowStockProductSerializer(page, many=True)
            return self.get_paginated_response(ser.data)
        ser = LowStockProductSerializer(products, many=True)
        return Response({'success': True, 'data': ser.data})
