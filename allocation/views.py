"""
Allocation — Views

Document-level stock operations (availability, reservation, release,
fulfillment) and the supply request follow-up.

@file allocation/views.py
"""

from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from core.permissions import CanMoveStock, CanWriteOffStock
from inventory.serializers import LotReadSerializer
from inventory.services import StockQueryService

from .models import SupplyRequest, SupplyRequestItem
from .serializers import (
    AvailabilityQuerySerializer,
    DocumentReserveSerializer,
    FulfillmentResultSerializer,
    FulfillSerializer,
    MarkOrderedSerializer,
    ProductAvailabilitySerializer,
    ReceiveItemSerializer,
    SupplyRequestItemReadSerializer,
    SupplyRequestReadSerializer,
)
from .services import FulfillmentLine, FulfillmentService, ReservationService, SupplyRequestService

UUID_REGEX = r'[0-9a-fA-F-]{32,36}'


class DocumentViewSet(viewsets.ViewSet):
    """
    Stock operations keyed by sales document id. Documents live outside
    this service; only their id is known here.
    """

    permission_classes = [IsAuthenticated, CanMoveStock]
    lookup_field = 'document_id'
    lookup_value_regex = UUID_REGEX

    @action(detail=True, methods=['get'], url_path='availability')
    def availability(self, request, document_id=None):
        ser = AvailabilityQuerySerializer(data={'product': request.query_params.getlist('product')})
        ser.is_valid(raise_exception=True)
        rows = StockQueryService.availability(
            product_ids=ser.validated_data['product'], document_id=document_id,
        )
        return Response({'success': True, 'data': ProductAvailabilitySerializer(rows, many=True).data})

    @action(detail=True, methods=['post'], url_path='reserve')
    def reserve(self, request, document_id=None):
        ser = DocumentReserveSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        lots = ReservationService.reserve_product(
            product_id=ser.validated_data['product'],
            quantity=ser.validated_data['quantity'],
            document_id=document_id,
            actor=request.user,
        )
        return Response(
            {'success': True, 'data': LotReadSerializer(lots, many=True).data},
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=['post'], url_path='release')
    def release(self, request, document_id=None):
        count = ReservationService.release_document(document_id=document_id, actor=request.user)
        return Response({'success': True, 'data': {'released_count': count}})

    @action(detail=True, methods=['post'], url_path='fulfill')
    def fulfill(self, request, document_id=None):
        ser = FulfillSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        result = FulfillmentService.fulfill(
            document_id=document_id,
            site_id=data['site_id'],
            lines=[
                FulfillmentLine(product_id=line['product'], quantity=line['quantity'])
                for line in data['lines']
            ],
            actor=request.user,
        )
        payload = FulfillmentResultSerializer(result).data
        payload['supply_request'] = None
        if data['create_supply_request'] and result.shortfall:
            supply_request = SupplyRequestService.create_from_shortfall(
                result=result, actor=request.user, note=data['note'],
            )
            payload['supply_request'] = SupplyRequestReadSerializer(supply_request).data
        return Response({'success': True, 'data': payload})


class SupplyRequestViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = SupplyRequestReadSerializer
    permission_classes = [IsAuthenticated, CanWriteOffStock]
    filterset_fields = ['status', 'document_id']
    ordering_fields = ['created_at']
    ordering = ['-created_at']

    def get_queryset(self):
        return SupplyRequest.objects.filter(is_deleted=False)

    @action(detail=True, methods=['post'], url_path='cancel')
    def cancel(self, request, pk=None):
        supply_request = SupplyRequestService.cancel(request_id=pk, actor=request.user)
        return Response({'success': True, 'data': SupplyRequestReadSerializer(supply_request).data})


class SupplyRequestItemViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = SupplyRequestItemReadSerializer
    permission_classes = [IsAuthenticated, CanWriteOffStock]
    filterset_fields = ['status', 'request', 'product']
    ordering = ['created_at']

    def get_queryset(self):
        return SupplyRequestItem.objects.filter(is_deleted=False).select_related('product')

    @action(detail=True, methods=['post'], url_path='order')
    def order(self, request, pk=None):
        ser = MarkOrderedSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        item = SupplyRequestService.mark_ordered(item_id=pk, actor=request.user, **ser.validated_data)
        return Response({'success': True, 'data': SupplyRequestItemReadSerializer(item).data})

    @action(detail=True, methods=['post'], url_path='receive')
    def receive(self, request, pk=None):
        ser = ReceiveItemSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        lots = SupplyRequestService.receive_item(item_id=pk, actor=request.user, **ser.validated_data)
        return Response(
            {'success': True, 'data': LotReadSerializer(lots, many=True).data},
            status=status.HTTP_201_CREATED,
        )
