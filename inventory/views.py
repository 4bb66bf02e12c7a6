"""
Inventory — Views

Lot listing plus one action per lot operation. Every action validates
its input with a serializer and delegates to inventory.services (or
allocation.services for reservations).

@file inventory/views.py
"""

from django.shortcuts import get_object_or_404
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from core.pagination import HistoryCursorPagination
from core.permissions import CanMoveStock, CanWriteOffStock

from .filters import HistoryEntryFilter, LotFilter
from .history import HistoryService
from .models import Lot
from .serializers import (
    AssignSerialSerializer,
    BatchDeploySerializer,
    CorrectSerializer,
    DeploySerializer,
    HistoryEntryReadSerializer,
    LotReadSerializer,
    LotReplaySerializer,
    ReceiveSerializer,
    ReleaseSerializer,
    ReplaceSerializer,
    ReserveSerializer,
    ReturnSerializer,
    ScrapSerializer,
)
from .services import (
    DeploymentRequest,
    DeploymentService,
    LotCorrectionService,
    ReceptionService,
    ReplacementService,
    ReturnService,
    ScrapService,
)


def _lot_response(lot, status_code=status.HTTP_200_OK):
    return Response({'success': True, 'data': LotReadSerializer(lot).data}, status=status_code)


class LotViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Stock lots.

    Listing and history are open to any authenticated user. Moving stock
    requires an operator role; scrap, replacement and corrections require
    warehouse or manager.
    """

    serializer_class = LotReadSerializer
    permission_classes = [IsAuthenticated, CanMoveStock]
    filterset_class = LotFilter
    search_fields = ['serial_number', 'product__name', 'product__sku']
    ordering_fields = ['created_at', 'quantity', 'warranty_end']
    ordering = ['created_at', 'id']

    def get_queryset(self):
        return Lot.objects.filter(is_deleted=False).select_related('product')

    # --- Reception / Deployment ---

    @action(detail=False, methods=['post'], url_path='receive')
    def receive(self, request):
        ser = ReceiveSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        lots = ReceptionService.receive(
            product_id=data['product'],
            quantity=data['quantity'],
            unit_cost=data['unit_cost'],
            serial_number=data.get('serial_number'),
            split_into_units=data['split_into_units'],
            comment=data['comment'],
            actor=request.user,
        )
        return Response(
            {'success': True, 'data': LotReadSerializer(lots, many=True).data},
            status=status.HTTP_201_CREATED,
        )

    @action(detail=False, methods=['post'], url_path='deploy-batch')
    def deploy_batch(self, request):
        ser = BatchDeploySerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        shipment = DeploymentService.deploy_batch(
            items=[
                DeploymentRequest(
                    lot_id=item['lot_id'],
                    quantity=item['quantity'],
                    serials=tuple(item['serials']),
                )
                for item in data['items']
            ],
            site_id=data['site_id'],
            allow_missing_serials=data['allow_missing_serials'],
            comment=data['comment'],
            actor=request.user,
        )
        by_id = Lot.objects.select_related('product').in_bulk(shipment.deployed_lot_ids)
        lots = [by_id[lot_id] for lot_id in shipment.deployed_lot_ids]
        return Response(
            {
                'success': True,
                'data': {
                    'shipment_id': str(shipment.shipment_id),
                    'lots': LotReadSerializer(lots, many=True).data,
                },
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=['post'], url_path='deploy')
    def deploy(self, request, pk=None):
        ser = DeploySerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        lot = DeploymentService.deploy(lot_id=pk, actor=request.user, **ser.validated_data)
        return _lot_response(lot)

    # --- Return / Replacement / Scrap ---

    @action(detail=True, methods=['post'], url_path='return')
    def return_to_stock(self, request, pk=None):
        ser = ReturnSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        lot = ReturnService.return_to_stock(lot_id=pk, actor=request.user, **ser.validated_data)
        return _lot_response(lot)

    @action(
        detail=True, methods=['post'], url_path='replace',
        permission_classes=[IsAuthenticated, CanWriteOffStock],
    )
    def replace(self, request, pk=None):
        ser = ReplaceSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        replacement = ReplacementService.replace(old_lot_id=pk, actor=request.user, **ser.validated_data)
        return Response({
            'success': True,
            'data': {
                'scrapped_lot': LotReadSerializer(replacement.scrapped_lot).data,
                'deployed_lot': LotReadSerializer(replacement.deployed_lot).data,
            },
        })

    @action(
        detail=True, methods=['post'], url_path='scrap',
        permission_classes=[IsAuthenticated, CanWriteOffStock],
    )
    def scrap(self, request, pk=None):
        ser = ScrapSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        lot = ScrapService.scrap(lot_id=pk, actor=request.user, **ser.validated_data)
        return _lot_response(lot)

    # --- Corrections ---

    @action(
        detail=True, methods=['post'], url_path='correct',
        permission_classes=[IsAuthenticated, CanWriteOffStock],
    )
    def correct(self, request, pk=None):
        ser = CorrectSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        lot = LotCorrectionService.correct(lot_id=pk, actor=request.user, **ser.validated_data)
        return _lot_response(lot)

    @action(
        detail=True, methods=['post'], url_path='assign-serial',
        permission_classes=[IsAuthenticated, CanWriteOffStock],
    )
    def assign_serial(self, request, pk=None):
        ser = AssignSerialSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        lot = LotCorrectionService.assign_serial(lot_id=pk, actor=request.user, **ser.validated_data)
        return _lot_response(lot)

    # --- Reservations ---

    @action(detail=True, methods=['post'], url_path='reserve')
    def reserve(self, request, pk=None):
        from allocation.services import ReservationService

        ser = ReserveSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        lot = ReservationService.reserve(lot_id=pk, actor=request.user, **ser.validated_data)
        return _lot_response(lot)

    @action(detail=True, methods=['post'], url_path='release')
    def release(self, request, pk=None):
        from allocation.services import ReservationService

        ser = ReleaseSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        lot = ReservationService.release(lot_id=pk, actor=request.user, **ser.validated_data)
        return _lot_response(lot)

    # --- History ---

    @action(detail=True, methods=['get'], url_path='history')
    def history(self, request, pk=None):
        lot = get_object_or_404(Lot, pk=pk)
        include_splits = request.query_params.get('include_splits', '').lower() in ('1', 'true', 'yes')
        entries = HistoryEntryFilter(
            request.query_params,
            queryset=HistoryService.for_lot(lot.pk, include_splits=include_splits),
        ).qs
        paginator = HistoryCursorPagination()
        page = paginator.paginate_queryset(entries, request, view=self)
        ser = HistoryEntryReadSerializer(page, many=True)
        return paginator.get_paginated_response(ser.data)

    @action(detail=True, methods=['get'], url_path='replay')
    def replay(self, request, pk=None):
        lot = get_object_or_404(Lot, pk=pk)
        state = HistoryService.replay(lot.pk)
        return Response({'success': True, 'data': LotReplaySerializer(state).data})
