"""
Allocation — URL Configuration

@file allocation/urls.py
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import DocumentViewSet, SupplyRequestItemViewSet, SupplyRequestViewSet

app_name = 'allocation'

router = DefaultRouter()
router.register('documents', DocumentViewSet, basename='document')
router.register('supply-requests', SupplyRequestViewSet, basename='supply-request')
router.register('supply-request-items', SupplyRequestItemViewSet, basename='supply-request-item')

urlpatterns = [
    path('', include(router.urls)),
]
