"""
Allocation — Application Configuration
"""

from django.apps import AppConfig


class AllocationConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'allocation'
    verbose_name = 'Reservations & Supply Requests'
