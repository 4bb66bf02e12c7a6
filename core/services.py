"""
Core — Audit Service

Writes AuditLog rows and turns model instances into JSON-safe snapshots.

@file core/services.py
"""

import logging
from decimal import Decimal
from typing import Any

from django.forms.models import model_to_dict

from core.models import AuditLog

logger = logging.getLogger('installstock')


class AuditService:
    """Centralised audit logging for writes outside the lot history."""

    @staticmethod
    def log(
        *,
        actor,
        action: str,
        model_name: str,
        object_id: str,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
    ) -> AuditLog:
        return AuditLog.objects.create(
            actor=actor,
            action=action,
            model_name=model_name,
            object_id=str(object_id),
            old_values=_json_safe(old_values),
            new_values=_json_safe(new_values),
        )

    @staticmethod
    def snapshot(instance, fields=None) -> dict[str, Any]:
        """
        Serialise a model instance to a plain dict suitable for JSON
        storage. Decimals and UUIDs become strings, datetimes ISO strings.
        """
        return _json_safe(model_to_dict(instance, fields=fields))


def _json_safe(values: dict[str, Any] | None) -> dict[str, Any] | None:
    if values is None:
        return None
    cleaned: dict[str, Any] = {}
    for key, value in values.items():
        if value is None:
            cleaned[key] = None
        elif isinstance(value, Decimal):
            cleaned[key] = str(value)
        elif hasattr(value, 'isoformat'):
            cleaned[key] = value.isoformat()
        elif hasattr(value, 'hex'):
            cleaned[key] = str(value)
        elif hasattr(value, 'pk'):
            cleaned[key] = str(value.pk)
        else:
            cleaned[key] = value
    return cleaned
