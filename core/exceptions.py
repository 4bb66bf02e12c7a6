"""
Core — Exception Handling

Domain exceptions raised by the inventory engine and the DRF exception
handler that renders them in the standard API error envelope.

@file core/exceptions.py
"""

import logging

from django.core.exceptions import PermissionDenied, ValidationError
from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger('installstock')


# ---------------------------------------------------------------------------
# Domain exceptions
# ---------------------------------------------------------------------------

class BusinessRuleViolation(APIException):
    """Malformed or disallowed input, raised before any mutation happens."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Business rule violation.'
    default_code = 'BUSINESS_RULE_VIOLATION'


class InvalidStateTransition(BusinessRuleViolation):
    """Raised when a lot or supply request cannot move to the requested state."""
    default_detail = 'Invalid state transition.'
    default_code = 'INVALID_STATE_TRANSITION'


class MissingSerialNumbers(BusinessRuleViolation):
    """
    A batch deployment of serialized products lacks serial numbers.

    The caller may confirm and resend with ``allow_missing_serials``.
    ``lots`` maps lot id -> (serials required, serials supplied).
    """
    default_detail = 'Serial numbers missing for serialized products.'
    default_code = 'MISSING_SERIAL_NUMBERS'

    def __init__(self, lots=None, detail=None, code=None):
        self.lots = dict(lots or {})
        if detail is None and self.lots:
            parts = [
                f'{lot_id}: {supplied}/{required}'
                for lot_id, (required, supplied) in self.lots.items()
            ]
            detail = f'Serial numbers missing for {len(self.lots)} line(s) ({"; ".join(parts)}).'
        super().__init__(detail=detail, code=code)


class InvariantViolation(APIException):
    """A write would break a lot store invariant. Last line of defence."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Lot invariant violation.'
    default_code = 'INVARIANT_VIOLATION'


class InsufficientQuantityError(APIException):
    """Requested quantity exceeds what a lot (or a product's stock) holds."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Insufficient quantity for this operation.'
    default_code = 'INSUFFICIENT_QUANTITY'

    def __init__(self, detail=None, code=None, *, lot_id=None, requested=None, available=None):
        self.lot_id = lot_id
        self.requested = requested
        self.available = available
        if detail is None and requested is not None:
            target = f'lot {lot_id}' if lot_id else 'stock'
            detail = f'Insufficient quantity on {target}: requested={requested}, available={available}.'
        super().__init__(detail=detail, code=code)


class DuplicateResourceError(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Resource already exists.'
    default_code = 'DUPLICATE_RESOURCE'


class ResourceNotFoundError(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Resource not found.'
    default_code = 'RESOURCE_NOT_FOUND'


# ---------------------------------------------------------------------------
# Standard exception handler
# ---------------------------------------------------------------------------

def standard_exception_handler(exc, context):
    """
    Wraps every error response in the standard envelope:
      { "success": false, "errors": {...}, "code": "ERROR_CODE" }
    """
    if isinstance(exc, Http404):
        exc = ResourceNotFoundError()
    elif isinstance(exc, PermissionDenied):
        exc = APIException(detail='Permission denied.', code='PERMISSION_DENIED')
        exc.status_code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, ValidationError):
        data = {
            'success': False,
            'errors': exc.message_dict if hasattr(exc, 'message_dict') else {'detail': exc.messages},
            'code': 'VALIDATION_ERROR',
        }
        return Response(data, status=status.HTTP_400_BAD_REQUEST)

    response = exception_handler(exc, context)

    if response is not None:
        code = getattr(exc, 'default_code', 'ERROR')

        if isinstance(response.data, dict):
            errors = response.data
            code = response.data.pop('code', code) if 'code' in response.data else code
        elif isinstance(response.data, list):
            errors = {'detail': response.data}
        else:
            errors = {'detail': [str(response.data)]}

        if isinstance(exc, InsufficientQuantityError) and exc.requested is not None:
            errors['lot_id'] = str(exc.lot_id) if exc.lot_id else None
            errors['requested'] = str(exc.requested)
            errors['available'] = str(exc.available)
        elif isinstance(exc, MissingSerialNumbers):
            errors['lots'] = {
                str(lot_id): {'required': str(required), 'supplied': supplied}
                for lot_id, (required, supplied) in exc.lots.items()
            }

        response.data = {
            'success': False,
            'errors': errors,
            'code': code,
        }

    if response is None:
        logger.exception('Unhandled exception in view: %s', exc)
        return Response(
            {'success': False, 'errors': {'detail': ['Internal server error.']}, 'code': 'INTERNAL_ERROR'},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    return response
