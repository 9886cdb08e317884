import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """Base class for rule violations raised by the service layer.

    Services raise these without knowing about HTTP; the API exception
    handler turns them into a response using ``status_code`` and ``code``.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    code = 'domain_error'
    default_message = 'Request could not be processed'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_dict(self):
        return {'success': False, 'code': self.code, 'message': self.message}


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    code = 'not_found'
    default_message = 'Resource not found'


class ForbiddenError(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    code = 'forbidden'
    default_message = 'You are not allowed to perform this action'


class ConflictError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = 'conflict'
    default_message = 'The resource was modified concurrently, please retry'


def api_exception_handler(exc, context):
    """Render domain errors and DRF errors with one response shape."""
    if isinstance(exc, DomainError):
        view = context.get('view')
        logger.warning(
            f"{exc.code} in {view.__class__.__name__ if view else 'unknown view'}: {exc.message}"
        )
        return Response(exc.as_dict(), status=exc.status_code)

    response = exception_handler(exc, context)
    if response is None:
        # Unhandled: let Django log it and answer 500
        return None

    detail = response.data
    if isinstance(detail, dict) and 'detail' in detail:
        message = str(detail['detail'])
        code = getattr(detail['detail'], 'code', 'error')
        errors = None
    else:
        message = 'Validation failed'
        code = 'validation_error'
        errors = detail

    response.data = {'success': False, 'code': code, 'message': message}
    if errors is not None:
        response.data['errors'] = errors
    return response
