"""Error taxonomy for the booking service.

Every error is an ``HTTPException`` so handlers raise them the same way they
raise FastAPI's own, and the registered handler adds a machine readable
``code`` next to ``detail``.
"""

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class BookingError(HTTPException):
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'invalid_request'

    def __init__(self, detail: str, **extra) -> None:
        super().__init__(status_code=self.status_code, detail=detail)
        self.extra = extra


class BadRequestError(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'invalid_request'


class AuthenticationError(BookingError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = 'unauthenticated'


class PermissionDeniedError(BookingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = 'forbidden'


class NotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = 'not_found'


class ConflictError(BookingError):
    status_code = status.HTTP_409_CONFLICT
    code = 'conflict'


class PaymentCapturedConflictError(ConflictError):
    """The payment went through but the slot was taken by someone else.

    The appointment row is kept in ``failed`` state with ``requires_refund``
    set so support can reconcile it.
    """

    code = 'payment_captured_slot_unavailable'


class PaymentIntegrityError(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'payment_signature_invalid'


class UpstreamError(BookingError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = 'payment_gateway_error'


class StorageError(BookingError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = 'storage_unavailable'


def storage_unavailable() -> StorageError:
    return StorageError('Database unavailable. Verify DATABASE_URL and database credentials.')


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error('%s %s failed: %s', request.method, request.url.path, exc.detail)

    content = {'detail': exc.detail, 'code': exc.code}
    content.update(exc.extra)
    return JSONResponse(status_code=exc.status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, booking_error_handler)
