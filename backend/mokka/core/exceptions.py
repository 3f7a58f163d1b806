"""
Error taxonomy for the reservation core and the FastAPI handlers that render it.

Services raise these; route handlers never build HTTP errors themselves.
Request-scoped errors (not found, invalid, conflict, forbidden) are expected
and returned with a human-readable message. Internal errors mean a bug or a
corrupted store: they are logged with a stack trace and surfaced generically.
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse

from mokka.core.logging import get_logger

logger = get_logger(__name__)


class BookingError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class InvalidRequestError(BookingError):
    """A static constraint is violated; resubmitting the same request can never succeed."""

    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(BookingError):
    """A constraint that depends on current state (seats left, existing bookings)."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, reason: str = "conflict"):
        super().__init__(message)
        self.reason = reason


class VerificationFailedError(ConflictError):
    # Mismatched, expired, consumed or wrong-action codes are reported as a bad request
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, reason: str = "verification_failed"):
        super().__init__(message, reason)


class ForbiddenError(BookingError):
    status_code = status.HTTP_403_FORBIDDEN


class AuthenticationError(BookingError):
    status_code = status.HTTP_401_UNAUTHORIZED


class InternalError(BookingError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class CapacityInvariantError(InternalError):
    """A capacity adjustment would push reserved outside [0, capacity]."""


class ReservationCodeExhaustedError(InternalError):
    """No unused reservation code found within the retry bound."""


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    if isinstance(exc, InternalError):
        logger.error(
            "internal_error",
            error_type=type(exc).__name__,
            error=exc.message,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": "Something went wrong while processing the reservation"},
        )

    content = {"detail": exc.message}
    if isinstance(exc, ConflictError):
        content["reason"] = exc.reason

    logger.info(
        "request_rejected",
        error_type=type(exc).__name__,
        status_code=exc.status_code,
        detail=exc.message,
    )
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", error=str(exc), exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


EXCEPTION_HANDLERS = {
    BookingError: booking_error_handler,
    Exception: unhandled_exception_handler,
}


def register_exception_handlers(app) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
