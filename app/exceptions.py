from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from loguru import logger
from tortoise.exceptions import BaseORMException


class ValidationError(HTTPException):
    """Client-supplied data disagrees with what the server recomputes."""

    def __init__(self, detail: str = "Invalid request") -> None:
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class NotFound(HTTPException):
    def __init__(self, detail: str = "Booking not found") -> None:
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class PaymentNotCompleted(HTTPException):
    def __init__(self, detail: str = "Payment not completed") -> None:
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class BookingNotPayable(HTTPException):
    """The booking exists but has left the pending state (e.g. marked failed)."""

    def __init__(self, detail: str = "Booking is no longer awaiting payment") -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class MissingMetadata(HTTPException):
    def __init__(self, detail: str = "Missing booking reference in metadata") -> None:
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class UpstreamFailure(HTTPException):
    """
    Store or third-party failure. The message stays generic; callers log the
    underlying error before raising.
    """

    def __init__(
        self,
        detail: str = "Server error",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
    ) -> None:
        super().__init__(status_code=status_code, detail=detail)


class CalendarSyncError(Exception):
    """
    Google Calendar call failed. Never mapped to an HTTP response: calendar
    events are advisory next to the stored booking and payment record.
    """


async def store_error_handler(request: Request, exc: BaseORMException) -> JSONResponse:
    logger.opt(exception=exc).error(
        "Store failure on {} {}", request.method, request.url.path
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Server error"},
    )
