"""
Error taxonomy for the bot and the HTTP boundary.

Chat flows raise the domain errors below and the conversation engine turns
them into replies. HTTP routes use ``ApiError`` helpers, which log the real
cause internally; their ``detail`` is the JSON body the caller sees.
"""
import logging
from typing import Any

from fastapi import HTTPException, status

logger = logging.getLogger(__name__)


class StockBotError(Exception):
    """Base class for domain errors. ``message`` is safe to show the user."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(StockBotError):
    """Malformed user input. The flow re-prompts and stays on its step."""


class InsufficientStockError(ValidationError):
    """Transfer source holds less than requested. Re-prompts, session kept."""

    def __init__(self, location: str, available: int, requested: int):
        super().__init__(
            f"❌ Not enough stock in {location}: {available} available, {requested} requested."
        )
        self.location = location
        self.available = available
        self.requested = requested


class NotFoundError(StockBotError):
    """Business code or screenshot id absent. Aborts the flow."""


class StoreError(StockBotError):
    """A document-store call failed."""


class UnauthorizedEvent(StockBotError):
    """Chat is not allow-listed. Dropped by the update handlers without any reply."""


class ApiError:
    """HTTP exceptions with safe (non-leaky) messages."""

    @staticmethod
    def bad_request(detail: Any) -> HTTPException:
        """
        400 for input validation errors.

        OK to include specific details here since the caller caused the issue.
        """
        logger.info(f"Bad request: {detail}")
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
        )

    @staticmethod
    def server_error(original_error: Exception = None, detail: Any = None) -> HTTPException:
        """
        Generic 500 - logs actual error internally, hides it from the caller.
        """
        if original_error:
            logger.error(
                f"Internal server error: {type(original_error).__name__}: {str(original_error)}",
                exc_info=original_error,
            )
        else:
            logger.error("Internal server error occurred")

        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
        )

