"""
This file contains custom, application-specific exceptions.

Every domain error is an HTTPException so FastAPI can render it directly.
The `detail` body always carries a stable machine `reason` next to the
human readable `message`:

    {"detail": {"reason": "insufficient_credit", "message": "..."}}
"""
from typing import Any, Optional
from fastapi import HTTPException, status


class CoachBookingError(HTTPException):
    """Base class for all rejected operations."""
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_reason: str = "error"

    def __init__(self, message: str, reason: Optional[str] = None, **context: Any):
        self.reason = reason or self.default_reason
        self.message = message
        self.context = context
        detail: dict[str, Any] = {"reason": self.reason, "message": message}
        if context:
            detail["context"] = {k: str(v) for k, v in context.items()}
        super().__init__(status_code=self.status_code, detail=detail)

    def __str__(self) -> str:
        return f"{self.reason}: {self.message}"


class ValidationFailedError(CoachBookingError):
    """Missing or malformed input, rejected before any lookup."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_reason = "validation_error"


class NotFoundError(CoachBookingError):
    """Raised when a referenced entity does not exist."""
    status_code = status.HTTP_404_NOT_FOUND
    default_reason = "not_found"


class ForbiddenError(CoachBookingError):
    """Raised when the actor is not entitled to the action."""
    status_code = status.HTTP_403_FORBIDDEN
    default_reason = "forbidden"


class ConflictError(CoachBookingError):
    """Time-slot overlap, capacity exhausted, or a state that blocks the action."""
    status_code = status.HTTP_409_CONFLICT
    default_reason = "conflict"


class InsufficientCreditError(CoachBookingError):
    """Raised when a balance cannot cover the requested lessons."""
    status_code = status.HTTP_409_CONFLICT
    default_reason = "insufficient_credit"


class CardUnavailableError(CoachBookingError):
    """Raised when a card instance cannot be used right now."""
    status_code = status.HTTP_409_CONFLICT
    default_reason = "card_unavailable"


class AlreadyInStateError(CoachBookingError):
    """No-op transitions such as activating an already active card."""
    status_code = status.HTTP_409_CONFLICT
    default_reason = "already_in_state"


class InternalError(CoachBookingError):
    """Storage or transaction failure."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_reason = "internal_error"
