"""Errors raised by the lifecycle, notification and seating services.

Routers turn them into HTTP responses with ``to_http_exception``; bulk
operations record them per recipient instead of failing the request.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from fastapi import HTTPException

if TYPE_CHECKING:
    from src.notifications.rate_limiter import RateLimitStatus


class LifecycleError(Exception):
    status_code = 500


class NotFoundError(LifecycleError):
    """Raised when an entity does not exist or belongs to another wedding."""

    status_code = 404

    def __init__(self, entity: str) -> None:
        self.entity = entity
        super().__init__(f"{entity} not found")


class ConflictError(LifecycleError):
    status_code = 409


class AlreadyCheckedInError(ConflictError):
    def __init__(self, checked_in_at: datetime, guest_name: str | None = None) -> None:
        self.checked_in_at = checked_in_at
        self.guest_name = guest_name
        super().__init__(f"Guest already checked in at {checked_in_at.isoformat()}")


class NotAcceptedError(ConflictError):
    def __init__(self) -> None:
        super().__init__("Invitation has not been accepted for this event")


class SeatTakenError(ConflictError):
    def __init__(self, seat_number: int) -> None:
        self.seat_number = seat_number
        super().__init__(f"Seat {seat_number} is already assigned to another guest")


class GuestAlreadySeatedError(ConflictError):
    def __init__(self, seat_number: int) -> None:
        self.seat_number = seat_number
        super().__init__(f"This guest is already assigned to seat {seat_number} at this table")


class AnnouncementStateError(ConflictError):
    def __init__(self, status: str, action: str) -> None:
        self.status = status
        super().__init__(f"Cannot {action} an announcement with status '{status}'")


class DispatchInProgressError(ConflictError):
    def __init__(self) -> None:
        super().__init__("Announcement is already being dispatched")


class RateLimitedError(LifecycleError):
    status_code = 429

    def __init__(self, status: "RateLimitStatus") -> None:
        self.status = status
        super().__init__(
            f"Daily limit of {status.max_per_day} messages reached for this invitation, "
            f"resets at {status.window_reset_at.isoformat()}"
        )


class InputValidationError(LifecycleError):
    status_code = 422


class UpstreamFailure(LifecycleError):
    """A provider or the storage layer failed."""

    status_code = 502


def to_http_exception(error: LifecycleError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=str(error))
