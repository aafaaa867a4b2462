"""Error categories surfaced to users of the scheduling core"""
from typing import Optional


class SchedulingError(Exception):
    """Base class for scheduling failures"""

    category = "internal"

    def __init__(self, message: str, *, detail: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ValidationError(SchedulingError, ValueError):
    """Malformed input rejected at a boundary (week id, slot id, time, filter)"""

    category = "validation"


class NotFoundError(SchedulingError):
    category = "not-found"


class PermissionDeniedError(SchedulingError):
    category = "permission-denied"


class AlreadyExistsError(SchedulingError):
    category = "already-exists"


class FailedPreconditionError(SchedulingError):
    category = "failed-precondition"


class SlotAlreadyBookedError(FailedPreconditionError):
    """A team already has an upcoming match in the requested week and slot"""

    def __init__(self, week_id: str, slot_id: str, team_ids):
        teams = ", ".join(team_ids)
        super().__init__(
            f"Slot {slot_id} in week {week_id} is already booked for {teams}",
            detail={"week_id": week_id, "slot_id": slot_id, "team_ids": list(team_ids)},
        )
        self.week_id = week_id
        self.slot_id = slot_id
        self.team_ids = list(team_ids)


USER_VISIBLE_CATEGORIES = (
    ValidationError.category,
    NotFoundError.category,
    PermissionDeniedError.category,
    AlreadyExistsError.category,
    FailedPreconditionError.category,
)


def error_category(error: BaseException) -> str:
    """
    Map an exception to the category reported to a human

    Args:
        error: Any exception raised while handling a request

    Returns:
        One of USER_VISIBLE_CATEGORIES, or "internal" for anything unexpected
    """
    if isinstance(error, SchedulingError):
        return error.category
    return SchedulingError.category
