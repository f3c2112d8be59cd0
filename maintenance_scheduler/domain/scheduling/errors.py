"""Scheduling domain errors - every one is local to a single scheduling attempt"""

from datetime import date, time
from typing import Optional

from ...shared.validators import format_time_of_day


class SchedulingError(Exception):
    """Base scheduling error"""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": self.message}


class InvalidInput(SchedulingError):
    """Malformed time range, weekday mismatch or out-of-range parameter"""

    status_code = 422


class NotFound(SchedulingError):
    """Provider, slot, assignment or extension does not exist"""

    status_code = 404


class InvalidTransition(SchedulingError):
    """Lifecycle state machine violation; the current state is kept"""

    status_code = 409

    def __init__(self, message: str, current_status: Optional[str] = None, event: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status
        self.event = event

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["current_status"] = self.current_status
        payload["event"] = self.event
        return payload


class ConflictWindow:
    """An existing occupied range that blocks a candidate"""

    __slots__ = ("assignment_id", "date", "start", "end")

    def __init__(self, assignment_id: int, on_date: date, start: time, end: time):
        self.assignment_id = assignment_id
        self.date = on_date
        self.start = start
        self.end = end

    def to_dict(self) -> dict:
        return {
            "assignment_id": self.assignment_id,
            "date": self.date.isoformat(),
            "start": format_time_of_day(self.start),
            "end": format_time_of_day(self.end),
        }

    def __repr__(self) -> str:
        return (
            f"ConflictWindow(assignment_id={self.assignment_id}, date={self.date}, "
            f"start={self.start}, end={self.end})"
        )


class TimeConflict(SchedulingError):
    """Candidate time overlaps an existing booking; never auto-resolved"""

    status_code = 409

    def __init__(self, message: str, conflicts: Optional[list[ConflictWindow]] = None):
        super().__init__(message)
        self.conflicts = conflicts or []

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["conflicts"] = [conflict.to_dict() for conflict in self.conflicts]
        return payload


class ConcurrencyConflict(SchedulingError):
    """Lock contention on commit - retry the whole check-then-commit sequence"""

    status_code = 409
