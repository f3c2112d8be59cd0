"""
Assignment lifecycle - status state machine and duration bookkeeping.

    assigned ──start──▶ in_progress ──finish──▶ finished ──approve──▶ completed
                           │    ▲
                         hold  resume
                           ▼    │
                          on_hold

Every state except completed (and cancelled itself) may be cancelled, which
releases the booked time.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from ...config import AUTO_APPROVE_FINISHED
from ...models import AssignmentStatus, IssueAssignment, TimelineAction
from .errors import InvalidTransition, NotFound
from .repository import SchedulingRepository
from .schemas import DurationState

logger = logging.getLogger(__name__)


class AssignmentEvent(str, Enum):
    START = "start"
    HOLD = "hold"
    RESUME = "resume"
    FINISH = "finish"
    APPROVE = "approve"
    CANCEL = "cancel"


# event -> (allowed source statuses, target status, timestamp attribute, timeline action)
TRANSITIONS = {
    AssignmentEvent.START: (
        {AssignmentStatus.ASSIGNED},
        AssignmentStatus.IN_PROGRESS,
        "started_at",
        TimelineAction.STARTED,
    ),
    AssignmentEvent.HOLD: (
        {AssignmentStatus.IN_PROGRESS},
        AssignmentStatus.ON_HOLD,
        "held_at",
        TimelineAction.HELD,
    ),
    AssignmentEvent.RESUME: (
        {AssignmentStatus.ON_HOLD},
        AssignmentStatus.IN_PROGRESS,
        "resumed_at",
        TimelineAction.RESUMED,
    ),
    AssignmentEvent.FINISH: (
        {AssignmentStatus.IN_PROGRESS},
        AssignmentStatus.FINISHED,
        "finished_at",
        TimelineAction.FINISHED,
    ),
    AssignmentEvent.APPROVE: (
        {AssignmentStatus.FINISHED},
        AssignmentStatus.COMPLETED,
        "completed_at",
        TimelineAction.APPROVED,
    ),
    AssignmentEvent.CANCEL: (
        {
            AssignmentStatus.ASSIGNED,
            AssignmentStatus.IN_PROGRESS,
            AssignmentStatus.ON_HOLD,
            AssignmentStatus.FINISHED,
        },
        AssignmentStatus.CANCELLED,
        "cancelled_at",
        TimelineAction.CANCELLED,
    ),
}


def can_apply(assignment: IssueAssignment, event: Union[AssignmentEvent, str]) -> bool:
    sources = TRANSITIONS[AssignmentEvent(event)][0]
    return AssignmentStatus(assignment.status) in sources


def apply_transition(
    assignment: IssueAssignment,
    event: Union[AssignmentEvent, str],
    now: Optional[datetime] = None,
) -> AssignmentStatus:
    """Move ``assignment`` to its next status and stamp the matching timestamp"""
    try:
        event = AssignmentEvent(event)
    except ValueError as e:
        raise InvalidTransition(f"Unknown event {event!r}", assignment.status, str(event)) from e

    sources, target, stamp, _action = TRANSITIONS[event]
    current = AssignmentStatus(assignment.status)
    if current not in sources:
        raise InvalidTransition(
            f"Cannot {event.value} an assignment that is {current.value}",
            current.value,
            event.value,
        )

    assignment.status = target.value
    setattr(assignment, stamp, now or datetime.now())
    return target


def actual_minutes(assignment: IssueAssignment) -> Optional[int]:
    if not assignment.started_at or not assignment.finished_at:
        return None
    return int((assignment.finished_at - assignment.started_at).total_seconds() // 60)


def compute_duration_state(
    assignment: IssueAssignment,
    approved_extension_minutes: int = 0,
    has_pending_extension: bool = False,
) -> DurationState:
    allocated = assignment.allocated_duration_minutes
    total_allowed = allocated + approved_extension_minutes if allocated else None
    actual = actual_minutes(assignment)
    overtime = actual - total_allowed if actual is not None and total_allowed is not None else None

    return DurationState(
        allocated_minutes=allocated,
        approved_extension_minutes=approved_extension_minutes,
        total_allowed_minutes=total_allowed,
        actual_minutes=actual,
        overtime_minutes=overtime,
        has_pending_extension=has_pending_extension,
        can_request_extension=(
            assignment.status == AssignmentStatus.IN_PROGRESS.value and not has_pending_extension
        ),
    )


class LifecycleService:
    """Persists transitions together with their timeline entries"""

    def __init__(self, repo: SchedulingRepository, auto_approve: Optional[bool] = None):
        self.repo = repo
        self.auto_approve = AUTO_APPROVE_FINISHED if auto_approve is None else auto_approve

    def get_assignment(self, assignment_id: int) -> IssueAssignment:
        assignment = self.repo.get_assignment(assignment_id)
        if not assignment:
            raise NotFound(f"Assignment {assignment_id} not found")
        return assignment

    def duration_state(self, assignment: IssueAssignment) -> DurationState:
        return compute_duration_state(
            assignment,
            approved_extension_minutes=self.repo.approved_extension_minutes(assignment.id),
            has_pending_extension=self.repo.has_pending_extension(assignment.id),
        )

    def transition(
        self,
        assignment_id: int,
        event: Union[AssignmentEvent, str],
        performed_by: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> IssueAssignment:
        now = now or datetime.now()

        with self.repo.transaction():
            # Cancelling frees calendar time, so it serializes with other writers
            assignment = self.get_assignment(assignment_id)
            self.repo.lock_provider(assignment.service_provider_id)

            previous = assignment.status
            target = apply_transition(assignment, event, now)
            action = TRANSITIONS[AssignmentEvent(event)][3]
            details = {"from": previous, "to": target.value}
            if target == AssignmentStatus.FINISHED:
                details["duration_minutes"] = actual_minutes(assignment)
            self.repo.add_timeline_entry(assignment, action.value, performed_by, notes, details, now)

            if target == AssignmentStatus.FINISHED and self.auto_approve:
                apply_transition(assignment, AssignmentEvent.APPROVE, now)
                self.repo.add_timeline_entry(
                    assignment,
                    TimelineAction.APPROVED.value,
                    None,  # System
                    None,
                    {"from": target.value, "to": assignment.status, "auto_approved": True},
                    now,
                )

        logger.info(
            f"🔁 Assignment {assignment_id}: {previous} → {assignment.status} "
            f"({AssignmentEvent(event).value})"
        )
        self.repo.db.refresh(assignment)
        return assignment
