"""Booking service - atomic check-and-commit of provider time"""

import logging
from collections import defaultdict
from datetime import date, datetime, time
from typing import Callable, Optional, Sequence, TypeVar

from ...config import COMMIT_RETRY_ATTEMPTS
from ...models import (
    AssignmentStatus,
    AssignmentTimeRange,
    IssueAssignment,
    TimelineAction,
)
from ...shared.validators import day_of_week
from .allocation_service import collapse_plan
from .availability_service import slot_window
from .errors import ConcurrencyConflict, InvalidInput, NotFound, TimeConflict
from .lifecycle import AssignmentEvent, LifecycleService
from .overlap_validator import OverlapValidator, candidate_range
from .repository import SchedulingRepository
from .schemas import AllocationEntry, AllocationPlan, BookingCandidate, BookingRange
from .time_calculator import TimeRange, merge_ranges

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_with_retry(operation: Callable[[], T], attempts: int = COMMIT_RETRY_ATTEMPTS) -> T:
    """Rerun a whole check-then-commit sequence when it lost a lock race"""
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ConcurrencyConflict:
            if attempt == attempts:
                raise
            logger.warning(f"🔁 Concurrent booking detected, retrying ({attempt}/{attempts})")
    raise ConcurrencyConflict("Retry attempts exhausted")


def _validate_ranges(ranges: Sequence[BookingRange]) -> list[tuple[BookingRange, TimeRange]]:
    """Each range must be well formed and the candidate must not overlap itself"""
    checked = [(rng, candidate_range(rng.start, rng.end)) for rng in ranges]

    by_date: dict[date, list[TimeRange]] = defaultdict(list)
    for rng, window in checked:
        for other in by_date[rng.date]:
            if window.overlaps(other):
                raise InvalidInput(f"Requested ranges overlap each other on {rng.date.isoformat()}")
        by_date[rng.date].append(window)
    return checked


class BookingService:
    def __init__(self, repo: SchedulingRepository, validator: Optional[OverlapValidator] = None):
        self.repo = repo
        self.validator = validator or OverlapValidator(repo)

    # ------------------------------------------------------------------
    # Helpers
    def _require_provider_lock(self, provider_id: int) -> None:
        if self.repo.lock_provider(provider_id) is None:
            raise NotFound(f"Service provider {provider_id} not found")

    def _check_conflicts(
        self, provider_id: int, ranges: Sequence[BookingRange], exclude_assignment_id: Optional[int]
    ) -> None:
        conflicts = []
        for rng in ranges:
            conflicts.extend(
                self.validator.find_conflicts(
                    provider_id, rng.date, rng.start, rng.end, exclude_assignment_id
                )
            )
        if conflicts:
            first = conflicts[0]
            logger.warning(
                f"⛔ Time conflict for provider {provider_id}: {len(conflicts)} overlapping booking(s), "
                f"first is assignment {first.assignment_id} on {first.date.isoformat()} "
                f"{first.start.strftime('%H:%M')}-{first.end.strftime('%H:%M')}"
            )
            raise TimeConflict(
                f"Requested time overlaps an existing assignment on {first.date.isoformat()} "
                f"({first.start.strftime('%H:%M')}-{first.end.strftime('%H:%M')})",
                conflicts,
            )

    @staticmethod
    def _range_rows(provider_id: int, ranges: Sequence[BookingRange]) -> list[AssignmentTimeRange]:
        return [
            AssignmentTimeRange(
                service_provider_id=provider_id,
                date=rng.date,
                occupied_start=rng.start,
                occupied_end=rng.end,
                time_slot_id=rng.time_slot_id,
            )
            for rng in sorted(ranges, key=lambda r: (r.date, r.start))
        ]

    @staticmethod
    def _schedule_fields(ranges: Sequence[BookingRange]) -> dict:
        collapsed = collapse_plan(
            [
                AllocationEntry(
                    slot_id=rng.time_slot_id or 0,
                    date=rng.date,
                    start=rng.start,
                    end=rng.end,
                    minutes=candidate_range(rng.start, rng.end).minutes,
                )
                for rng in ranges
            ]
        )
        return {
            "scheduled_date": collapsed.start_date,
            "scheduled_end_date": collapsed.end_date if collapsed.is_multi_day else None,
            "assigned_start_time": collapsed.assigned_start,
            "assigned_end_time": collapsed.assigned_end,
        }

    # ------------------------------------------------------------------
    # Commit
    def commit_booking(self, candidate: BookingCandidate) -> IssueAssignment:
        """
        Check for overlaps and insert the assignment in one locked transaction.

        The provider row lock makes concurrent writers for the same calendar
        queue up, so two requests can never both see "no conflict" and commit
        overlapping time.
        """
        if candidate.exclude_assignment_id:
            return self.reschedule(candidate.exclude_assignment_id, candidate)

        _validate_ranges(candidate.ranges)
        if candidate.allocated_duration_minutes is not None and candidate.allocated_duration_minutes <= 0:
            raise InvalidInput("allocated_duration_minutes must be greater than 0")

        provider_id = candidate.service_provider_id
        with self.repo.transaction():
            self._require_provider_lock(provider_id)
            self._check_conflicts(provider_id, candidate.ranges, candidate.exclude_assignment_id)

            slot_ids = list(candidate.time_slot_ids) or [
                rng.time_slot_id for rng in candidate.ranges if rng.time_slot_id is not None
            ]
            assignment = IssueAssignment(
                issue_id=candidate.issue_id,
                service_provider_id=provider_id,
                time_slot_ids=list(dict.fromkeys(slot_ids)),
                allocated_duration_minutes=candidate.allocated_duration_minutes,
                is_custom_duration=candidate.is_custom_duration,
                status=AssignmentStatus.ASSIGNED.value,
                notes=candidate.notes,
                time_ranges=self._range_rows(provider_id, candidate.ranges),
                **self._schedule_fields(candidate.ranges),
            )
            self.repo.create_assignment(assignment)
            self.repo.add_timeline_entry(
                assignment,
                TimelineAction.ASSIGNED.value,
                candidate.performed_by,
                candidate.notes,
                {
                    "service_provider_id": provider_id,
                    "scheduled_date": assignment.scheduled_date.isoformat(),
                    "scheduled_end_date": (
                        assignment.scheduled_end_date.isoformat()
                        if assignment.scheduled_end_date
                        else None
                    ),
                    "time_slot_ids": assignment.time_slot_ids,
                    "allocated_duration_minutes": candidate.allocated_duration_minutes,
                },
            )

        logger.info(
            f"✅ Assignment {assignment.id} committed for provider {provider_id} "
            f"({len(candidate.ranges)} range(s) from {assignment.scheduled_date.isoformat()})"
        )
        self.repo.db.refresh(assignment)
        return assignment

    def commit_plan(
        self,
        plan: AllocationPlan,
        issue_id: Optional[int] = None,
        notes: Optional[str] = None,
        performed_by: Optional[str] = None,
        allow_partial: bool = False,
    ) -> IssueAssignment:
        """Turn an allocation plan into a booking; plans are re-validated at commit time"""
        if not plan.entries:
            raise InvalidInput("Allocation plan has no time to book")
        if not plan.is_sufficient and not allow_partial:
            raise InvalidInput(
                f"Allocation plan only covers {plan.accumulated_minutes} of "
                f"{plan.requested_minutes} minutes"
            )

        candidate = BookingCandidate(
            service_provider_id=plan.service_provider_id,
            ranges=[
                BookingRange(
                    date=entry.date, start=entry.start, end=entry.end, time_slot_id=entry.slot_id
                )
                for entry in plan.entries
            ],
            allocated_duration_minutes=plan.requested_minutes,
            time_slot_ids=plan.time_slot_ids,
            issue_id=issue_id,
            notes=notes,
            performed_by=performed_by,
        )
        return self.commit_booking(candidate)

    def assign_to_slots(
        self,
        provider_id: int,
        scheduled_date: date,
        slot_ids: Sequence[int],
        start: Optional[time] = None,
        end: Optional[time] = None,
        allocated_duration_minutes: Optional[int] = None,
        issue_id: Optional[int] = None,
        notes: Optional[str] = None,
        performed_by: Optional[str] = None,
        exclude_assignment_id: Optional[int] = None,
    ) -> IssueAssignment:
        """
        Book a provider for a set of slots on one date.

        Without an explicit start/end every selected slot window is booked,
        merged where slots touch. A manual range must lie within the combined
        slot bounds.
        """
        if not slot_ids:
            raise InvalidInput("At least one time slot is required")
        if (start is None) != (end is None):
            raise InvalidInput("Provide both assigned start and end time, or neither")

        slots = self.repo.get_slots(slot_ids)
        if len(slots) != len(set(slot_ids)):
            raise InvalidInput("One or more time slots do not exist")
        weekday = day_of_week(scheduled_date)
        for slot in slots:
            if slot.service_provider_id != provider_id:
                raise InvalidInput(f"Time slot {slot.id} does not belong to provider {provider_id}")
            if slot.day_of_week != weekday or not slot.is_active:
                raise InvalidInput(
                    f"Time slot {slot.id} is not available on {scheduled_date.isoformat()}"
                )

        earliest = min(slot.start_time for slot in slots)
        latest = max(slot.end_time for slot in slots)
        ordered_ids = [slot.id for slot in slots]
        # Windows that touch or overlap merge, so shared minutes count once
        windows = merge_ranges(slot_window(slot) for slot in slots)

        if start is not None:
            candidate_range(start, end)
            if start < earliest or end > latest:
                raise InvalidInput(
                    f"Assigned time must be within {earliest.strftime('%H:%M')}-{latest.strftime('%H:%M')}"
                )
            ranges = [BookingRange(date=scheduled_date, start=start, end=end, time_slot_id=ordered_ids[0])]
        else:
            ranges = []
            for window in windows:
                owner = next(slot for slot in slots if slot_window(slot).intersect(window))
                ranges.append(
                    BookingRange(
                        date=scheduled_date,
                        start=window.start_time,
                        end=window.end_time,
                        time_slot_id=owner.id,
                    )
                )

        total_slot_minutes = sum(window.minutes for window in windows)
        if allocated_duration_minutes and total_slot_minutes < allocated_duration_minutes:
            raise InvalidInput(
                f"Selected slots provide {total_slot_minutes} minutes but "
                f"{allocated_duration_minutes} are required"
            )

        candidate = BookingCandidate(
            service_provider_id=provider_id,
            ranges=ranges,
            allocated_duration_minutes=allocated_duration_minutes,
            is_custom_duration=allocated_duration_minutes is not None,
            time_slot_ids=ordered_ids,
            issue_id=issue_id,
            notes=notes,
            performed_by=performed_by,
            exclude_assignment_id=exclude_assignment_id,
        )
        return self.commit_booking(candidate)

    def reschedule(self, assignment_id: int, candidate: BookingCandidate) -> IssueAssignment:
        """Replace an assignment's booked time, ignoring its own current ranges"""
        _validate_ranges(candidate.ranges)

        with self.repo.transaction():
            assignment = self.repo.get_assignment(assignment_id)
            if assignment is None:
                raise NotFound(f"Assignment {assignment_id} not found")
            if assignment.status in (AssignmentStatus.COMPLETED.value, AssignmentStatus.CANCELLED.value):
                raise InvalidInput(f"Assignment {assignment_id} is {assignment.status} and cannot be rescheduled")
            if assignment.service_provider_id != candidate.service_provider_id:
                # Moving to another provider locks both calendars in id order
                for provider_id in sorted({assignment.service_provider_id, candidate.service_provider_id}):
                    self._require_provider_lock(provider_id)
            else:
                self._require_provider_lock(candidate.service_provider_id)

            self._check_conflicts(candidate.service_provider_id, candidate.ranges, assignment_id)

            self.repo.replace_ranges(
                assignment, self._range_rows(candidate.service_provider_id, candidate.ranges)
            )
            for key, value in self._schedule_fields(candidate.ranges).items():
                setattr(assignment, key, value)
            assignment.service_provider_id = candidate.service_provider_id
            if candidate.time_slot_ids:
                assignment.time_slot_ids = list(dict.fromkeys(candidate.time_slot_ids))
            if candidate.allocated_duration_minutes is not None:
                assignment.allocated_duration_minutes = candidate.allocated_duration_minutes
            if candidate.notes is not None:
                assignment.notes = candidate.notes

            self.repo.add_timeline_entry(
                assignment,
                TimelineAction.ASSIGNMENT_UPDATED.value,
                candidate.performed_by,
                candidate.notes,
                {
                    "service_provider_id": candidate.service_provider_id,
                    "scheduled_date": assignment.scheduled_date.isoformat(),
                    "ranges": len(candidate.ranges),
                },
            )

        logger.info(f"📝 Assignment {assignment_id} rescheduled")
        self.repo.db.refresh(assignment)
        return assignment

    def cancel(
        self,
        assignment_id: int,
        performed_by: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> IssueAssignment:
        """Cancelling ends the booking's occupancy of the calendar"""
        return LifecycleService(self.repo).transition(
            assignment_id, AssignmentEvent.CANCEL, performed_by, notes, now
        )
