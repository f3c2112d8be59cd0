"""Scheduling repository - slot and booking store operations"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date, datetime, time
from typing import Iterator, Optional, Sequence

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ...models import (
    OCCUPYING_STATUSES,
    AssignmentTimeline,
    AssignmentTimeRange,
    ExtensionStatus,
    IssueAssignment,
    ServiceProvider,
    TimeExtensionRequest,
    TimeSlot,
)
from .errors import ConcurrencyConflict

logger = logging.getLogger(__name__)


class BookingStore(ABC):
    """What the engine needs from persistence; nothing else is assumed"""

    @abstractmethod
    def get_provider(self, provider_id: int) -> Optional[ServiceProvider]: ...

    @abstractmethod
    def get_slot(self, slot_id: int) -> Optional[TimeSlot]: ...

    @abstractmethod
    def get_slots(self, slot_ids: Sequence[int]) -> list[TimeSlot]: ...

    @abstractmethod
    def list_active_slots(self, provider_id: int, day_of_week: int) -> list[TimeSlot]: ...

    @abstractmethod
    def list_occupied_ranges(
        self, provider_id: int, on_date: date, exclude_assignment_id: Optional[int] = None
    ) -> list[AssignmentTimeRange]: ...

    @abstractmethod
    def lock_provider(self, provider_id: int) -> Optional[ServiceProvider]: ...

    @abstractmethod
    def transaction(self): ...


class SchedulingRepository(BookingStore):
    """SQLAlchemy-backed store; the caller owns the session"""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Transactions
    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Commit everything done inside the block, or roll it all back.

        Lock wait timeouts, deadlocks and serialization failures surface as
        ConcurrencyConflict so callers can rerun the whole sequence.
        """
        try:
            yield self.db
            self.db.commit()
        except OperationalError as e:
            self.db.rollback()
            logger.warning(f"🔒 Transaction aborted by lock contention: {e}")
            raise ConcurrencyConflict(
                "Another booking for this provider was committed concurrently; retry the request"
            ) from e
        except Exception:
            self.db.rollback()
            raise

    def lock_provider(self, provider_id: int) -> Optional[ServiceProvider]:
        """Row-lock the provider so writers for its calendar serialize"""
        return (
            self.db.query(ServiceProvider)
            .filter(ServiceProvider.id == provider_id)
            .with_for_update()
            .first()
        )

    # ------------------------------------------------------------------
    # Providers and slots
    def get_provider(self, provider_id: int) -> Optional[ServiceProvider]:
        return self.db.query(ServiceProvider).filter(ServiceProvider.id == provider_id).first()

    def create_provider(self, name: str, is_available: bool = True) -> ServiceProvider:
        provider = ServiceProvider(name=name, is_available=is_available)
        self.db.add(provider)
        self.db.commit()
        self.db.refresh(provider)
        return provider

    def create_slot(
        self,
        provider_id: int,
        day_of_week: int,
        start_time: time,
        end_time: time,
        is_active: bool = True,
    ) -> TimeSlot:
        slot = TimeSlot(
            service_provider_id=provider_id,
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
            is_active=is_active,
        )
        self.db.add(slot)
        self.db.commit()
        self.db.refresh(slot)
        return slot

    def get_slot(self, slot_id: int) -> Optional[TimeSlot]:
        return self.db.query(TimeSlot).filter(TimeSlot.id == slot_id).first()

    def get_slots(self, slot_ids: Sequence[int]) -> list[TimeSlot]:
        if not slot_ids:
            return []
        return (
            self.db.query(TimeSlot)
            .filter(TimeSlot.id.in_(list(slot_ids)))
            .order_by(TimeSlot.start_time, TimeSlot.id)
            .all()
        )

    def list_active_slots(self, provider_id: int, day_of_week: int) -> list[TimeSlot]:
        return (
            self.db.query(TimeSlot)
            .filter(
                TimeSlot.service_provider_id == provider_id,
                TimeSlot.day_of_week == day_of_week,
                TimeSlot.is_active.is_(True),
            )
            .order_by(TimeSlot.start_time, TimeSlot.id)
            .all()
        )

    # ------------------------------------------------------------------
    # Bookings
    def list_occupied_ranges(
        self, provider_id: int, on_date: date, exclude_assignment_id: Optional[int] = None
    ) -> list[AssignmentTimeRange]:
        """Ranges on ``on_date`` whose assignment still blocks the calendar"""
        query = (
            self.db.query(AssignmentTimeRange)
            .join(IssueAssignment, AssignmentTimeRange.assignment_id == IssueAssignment.id)
            .filter(
                AssignmentTimeRange.service_provider_id == provider_id,
                AssignmentTimeRange.date == on_date,
                IssueAssignment.status.in_(OCCUPYING_STATUSES),
            )
        )
        if exclude_assignment_id:
            query = query.filter(AssignmentTimeRange.assignment_id != exclude_assignment_id)
        return query.order_by(AssignmentTimeRange.occupied_start).all()

    def get_assignment(self, assignment_id: int) -> Optional[IssueAssignment]:
        return self.db.query(IssueAssignment).filter(IssueAssignment.id == assignment_id).first()

    def create_assignment(self, assignment: IssueAssignment) -> IssueAssignment:
        self.db.add(assignment)
        self.db.flush()
        return assignment

    def replace_ranges(
        self, assignment: IssueAssignment, ranges: Sequence[AssignmentTimeRange]
    ) -> None:
        assignment.time_ranges.clear()
        self.db.flush()
        assignment.time_ranges.extend(ranges)
        self.db.flush()

    def extend_range(self, time_range: AssignmentTimeRange, new_end: time) -> AssignmentTimeRange:
        time_range.occupied_end = new_end
        self.db.flush()
        return time_range

    # ------------------------------------------------------------------
    # Extensions
    def get_extension(self, extension_id: int) -> Optional[TimeExtensionRequest]:
        return (
            self.db.query(TimeExtensionRequest)
            .filter(TimeExtensionRequest.id == extension_id)
            .first()
        )

    def get_extensions(
        self, assignment_id: int, status: Optional[str] = None
    ) -> list[TimeExtensionRequest]:
        query = self.db.query(TimeExtensionRequest).filter(
            TimeExtensionRequest.assignment_id == assignment_id
        )
        if status:
            query = query.filter(TimeExtensionRequest.status == status)
        return query.order_by(TimeExtensionRequest.id).all()

    def has_pending_extension(self, assignment_id: int) -> bool:
        return bool(self.get_extensions(assignment_id, ExtensionStatus.PENDING.value))

    def approved_extension_minutes(self, assignment_id: int) -> int:
        return sum(
            ext.requested_minutes
            for ext in self.get_extensions(assignment_id, ExtensionStatus.APPROVED.value)
        )

    def add_extension(self, extension: TimeExtensionRequest) -> TimeExtensionRequest:
        self.db.add(extension)
        self.db.flush()
        return extension

    # ------------------------------------------------------------------
    # Timeline
    def add_timeline_entry(
        self,
        assignment: IssueAssignment,
        action: str,
        performed_by: Optional[str] = None,
        notes: Optional[str] = None,
        details: Optional[dict] = None,
        created_at: Optional[datetime] = None,
    ) -> AssignmentTimeline:
        entry = AssignmentTimeline(
            assignment_id=assignment.id,
            action=action,
            performed_by=performed_by,
            notes=notes,
            details=details,
            created_at=created_at or datetime.now(),
        )
        self.db.add(entry)
        self.db.flush()
        return entry
