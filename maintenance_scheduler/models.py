from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"
    FINISHED = "finished"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses whose time ranges still block the provider's calendar.
# Completed and cancelled assignments release their time.
OCCUPYING_STATUSES = (
    AssignmentStatus.ASSIGNED.value,
    AssignmentStatus.IN_PROGRESS.value,
    AssignmentStatus.ON_HOLD.value,
    AssignmentStatus.FINISHED.value,
)


class ExtensionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TimelineAction(str, Enum):
    ASSIGNED = "assigned"
    ASSIGNMENT_UPDATED = "assignment_updated"
    STARTED = "started"
    HELD = "held"
    RESUMED = "resumed"
    FINISHED = "finished"
    APPROVED = "approved"
    CANCELLED = "cancelled"
    EXTENSION_REQUESTED = "extension_requested"
    EXTENSION_APPROVED = "extension_approved"
    EXTENSION_REJECTED = "extension_rejected"


class ServiceProvider(Base):
    __tablename__ = "service_providers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    time_slots = relationship(
        "TimeSlot", back_populates="service_provider", cascade="all, delete-orphan"
    )
    assignments = relationship("IssueAssignment", back_populates="service_provider")


class TimeSlot(Base):
    """Recurring weekly availability window of a service provider"""

    __tablename__ = "time_slots"

    id = Column(Integer, primary_key=True, index=True)
    service_provider_id = Column(
        Integer, ForeignKey("service_providers.id"), nullable=False, index=True
    )
    day_of_week = Column(Integer, nullable=False, index=True)  # 0 = Sunday ... 6 = Saturday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    service_provider = relationship("ServiceProvider", back_populates="time_slots")

    @property
    def formatted_time_range(self) -> str:
        return f"{self.start_time.strftime('%H:%M')} - {self.end_time.strftime('%H:%M')}"


class IssueAssignment(Base):
    """A committed booking of a provider's time for one issue"""

    __tablename__ = "issue_assignments"

    id = Column(Integer, primary_key=True, index=True)
    issue_id = Column(Integer, nullable=True, index=True)  # Owned by the issue tracker
    service_provider_id = Column(
        Integer, ForeignKey("service_providers.id"), nullable=False, index=True
    )
    time_slot_ids = Column(JSON, default=list, nullable=False)

    # Planned work
    allocated_duration_minutes = Column(Integer, nullable=True)
    is_custom_duration = Column(Boolean, default=False, nullable=False)

    # Scheduling (multi-day assignments carry an end date)
    scheduled_date = Column(Date, nullable=False, index=True)
    scheduled_end_date = Column(Date, nullable=True)
    # Collapsed single-range view; null when the ranges are gapped or span several days
    assigned_start_time = Column(Time, nullable=True)
    assigned_end_time = Column(Time, nullable=True)

    # Status workflow: assigned → in_progress ⇄ on_hold → finished → completed
    # Any non-completed status may be cancelled
    status = Column(String(50), default=AssignmentStatus.ASSIGNED.value, nullable=False, index=True)

    # Execution audit
    started_at = Column(DateTime, nullable=True)
    held_at = Column(DateTime, nullable=True)
    resumed_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    service_provider = relationship("ServiceProvider", back_populates="assignments")
    time_ranges = relationship(
        "AssignmentTimeRange",
        back_populates="assignment",
        cascade="all, delete-orphan",
        order_by=lambda: [AssignmentTimeRange.date, AssignmentTimeRange.occupied_start],
    )
    extension_requests = relationship(
        "TimeExtensionRequest",
        back_populates="assignment",
        cascade="all, delete-orphan",
        order_by="TimeExtensionRequest.id",
    )
    timeline = relationship(
        "AssignmentTimeline",
        back_populates="assignment",
        cascade="all, delete-orphan",
        order_by="AssignmentTimeline.id",
    )

    @property
    def is_multi_day(self) -> bool:
        if not self.scheduled_end_date:
            return False
        return self.scheduled_end_date != self.scheduled_date

    @property
    def span_days(self) -> int:
        if not self.scheduled_end_date:
            return 1
        return (self.scheduled_end_date - self.scheduled_date).days + 1


class AssignmentTimeRange(Base):
    """The part of one calendar day an assignment actually occupies"""

    __tablename__ = "assignment_time_ranges"

    id = Column(Integer, primary_key=True, index=True)
    assignment_id = Column(
        Integer, ForeignKey("issue_assignments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Denormalized so the conflict query never needs a join on the hot path
    service_provider_id = Column(
        Integer, ForeignKey("service_providers.id"), nullable=False, index=True
    )
    date = Column(Date, nullable=False, index=True)
    occupied_start = Column(Time, nullable=False)
    occupied_end = Column(Time, nullable=False)
    time_slot_id = Column(Integer, ForeignKey("time_slots.id"), nullable=True)

    assignment = relationship("IssueAssignment", back_populates="time_ranges")


class TimeExtensionRequest(Base):
    __tablename__ = "time_extension_requests"

    id = Column(Integer, primary_key=True, index=True)
    assignment_id = Column(
        Integer, ForeignKey("issue_assignments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    requested_by = Column(String(255), nullable=True)
    requested_minutes = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    status = Column(String(20), default=ExtensionStatus.PENDING.value, nullable=False, index=True)
    responded_by = Column(String(255), nullable=True)
    admin_notes = Column(Text, nullable=True)
    requested_at = Column(DateTime, server_default=func.now())
    responded_at = Column(DateTime, nullable=True)

    assignment = relationship("IssueAssignment", back_populates="extension_requests")

    @property
    def is_pending(self) -> bool:
        return self.status == ExtensionStatus.PENDING.value


class AssignmentTimeline(Base):
    """Audit trail of everything that happened to an assignment"""

    __tablename__ = "assignment_timeline"

    id = Column(Integer, primary_key=True, index=True)
    assignment_id = Column(
        Integer, ForeignKey("issue_assignments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action = Column(String(50), nullable=False)
    performed_by = Column(String(255), nullable=True)  # NULL = System
    notes = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    assignment = relationship("IssueAssignment", back_populates="timeline")
