"""Scheduling domain schemas - Pydantic models for derived results and validation"""

from datetime import date, datetime, time
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ...shared.validators import validate_day_of_week, validate_positive_minutes
from .time_calculator import minutes_between


# ============================================================================
# CAPACITY
# ============================================================================


class Gap(BaseModel):
    """A contiguous free sub-interval of a slot on a date"""

    start: time
    end: time
    duration_minutes: int


class CapacityResult(BaseModel):
    slot_id: Optional[int] = None
    date: date
    total_minutes: int = 0
    booked_minutes: int = 0
    available_minutes: int = 0
    has_capacity: bool = False
    gaps: list[Gap] = Field(default_factory=list)

    @property
    def utilization_percent(self) -> int:
        if self.total_minutes <= 0:
            return 0
        return round(self.booked_minutes / self.total_minutes * 100)


class MultiSlotCapacity(BaseModel):
    total_minutes: int
    booked_minutes: int
    available_minutes: int
    has_capacity: bool
    gaps: list[Gap]
    slot_count: int


class TimeWindow(BaseModel):
    start: time
    end: time


class SlotAvailability(BaseModel):
    """Availability of one slot on one date, as shown to the admin picking a slot"""

    slot_id: int
    day_of_week: int
    start_time: time
    end_time: time
    display: str
    duration_minutes: int
    is_full_day: bool
    total_minutes: int
    booked_minutes: int
    available_minutes: int
    utilization_percent: int
    is_available: bool
    has_capacity: bool
    next_available: Optional[TimeWindow] = None


class DayAvailability(BaseModel):
    service_provider_id: int
    date: date
    day_of_week: int
    time_slots: list[SlotAvailability]
    has_available_slots: bool
    slots_with_requested_duration: Optional[int] = None


# ============================================================================
# ALLOCATION
# ============================================================================


class AllocationEntry(BaseModel):
    slot_id: int
    date: date
    start: time
    end: time
    minutes: int


class CollapsedRange(BaseModel):
    """
    Single start/end view of a plan.

    ``assigned_start``/``assigned_end`` are only set when the plan really is one
    contiguous range on one day. ``bounding_start``/``bounding_end`` always hold
    the earliest start and latest end and are meant for display only.
    """

    assigned_start: Optional[time] = None
    assigned_end: Optional[time] = None
    bounding_start: Optional[time] = None
    bounding_end: Optional[time] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_multi_day: bool = False


class AllocationPlan(BaseModel):
    service_provider_id: int
    start_date: date
    requested_minutes: int
    entries: list[AllocationEntry] = Field(default_factory=list)
    accumulated_minutes: int = 0
    is_sufficient: bool = False
    shortfall_minutes: int = 0
    span_days: int = 1
    days_processed: int = 0
    end_date: Optional[date] = None
    time_slot_ids: list[int] = Field(default_factory=list)
    collapsed: CollapsedRange = Field(default_factory=CollapsedRange)

    @property
    def is_multi_day(self) -> bool:
        return self.span_days > 1


# ============================================================================
# BOOKING
# ============================================================================


class BookingRange(BaseModel):
    date: date
    start: time
    end: time
    time_slot_id: Optional[int] = None


class BookingCandidate(BaseModel):
    """Everything needed to commit (or re-commit) an assignment's occupied time"""

    service_provider_id: int
    ranges: list[BookingRange] = Field(min_length=1)
    allocated_duration_minutes: Optional[int] = None
    is_custom_duration: bool = False
    time_slot_ids: list[int] = Field(default_factory=list)
    issue_id: Optional[int] = None
    notes: Optional[str] = None
    performed_by: Optional[str] = None
    exclude_assignment_id: Optional[int] = None


class ConflictOut(BaseModel):
    assignment_id: int
    date: date
    start: time
    end: time


class OverlapCheckRequest(BaseModel):
    date: date
    start_time: time
    end_time: time
    exclude_assignment_id: Optional[int] = None


class MultiSlotOverlapRequest(BaseModel):
    date: date
    time_slot_ids: list[int] = Field(min_length=1)
    exclude_assignment_id: Optional[int] = None


class OverlapCheckResponse(BaseModel):
    has_overlap: bool
    conflicts: list[ConflictOut] = Field(default_factory=list)


class AutoSelectRequest(BaseModel):
    start_date: date
    duration_minutes: int = Field(ge=1, le=43200)  # Max 30 days worth
    max_days: Optional[int] = Field(default=None, ge=1, le=366)


class AutoAssignRequest(AutoSelectRequest):
    issue_id: Optional[int] = None
    notes: Optional[str] = None
    performed_by: Optional[str] = None
    allow_partial: bool = False


class AssignSlotsRequest(BaseModel):
    scheduled_date: date
    time_slot_ids: list[int] = Field(min_length=1)
    assigned_start_time: Optional[time] = None
    assigned_end_time: Optional[time] = None
    allocated_duration_minutes: Optional[int] = Field(default=None, ge=1)
    issue_id: Optional[int] = None
    notes: Optional[str] = None
    performed_by: Optional[str] = None
    exclude_assignment_id: Optional[int] = None


# ============================================================================
# LIFECYCLE / DURATION
# ============================================================================


class DurationState(BaseModel):
    allocated_minutes: Optional[int] = None
    approved_extension_minutes: int = 0
    total_allowed_minutes: Optional[int] = None
    actual_minutes: Optional[int] = None
    overtime_minutes: Optional[int] = None  # Negative = finished early
    has_pending_extension: bool = False
    can_request_extension: bool = False


class TransitionRequest(BaseModel):
    event: Literal["start", "hold", "resume", "finish", "approve", "cancel"]
    performed_by: Optional[str] = None
    notes: Optional[str] = None


class ExtensionCreate(BaseModel):
    requested_minutes: int
    reason: Optional[str] = Field(default=None, max_length=1000)
    requested_by: Optional[str] = None

    @field_validator("requested_minutes")
    @classmethod
    def check_minutes(cls, v):
        return validate_positive_minutes(v, "requested_minutes")


class ExtensionDecision(BaseModel):
    admin_notes: Optional[str] = Field(default=None, max_length=1000)
    responded_by: Optional[str] = None


# ============================================================================
# RESPONSES
# ============================================================================


class TimeRangeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: date
    occupied_start: time
    occupied_end: time
    time_slot_id: Optional[int] = None


class ExtensionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    assignment_id: int
    requested_minutes: int
    reason: Optional[str] = None
    status: str
    requested_by: Optional[str] = None
    responded_by: Optional[str] = None
    admin_notes: Optional[str] = None
    requested_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None


class TimelineEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    performed_by: Optional[str] = None
    notes: Optional[str] = None
    details: Optional[dict] = None
    created_at: Optional[datetime] = None


class AssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    issue_id: Optional[int] = None
    service_provider_id: int
    status: str
    time_slot_ids: list[int]
    allocated_duration_minutes: Optional[int] = None
    scheduled_date: date
    scheduled_end_date: Optional[date] = None
    assigned_start_time: Optional[time] = None
    assigned_end_time: Optional[time] = None
    span_days: int
    started_at: Optional[datetime] = None
    held_at: Optional[datetime] = None
    resumed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    notes: Optional[str] = None
    time_ranges: list[TimeRangeResponse] = Field(default_factory=list)
    duration: Optional[DurationState] = None


# ============================================================================
# PROVIDERS AND SLOTS
# ============================================================================


class ProviderCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    is_available: bool = True


class ProviderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    is_available: bool


class TimeSlotCreate(BaseModel):
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool = True

    @field_validator("day_of_week")
    @classmethod
    def check_day_of_week(cls, v):
        return validate_day_of_week(v)

    @model_validator(mode="after")
    def check_range(self):
        # Capacity is counted in whole minutes
        if minutes_between(self.start_time, self.end_time) <= 0:
            raise ValueError("end_time must be at least one minute after start_time")
        return self


class TimeSlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    service_provider_id: int
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool
    formatted_time_range: str
