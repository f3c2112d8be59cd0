"""Scheduling router - FastAPI endpoints for availability, booking and assignment lifecycle"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ...database import get_db
from .allocation_service import MultiDayAllocator
from .availability_service import CapacityCalculator
from .booking_service import BookingService, run_with_retry
from .errors import NotFound
from .extension_service import ExtensionService
from .lifecycle import LifecycleService
from .overlap_validator import OverlapValidator
from .repository import SchedulingRepository
from .schemas import (
    AllocationPlan,
    AssignmentResponse,
    AssignSlotsRequest,
    AutoAssignRequest,
    AutoSelectRequest,
    BookingCandidate,
    CapacityResult,
    ConflictOut,
    DayAvailability,
    ExtensionCreate,
    ExtensionDecision,
    ExtensionResponse,
    MultiSlotOverlapRequest,
    OverlapCheckRequest,
    OverlapCheckResponse,
    ProviderCreate,
    ProviderResponse,
    TimelineEntryResponse,
    TimeSlotCreate,
    TimeSlotResponse,
    TransitionRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scheduling", tags=["Scheduling"])


def get_repository(db: Session = Depends(get_db)) -> SchedulingRepository:
    """Dependency injection for SchedulingRepository"""
    return SchedulingRepository(db)


def get_booking_service(repo: SchedulingRepository = Depends(get_repository)) -> BookingService:
    return BookingService(repo)


def get_lifecycle_service(
    repo: SchedulingRepository = Depends(get_repository),
) -> LifecycleService:
    return LifecycleService(repo)


def get_extension_service(
    repo: SchedulingRepository = Depends(get_repository),
) -> ExtensionService:
    return ExtensionService(repo)


def _assignment_response(assignment, lifecycle: LifecycleService) -> AssignmentResponse:
    response = AssignmentResponse.model_validate(assignment)
    response.duration = lifecycle.duration_state(assignment)
    return response


def _conflicts_out(conflicts) -> list[ConflictOut]:
    return [
        ConflictOut(assignment_id=c.assignment_id, date=c.date, start=c.start, end=c.end)
        for c in conflicts
    ]


# ============================================================================
# PROVIDERS AND SLOTS
# ============================================================================


@router.post("/providers", response_model=ProviderResponse, status_code=status.HTTP_201_CREATED)
async def create_provider(
    data: ProviderCreate, repo: SchedulingRepository = Depends(get_repository)
):
    provider = repo.create_provider(data.name, data.is_available)
    logger.info(f"✅ Service provider {provider.id} created")
    return provider


@router.post(
    "/providers/{provider_id}/slots",
    response_model=TimeSlotResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_time_slot(
    provider_id: int,
    data: TimeSlotCreate,
    repo: SchedulingRepository = Depends(get_repository),
):
    if repo.get_provider(provider_id) is None:
        raise NotFound(f"Service provider {provider_id} not found")
    return repo.create_slot(
        provider_id, data.day_of_week, data.start_time, data.end_time, data.is_active
    )


# ============================================================================
# AVAILABILITY
# ============================================================================


@router.get("/providers/{provider_id}/availability", response_model=DayAvailability)
async def get_provider_availability(
    provider_id: int,
    on_date: date = Query(..., alias="date"),
    min_duration: Optional[int] = Query(None, ge=1),
    repo: SchedulingRepository = Depends(get_repository),
):
    """Per-slot capacity of a provider on a date, optionally only slots fitting ``min_duration``"""
    return CapacityCalculator(repo).get_day_availability(provider_id, on_date, min_duration)


@router.get("/slots/{slot_id}/capacity", response_model=CapacityResult)
async def get_slot_capacity(
    slot_id: int,
    on_date: date = Query(..., alias="date"),
    exclude_assignment_id: Optional[int] = Query(None),
    repo: SchedulingRepository = Depends(get_repository),
):
    slot = repo.get_slot(slot_id)
    if slot is None:
        raise NotFound(f"Time slot {slot_id} not found")
    return CapacityCalculator(repo).get_slot_capacity(slot, on_date, exclude_assignment_id)


@router.post("/providers/{provider_id}/overlap-check", response_model=OverlapCheckResponse)
async def check_overlap(
    provider_id: int,
    data: OverlapCheckRequest,
    repo: SchedulingRepository = Depends(get_repository),
):
    conflicts = OverlapValidator(repo).find_conflicts(
        provider_id, data.date, data.start_time, data.end_time, data.exclude_assignment_id
    )
    return OverlapCheckResponse(has_overlap=bool(conflicts), conflicts=_conflicts_out(conflicts))


@router.post(
    "/providers/{provider_id}/multi-slot-overlap-check", response_model=OverlapCheckResponse
)
async def check_multi_slot_overlap(
    provider_id: int,
    data: MultiSlotOverlapRequest,
    repo: SchedulingRepository = Depends(get_repository),
):
    conflicts = OverlapValidator(repo).find_multi_slot_conflicts(
        provider_id, data.date, data.time_slot_ids, data.exclude_assignment_id
    )
    return OverlapCheckResponse(has_overlap=bool(conflicts), conflicts=_conflicts_out(conflicts))


# ============================================================================
# ALLOCATION AND BOOKING
# ============================================================================


@router.post("/providers/{provider_id}/auto-select", response_model=AllocationPlan)
async def auto_select_slots(
    provider_id: int,
    data: AutoSelectRequest,
    repo: SchedulingRepository = Depends(get_repository),
):
    """Preview a multi-day allocation; nothing is booked"""
    return MultiDayAllocator(repo).allocate(
        provider_id, data.start_date, data.duration_minutes, data.max_days
    )


@router.post(
    "/providers/{provider_id}/auto-assign",
    response_model=AssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def auto_assign(
    provider_id: int,
    data: AutoAssignRequest,
    repo: SchedulingRepository = Depends(get_repository),
    service: BookingService = Depends(get_booking_service),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    """Allocate and commit in one call; the plan is recomputed on every retry"""

    def allocate_and_commit():
        plan = MultiDayAllocator(repo).allocate(
            provider_id, data.start_date, data.duration_minutes, data.max_days
        )
        return service.commit_plan(
            plan,
            issue_id=data.issue_id,
            notes=data.notes,
            performed_by=data.performed_by,
            allow_partial=data.allow_partial,
        )

    assignment = run_with_retry(allocate_and_commit)
    return _assignment_response(assignment, lifecycle)


@router.post(
    "/assignments", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED
)
async def create_assignment(
    data: BookingCandidate,
    service: BookingService = Depends(get_booking_service),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    assignment = run_with_retry(lambda: service.commit_booking(data))
    return _assignment_response(assignment, lifecycle)


@router.post(
    "/providers/{provider_id}/assign-slots",
    response_model=AssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_to_slots(
    provider_id: int,
    data: AssignSlotsRequest,
    service: BookingService = Depends(get_booking_service),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    assignment = run_with_retry(
        lambda: service.assign_to_slots(
            provider_id,
            data.scheduled_date,
            data.time_slot_ids,
            start=data.assigned_start_time,
            end=data.assigned_end_time,
            allocated_duration_minutes=data.allocated_duration_minutes,
            issue_id=data.issue_id,
            notes=data.notes,
            performed_by=data.performed_by,
            exclude_assignment_id=data.exclude_assignment_id,
        )
    )
    return _assignment_response(assignment, lifecycle)


# ============================================================================
# ASSIGNMENTS
# ============================================================================


@router.get("/assignments/{assignment_id}", response_model=AssignmentResponse)
async def get_assignment(
    assignment_id: int, lifecycle: LifecycleService = Depends(get_lifecycle_service)
):
    return _assignment_response(lifecycle.get_assignment(assignment_id), lifecycle)


@router.put("/assignments/{assignment_id}/schedule", response_model=AssignmentResponse)
async def reschedule_assignment(
    assignment_id: int,
    data: BookingCandidate,
    service: BookingService = Depends(get_booking_service),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    assignment = run_with_retry(lambda: service.reschedule(assignment_id, data))
    return _assignment_response(assignment, lifecycle)


@router.post("/assignments/{assignment_id}/transition", response_model=AssignmentResponse)
async def transition_assignment(
    assignment_id: int,
    data: TransitionRequest,
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
):
    assignment = run_with_retry(
        lambda: lifecycle.transition(assignment_id, data.event, data.performed_by, data.notes)
    )
    return _assignment_response(assignment, lifecycle)


@router.get("/assignments/{assignment_id}/timeline", response_model=list[TimelineEntryResponse])
async def get_assignment_timeline(
    assignment_id: int, lifecycle: LifecycleService = Depends(get_lifecycle_service)
):
    return lifecycle.get_assignment(assignment_id).timeline


# ============================================================================
# TIME EXTENSIONS
# ============================================================================


@router.post(
    "/assignments/{assignment_id}/extensions",
    response_model=ExtensionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_extension(
    assignment_id: int,
    data: ExtensionCreate,
    service: ExtensionService = Depends(get_extension_service),
):
    return service.request(assignment_id, data.requested_minutes, data.reason, data.requested_by)


@router.get("/assignments/{assignment_id}/extensions", response_model=list[ExtensionResponse])
async def list_extensions(
    assignment_id: int,
    status_filter: Optional[str] = Query(None, alias="status"),
    service: ExtensionService = Depends(get_extension_service),
):
    return service.list_for_assignment(assignment_id, status_filter)


@router.post("/extensions/{extension_id}/approve", response_model=ExtensionResponse)
async def approve_extension(
    extension_id: int,
    data: ExtensionDecision,
    service: ExtensionService = Depends(get_extension_service),
):
    return run_with_retry(
        lambda: service.approve(extension_id, data.responded_by, data.admin_notes)
    )


@router.post("/extensions/{extension_id}/reject", response_model=ExtensionResponse)
async def reject_extension(
    extension_id: int,
    data: ExtensionDecision,
    service: ExtensionService = Depends(get_extension_service),
):
    return service.reject(extension_id, data.responded_by, data.admin_notes)
