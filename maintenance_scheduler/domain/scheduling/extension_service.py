"""Time extension requests - extra minutes asked for while work is under way"""

import logging
from datetime import datetime
from typing import Optional

from ...config import EXTENSION_MAX_MINUTES, EXTENSION_MIN_MINUTES
from ...models import AssignmentStatus, ExtensionStatus, TimeExtensionRequest, TimelineAction
from .errors import InvalidInput, InvalidTransition, NotFound, TimeConflict
from .lifecycle import LifecycleService
from .overlap_validator import OverlapValidator
from .repository import SchedulingRepository
from .time_calculator import add_minutes

logger = logging.getLogger(__name__)


class ExtensionService:
    def __init__(self, repo: SchedulingRepository, validator: Optional[OverlapValidator] = None):
        self.repo = repo
        self.validator = validator or OverlapValidator(repo)
        self.lifecycle = LifecycleService(repo)

    def _get_pending(self, extension_id: int) -> TimeExtensionRequest:
        extension = self.repo.get_extension(extension_id)
        if not extension:
            raise NotFound(f"Extension request {extension_id} not found")
        if not extension.is_pending:
            raise InvalidTransition(
                f"Extension request {extension_id} was already {extension.status}",
                extension.status,
                "respond",
            )
        return extension

    def request(
        self,
        assignment_id: int,
        requested_minutes: int,
        reason: Optional[str] = None,
        requested_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TimeExtensionRequest:
        """Only in-progress work can ask for more time, one open request at a time"""
        if not EXTENSION_MIN_MINUTES <= requested_minutes <= EXTENSION_MAX_MINUTES:
            raise InvalidInput(
                f"Extension must be between {EXTENSION_MIN_MINUTES} and "
                f"{EXTENSION_MAX_MINUTES} minutes"
            )
        now = now or datetime.now()

        with self.repo.transaction():
            assignment = self.lifecycle.get_assignment(assignment_id)
            self.repo.lock_provider(assignment.service_provider_id)

            if assignment.status != AssignmentStatus.IN_PROGRESS.value:
                raise InvalidTransition(
                    "Extensions can only be requested for work in progress",
                    assignment.status,
                    "request_extension",
                )
            if self.repo.has_pending_extension(assignment_id):
                raise InvalidTransition(
                    "A time extension request is already pending for this assignment",
                    assignment.status,
                    "request_extension",
                )

            extension = self.repo.add_extension(
                TimeExtensionRequest(
                    assignment_id=assignment_id,
                    requested_by=requested_by,
                    requested_minutes=requested_minutes,
                    reason=reason,
                    status=ExtensionStatus.PENDING.value,
                    requested_at=now,
                )
            )
            self.repo.add_timeline_entry(
                assignment,
                TimelineAction.EXTENSION_REQUESTED.value,
                requested_by,
                reason,
                {"extension_id": extension.id, "requested_minutes": requested_minutes},
                now,
            )

        logger.info(
            f"⏱️ Extension of {requested_minutes} min requested for assignment {assignment_id}"
        )
        self.repo.db.refresh(extension)
        return extension

    def approve(
        self,
        extension_id: int,
        responded_by: Optional[str] = None,
        admin_notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TimeExtensionRequest:
        """
        Approve an extension and push the end of the assignment's last range.

        The extra time is checked against the provider's other bookings first;
        on conflict nothing changes and the request stays pending.
        """
        now = now or datetime.now()

        with self.repo.transaction():
            extension = self._get_pending(extension_id)
            assignment = self.lifecycle.get_assignment(extension.assignment_id)
            self.repo.lock_provider(assignment.service_provider_id)

            extended = None
            if assignment.time_ranges:
                last = max(assignment.time_ranges, key=lambda rng: (rng.date, rng.occupied_end))
                try:
                    new_end = add_minutes(last.occupied_end, extension.requested_minutes)
                except ValueError as e:
                    raise InvalidInput("Extension would run past midnight") from e

                conflicts = self.validator.find_conflicts(
                    assignment.service_provider_id,
                    last.date,
                    last.occupied_end,
                    new_end,
                    exclude_assignment_id=assignment.id,
                )
                if conflicts:
                    logger.warning(
                        f"⛔ Extension {extension_id} blocked by assignment {conflicts[0].assignment_id}"
                    )
                    raise TimeConflict(
                        f"Extending to {new_end.strftime('%H:%M')} overlaps another assignment",
                        conflicts,
                    )

                previous_end = last.occupied_end
                self.repo.extend_range(last, new_end)
                if assignment.assigned_end_time and assignment.assigned_end_time == previous_end:
                    assignment.assigned_end_time = new_end
                extended = {
                    "date": last.date.isoformat(),
                    "previous_end": previous_end.strftime("%H:%M"),
                    "new_end": new_end.strftime("%H:%M"),
                }

            extension.status = ExtensionStatus.APPROVED.value
            extension.responded_by = responded_by
            extension.admin_notes = admin_notes
            extension.responded_at = now
            self.repo.add_timeline_entry(
                assignment,
                TimelineAction.EXTENSION_APPROVED.value,
                responded_by,
                admin_notes,
                {
                    "extension_id": extension.id,
                    "requested_minutes": extension.requested_minutes,
                    "extended_range": extended,
                },
                now,
            )

        logger.info(f"✅ Extension {extension_id} approved (+{extension.requested_minutes} min)")
        self.repo.db.refresh(extension)
        return extension

    def reject(
        self,
        extension_id: int,
        responded_by: Optional[str] = None,
        admin_notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TimeExtensionRequest:
        now = now or datetime.now()

        with self.repo.transaction():
            extension = self._get_pending(extension_id)
            extension.status = ExtensionStatus.REJECTED.value
            extension.responded_by = responded_by
            extension.admin_notes = admin_notes
            extension.responded_at = now
            self.repo.add_timeline_entry(
                extension.assignment,
                TimelineAction.EXTENSION_REJECTED.value,
                responded_by,
                admin_notes,
                {"extension_id": extension.id},
                now,
            )

        logger.info(f"❌ Extension {extension_id} rejected")
        self.repo.db.refresh(extension)
        return extension

    def list_for_assignment(self, assignment_id: int, status: Optional[str] = None):
        self.lifecycle.get_assignment(assignment_id)
        return self.repo.get_extensions(assignment_id, status)
