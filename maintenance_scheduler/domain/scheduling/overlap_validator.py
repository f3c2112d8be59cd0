"""Overlap validator - the single safety-critical conflict check"""

import logging
from datetime import date, time
from typing import Optional, Sequence

from ...shared.validators import day_of_week
from .errors import ConflictWindow, InvalidInput
from .repository import BookingStore
from .time_calculator import TimeRange

logger = logging.getLogger(__name__)


def candidate_range(start: time, end: time) -> TimeRange:
    if start is None or end is None:
        raise InvalidInput("Both start and end time are required")
    try:
        return TimeRange.from_times(start, end)
    except ValueError as e:
        raise InvalidInput(
            f"End time {end.strftime('%H:%M')} must be after start time {start.strftime('%H:%M')}"
        ) from e


class OverlapValidator:
    def __init__(self, store: BookingStore):
        self.store = store

    def find_conflicts(
        self,
        provider_id: int,
        on_date: date,
        start: time,
        end: time,
        exclude_assignment_id: Optional[int] = None,
    ) -> list[ConflictWindow]:
        """Existing occupied ranges intersecting ``[start, end)``"""
        candidate = candidate_range(start, end)
        conflicts = []
        for rng in self.store.list_occupied_ranges(provider_id, on_date, exclude_assignment_id):
            if rng.occupied_end <= rng.occupied_start:
                continue
            if candidate.overlaps(TimeRange.from_times(rng.occupied_start, rng.occupied_end)):
                conflicts.append(
                    ConflictWindow(rng.assignment_id, rng.date, rng.occupied_start, rng.occupied_end)
                )
        return conflicts

    def has_overlap(
        self,
        provider_id: int,
        on_date: date,
        start: time,
        end: time,
        exclude_assignment_id: Optional[int] = None,
    ) -> bool:
        return bool(self.find_conflicts(provider_id, on_date, start, end, exclude_assignment_id))

    def find_multi_slot_conflicts(
        self,
        provider_id: int,
        on_date: date,
        slot_ids: Sequence[int],
        exclude_assignment_id: Optional[int] = None,
    ) -> list[ConflictWindow]:
        """Check every named slot's full window on ``on_date``"""
        if not slot_ids:
            raise InvalidInput("At least one time slot is required")

        slots = self.store.get_slots(slot_ids)
        found = {slot.id for slot in slots}
        missing = [slot_id for slot_id in slot_ids if slot_id not in found]
        if missing:
            raise InvalidInput(f"Unknown time slots: {missing}")

        weekday = day_of_week(on_date)
        conflicts: list[ConflictWindow] = []
        seen: set[tuple[int, time, time]] = set()
        for slot in slots:
            if slot.service_provider_id != provider_id:
                raise InvalidInput(f"Time slot {slot.id} does not belong to provider {provider_id}")
            if slot.day_of_week != weekday:
                raise InvalidInput(
                    f"Time slot {slot.id} recurs on day {slot.day_of_week}, "
                    f"but {on_date.isoformat()} is day {weekday}"
                )
            for conflict in self.find_conflicts(
                provider_id, on_date, slot.start_time, slot.end_time, exclude_assignment_id
            ):
                key = (conflict.assignment_id, conflict.start, conflict.end)
                if key not in seen:
                    seen.add(key)
                    conflicts.append(conflict)
        return conflicts

    def has_multi_slot_overlap(
        self,
        provider_id: int,
        on_date: date,
        slot_ids: Sequence[int],
        exclude_assignment_id: Optional[int] = None,
    ) -> bool:
        return bool(
            self.find_multi_slot_conflicts(provider_id, on_date, slot_ids, exclude_assignment_id)
        )
