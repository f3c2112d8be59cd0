"""Capacity calculator - remaining bookable minutes and free gaps per slot and date"""

import logging
from datetime import date
from typing import Optional, Sequence

from ...models import TimeSlot
from ...shared.validators import day_of_week
from .errors import InvalidInput, NotFound
from .repository import BookingStore
from .schemas import (
    CapacityResult,
    DayAvailability,
    Gap,
    MultiSlotCapacity,
    SlotAvailability,
    TimeWindow,
)
from .time_calculator import TimeRange, booked_minutes, first_fitting_gap, free_gaps

logger = logging.getLogger(__name__)


def slot_window(slot: TimeSlot) -> TimeRange:
    try:
        return TimeRange.from_times(slot.start_time, slot.end_time)
    except ValueError as e:
        raise InvalidInput(f"Time slot {slot.id} must end at least one minute after it starts") from e


def slot_matches_date(slot: TimeSlot, on_date: date) -> bool:
    return bool(slot.is_active) and slot.day_of_week == day_of_week(on_date)


class CapacityCalculator:
    """Pure reads against the booking store; never mutates anything"""

    def __init__(self, store: BookingStore):
        self.store = store

    def _busy_ranges(
        self, provider_id: int, on_date: date, exclude_assignment_id: Optional[int]
    ) -> list[TimeRange]:
        return [
            TimeRange.from_times(rng.occupied_start, rng.occupied_end)
            for rng in self.store.list_occupied_ranges(provider_id, on_date, exclude_assignment_id)
            if rng.occupied_end > rng.occupied_start
        ]

    def get_slot_capacity(
        self,
        slot: TimeSlot,
        on_date: date,
        exclude_assignment_id: Optional[int] = None,
        extra_busy: Sequence[TimeRange] = (),
    ) -> CapacityResult:
        """
        Booked/available minutes and free gaps of ``slot`` on ``on_date``.

        Every occupying range of the provider on that date counts, whichever
        slot it was booked through. A slot that is inactive or does not recur
        on that weekday has no capacity at all.

        ``extra_busy`` holds time that is taken but not committed yet, such as
        the ranges a plan under construction has already picked.
        """
        if not slot_matches_date(slot, on_date):
            return CapacityResult(slot_id=slot.id, date=on_date)

        window = slot_window(slot)
        busy = self._busy_ranges(slot.service_provider_id, on_date, exclude_assignment_id)
        busy.extend(extra_busy)
        booked = booked_minutes(window, busy)
        available = window.minutes - booked

        return CapacityResult(
            slot_id=slot.id,
            date=on_date,
            total_minutes=window.minutes,
            booked_minutes=booked,
            available_minutes=available,
            has_capacity=available > 0,
            gaps=[
                Gap(start=gap.start_time, end=gap.end_time, duration_minutes=gap.minutes)
                for gap in free_gaps(window, busy)
            ],
        )

    def find_available_gaps(
        self, slot: TimeSlot, on_date: date, exclude_assignment_id: Optional[int] = None
    ) -> list[Gap]:
        return self.get_slot_capacity(slot, on_date, exclude_assignment_id).gaps

    def calculate_next_available_time(
        self,
        slot: TimeSlot,
        on_date: date,
        duration_minutes: int,
        exclude_assignment_id: Optional[int] = None,
    ) -> Optional[TimeWindow]:
        """Earliest sub-range of the slot that fits ``duration_minutes``, or None"""
        if duration_minutes <= 0:
            raise InvalidInput("duration_minutes must be greater than 0")

        capacity = self.get_slot_capacity(slot, on_date, exclude_assignment_id)
        gaps = [TimeRange.from_times(gap.start, gap.end) for gap in capacity.gaps]
        gap = first_fitting_gap(gaps, duration_minutes)
        if gap is None:
            return None

        fitted = TimeRange(gap.start, gap.start + duration_minutes)
        return TimeWindow(start=fitted.start_time, end=fitted.end_time)

    def get_multi_slot_capacity(self, slots: Sequence[TimeSlot], on_date: date) -> MultiSlotCapacity:
        total = 0
        booked = 0
        gaps: list[Gap] = []

        for slot in slots:
            capacity = self.get_slot_capacity(slot, on_date)
            total += capacity.total_minutes
            booked += capacity.booked_minutes
            gaps.extend(capacity.gaps)

        return MultiSlotCapacity(
            total_minutes=total,
            booked_minutes=booked,
            available_minutes=total - booked,
            has_capacity=(total - booked) > 0,
            gaps=gaps,
            slot_count=len(slots),
        )

    def get_availability_on(
        self, slot: TimeSlot, on_date: date, duration_minutes: Optional[int] = None
    ) -> SlotAvailability:
        capacity = self.get_slot_capacity(slot, on_date)

        if duration_minutes:
            can_fit = capacity.available_minutes >= duration_minutes
            next_available = (
                self.calculate_next_available_time(slot, on_date, duration_minutes)
                if can_fit
                else None
            )
        else:
            can_fit = capacity.has_capacity
            next_available = None

        slot_minutes = slot_window(slot).minutes
        start_label = slot.start_time.strftime("%H:%M")
        end_label = slot.end_time.strftime("%H:%M")

        return SlotAvailability(
            slot_id=slot.id,
            day_of_week=slot.day_of_week,
            start_time=slot.start_time,
            end_time=slot.end_time,
            display=slot.formatted_time_range,
            duration_minutes=slot_minutes,
            is_full_day=start_label == "00:00" and end_label == "23:59",
            total_minutes=capacity.total_minutes,
            booked_minutes=capacity.booked_minutes,
            available_minutes=capacity.available_minutes,
            utilization_percent=capacity.utilization_percent,
            is_available=can_fit,
            has_capacity=capacity.has_capacity,
            next_available=next_available,
        )

    def get_day_availability(
        self, provider_id: int, on_date: date, min_duration_minutes: Optional[int] = None
    ) -> DayAvailability:
        """Per-slot availability of a provider on a date, optionally filtered by duration"""
        if self.store.get_provider(provider_id) is None:
            raise NotFound(f"Service provider {provider_id} not found")
        if min_duration_minutes is not None and min_duration_minutes <= 0:
            raise InvalidInput("min_duration_minutes must be greater than 0")

        weekday = day_of_week(on_date)
        rows = [
            self.get_availability_on(slot, on_date, min_duration_minutes)
            for slot in self.store.list_active_slots(provider_id, weekday)
        ]
        if min_duration_minutes is not None:
            rows = [row for row in rows if row.available_minutes >= min_duration_minutes]

        return DayAvailability(
            service_provider_id=provider_id,
            date=on_date,
            day_of_week=weekday,
            time_slots=rows,
            has_available_slots=any(row.has_capacity for row in rows),
            slots_with_requested_duration=(
                sum(1 for row in rows if row.is_available) if min_duration_minutes else None
            ),
        )
