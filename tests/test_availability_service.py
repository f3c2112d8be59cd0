"""Tests for slot capacity and day availability."""

from datetime import date, time

import pytest

from maintenance_scheduler.domain.scheduling.availability_service import CapacityCalculator
from maintenance_scheduler.domain.scheduling.errors import InvalidInput, NotFound
from maintenance_scheduler.domain.scheduling.schemas import TimeWindow

MONDAY = date(2024, 1, 1)
TUESDAY = date(2024, 1, 2)


@pytest.fixture
def calculator(repo):
    return CapacityCalculator(repo)


class TestSlotCapacity:
    def test_unbooked_slot_is_fully_available(self, calculator, morning_slot):
        capacity = calculator.get_slot_capacity(morning_slot, MONDAY)

        assert capacity.total_minutes == 240
        assert capacity.booked_minutes == 0
        assert capacity.available_minutes == 240
        assert capacity.has_capacity
        assert [(g.start, g.end) for g in capacity.gaps] == [(time(8, 0), time(12, 0))]

    def test_booking_splits_slot_into_gaps(self, calculator, morning_slot, book):
        book(time(9, 0), time(10, 0), slot_id=morning_slot.id)

        capacity = calculator.get_slot_capacity(morning_slot, MONDAY)

        assert capacity.total_minutes == 240
        assert capacity.booked_minutes == 60
        assert capacity.available_minutes == 180
        assert [(g.start, g.end, g.duration_minutes) for g in capacity.gaps] == [
            (time(8, 0), time(9, 0), 60),
            (time(10, 0), time(12, 0), 120),
        ]
        assert capacity.utilization_percent == 25

    def test_capacity_conservation(self, calculator, morning_slot, book):
        book(time(7, 30), time(8, 45))
        book(time(9, 0), time(9, 20))
        book(time(11, 0), time(13, 0))

        capacity = calculator.get_slot_capacity(morning_slot, MONDAY)

        assert capacity.booked_minutes + capacity.available_minutes == capacity.total_minutes
        assert sum(g.duration_minutes for g in capacity.gaps) == capacity.available_minutes
        assert capacity.booked_minutes == 45 + 20 + 60

    def test_bookings_through_other_slots_still_count(self, repo, calculator, provider, morning_slot, book):
        other_slot = repo.create_slot(provider.id, 1, time(10, 0), time(14, 0))
        book(time(11, 0), time(13, 0), slot_id=other_slot.id)

        capacity = calculator.get_slot_capacity(morning_slot, MONDAY)

        assert capacity.booked_minutes == 60

    def test_weekday_mismatch_has_no_capacity(self, calculator, morning_slot):
        capacity = calculator.get_slot_capacity(morning_slot, TUESDAY)

        assert capacity.total_minutes == 0
        assert capacity.available_minutes == 0
        assert not capacity.has_capacity
        assert capacity.gaps == []

    def test_inactive_slot_has_no_capacity(self, repo, calculator, provider):
        slot = repo.create_slot(provider.id, 1, time(8, 0), time(12, 0), is_active=False)

        assert calculator.get_slot_capacity(slot, MONDAY).total_minutes == 0

    def test_excluded_assignment_is_not_counted(self, calculator, morning_slot, book):
        assignment = book(time(9, 0), time(10, 0))

        capacity = calculator.get_slot_capacity(morning_slot, MONDAY, exclude_assignment_id=assignment.id)

        assert capacity.available_minutes == 240

    def test_cancelled_assignment_releases_time(self, calculator, morning_slot, book, booking):
        assignment = book(time(9, 0), time(10, 0))
        booking.cancel(assignment.id)

        assert calculator.get_slot_capacity(morning_slot, MONDAY).available_minutes == 240


class TestNextAvailableTime:
    def test_earliest_gap_that_fits(self, calculator, morning_slot, book):
        book(time(9, 0), time(10, 0))

        assert calculator.calculate_next_available_time(morning_slot, MONDAY, 45) == TimeWindow(
            start=time(8, 0), end=time(8, 45)
        )
        assert calculator.calculate_next_available_time(morning_slot, MONDAY, 90) == TimeWindow(
            start=time(10, 0), end=time(11, 30)
        )

    def test_no_gap_large_enough(self, calculator, morning_slot, book):
        book(time(9, 0), time(10, 0))

        assert calculator.calculate_next_available_time(morning_slot, MONDAY, 180) is None

    def test_duration_must_be_positive(self, calculator, morning_slot):
        with pytest.raises(InvalidInput):
            calculator.calculate_next_available_time(morning_slot, MONDAY, 0)


class TestDayAvailability:
    def test_lists_slots_for_the_weekday(self, repo, calculator, provider, morning_slot):
        repo.create_slot(provider.id, 1, time(13, 0), time(17, 0))
        repo.create_slot(provider.id, 2, time(8, 0), time(12, 0))

        day = calculator.get_day_availability(provider.id, MONDAY)

        assert day.day_of_week == 1
        assert [s.start_time for s in day.time_slots] == [time(8, 0), time(13, 0)]
        assert day.has_available_slots
        assert day.slots_with_requested_duration is None

    def test_filters_by_duration(self, repo, calculator, provider, morning_slot, book):
        repo.create_slot(provider.id, 1, time(13, 0), time(14, 0))
        book(time(9, 0), time(10, 0))

        day = calculator.get_day_availability(provider.id, MONDAY, min_duration_minutes=120)

        assert [s.slot_id for s in day.time_slots] == [morning_slot.id]
        slot = day.time_slots[0]
        assert slot.is_available
        assert slot.next_available == TimeWindow(start=time(10, 0), end=time(12, 0))
        assert day.slots_with_requested_duration == 1

    def test_multi_slot_capacity_sums_slots(self, repo, calculator, provider, morning_slot, book):
        afternoon = repo.create_slot(provider.id, 1, time(13, 0), time(15, 0))
        book(time(9, 0), time(10, 0))

        combined = calculator.get_multi_slot_capacity([morning_slot, afternoon], MONDAY)

        assert combined.total_minutes == 360
        assert combined.booked_minutes == 60
        assert combined.available_minutes == 300
        assert combined.slot_count == 2
        assert len(combined.gaps) == 3

    def test_sub_minute_slot_is_invalid_input(self, repo, calculator, provider):
        slot = repo.create_slot(provider.id, 1, time(8, 0, 0), time(8, 0, 30))

        with pytest.raises(InvalidInput):
            calculator.get_availability_on(slot, MONDAY)

    def test_unknown_provider(self, calculator):
        with pytest.raises(NotFound):
            calculator.get_day_availability(999, MONDAY)
