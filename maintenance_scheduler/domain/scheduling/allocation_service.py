"""Multi-day allocator - greedy first-fit of a work duration across slots and days"""

import logging
from datetime import date, timedelta
from typing import Optional, Sequence

from ...config import MAX_ALLOCATION_DAYS
from ...shared.validators import day_of_week
from .availability_service import CapacityCalculator
from .errors import InvalidInput, NotFound
from .repository import BookingStore
from .schemas import AllocationEntry, AllocationPlan, CollapsedRange
from .time_calculator import TimeRange, first_fitting_gap

logger = logging.getLogger(__name__)


def collapse_plan(entries: Sequence[AllocationEntry]) -> CollapsedRange:
    """
    Reduce a plan to a single start/end pair where that is truthful.

    - one entry: its exact range
    - several entries on one date, each starting where the previous ended:
      earliest start to latest end
    - gaps between same-day entries, or more than one date: no single range,
      since collapsing would claim time that was never allocated

    The bounding range is filled in every case for display purposes.
    """
    if not entries:
        return CollapsedRange()

    ordered = sorted(entries, key=lambda entry: (entry.date, entry.start, entry.end))
    dates = sorted({entry.date for entry in ordered})
    collapsed = CollapsedRange(
        bounding_start=min(entry.start for entry in ordered),
        bounding_end=max(entry.end for entry in ordered),
        start_date=dates[0],
        end_date=dates[-1],
        is_multi_day=len(dates) > 1,
    )

    if len(ordered) == 1:
        collapsed.assigned_start = ordered[0].start
        collapsed.assigned_end = ordered[0].end
        return collapsed

    if collapsed.is_multi_day:
        return collapsed

    contiguous = all(
        current.start == previous.end for previous, current in zip(ordered, ordered[1:])
    )
    if contiguous:
        collapsed.assigned_start = ordered[0].start
        collapsed.assigned_end = ordered[-1].end
    return collapsed


class MultiDayAllocator:
    def __init__(self, store: BookingStore, capacity: Optional[CapacityCalculator] = None):
        self.store = store
        self.capacity = capacity or CapacityCalculator(store)

    def allocate(
        self,
        provider_id: int,
        start_date: date,
        required_minutes: int,
        max_days: Optional[int] = None,
    ) -> AllocationPlan:
        """
        Walk forward day by day, slot by slot, taking available capacity until
        ``required_minutes`` is covered or ``max_days`` days were examined.

        The result may be insufficient; that is a normal outcome for the caller
        to handle, not an error. Nothing is written.
        """
        max_days = MAX_ALLOCATION_DAYS if max_days is None else max_days
        if required_minutes is None or required_minutes <= 0:
            raise InvalidInput("required_minutes must be greater than 0")
        if max_days < 1:
            raise InvalidInput("max_days must be at least 1")
        if self.store.get_provider(provider_id) is None:
            raise NotFound(f"Service provider {provider_id} not found")

        entries: list[AllocationEntry] = []
        accumulated = 0
        days_processed = 0
        current = start_date
        last_used: Optional[date] = None

        while accumulated < required_minutes and days_processed < max_days:
            # Overlapping slots must not hand out the same minutes twice
            picked_today: list[TimeRange] = []
            for slot in self.store.list_active_slots(provider_id, day_of_week(current)):
                capacity = self.capacity.get_slot_capacity(slot, current, extra_busy=picked_today)
                if capacity.available_minutes <= 0:
                    continue

                take = min(capacity.available_minutes, required_minutes - accumulated)
                gaps = [TimeRange.from_times(gap.start, gap.end) for gap in capacity.gaps]
                gap = first_fitting_gap(gaps, take)
                if gap is None:
                    continue

                picked = TimeRange(gap.start, gap.start + take)
                picked_today.append(picked)
                entries.append(
                    AllocationEntry(
                        slot_id=slot.id,
                        date=current,
                        start=picked.start_time,
                        end=picked.end_time,
                        minutes=take,
                    )
                )
                accumulated += take
                last_used = current

                if accumulated >= required_minutes:
                    break

            if accumulated >= required_minutes:
                break

            current = current + timedelta(days=1)
            days_processed += 1

        is_sufficient = accumulated >= required_minutes
        span_days = (last_used - start_date).days + 1 if last_used else 1
        collapsed = collapse_plan(entries)

        slot_ids: list[int] = []
        for entry in entries:
            if entry.slot_id not in slot_ids:
                slot_ids.append(entry.slot_id)

        plan = AllocationPlan(
            service_provider_id=provider_id,
            start_date=start_date,
            requested_minutes=required_minutes,
            entries=entries,
            accumulated_minutes=accumulated,
            is_sufficient=is_sufficient,
            shortfall_minutes=max(0, required_minutes - accumulated),
            span_days=span_days,
            days_processed=days_processed,
            end_date=collapsed.end_date if collapsed.is_multi_day else None,
            time_slot_ids=slot_ids,
            collapsed=collapsed,
        )

        if is_sufficient:
            logger.info(
                f"📅 Allocated {accumulated} min for provider {provider_id} "
                f"across {span_days} day(s) from {start_date.isoformat()}"
            )
        else:
            logger.warning(
                f"⚠️ Could only allocate {accumulated} of {required_minutes} min for provider "
                f"{provider_id} within {days_processed} day(s) from {start_date.isoformat()}"
            )
        return plan
