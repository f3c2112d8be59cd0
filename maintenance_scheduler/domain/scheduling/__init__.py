"""
Scheduling Domain

Books maintenance work into service providers' recurring weekly time slots.

Structure:
```
maintenance_scheduler/domain/scheduling/
├── __init__.py
├── errors.py               # SchedulingError hierarchy (mapped to HTTP by main.py)
├── schemas.py              # Capacity, allocation, booking, lifecycle schemas
├── repository.py           # BookingStore interface + SQLAlchemy implementation
├── time_calculator.py      # Half-open minute ranges, gaps, merges
├── availability_service.py # Slot capacity and day availability
├── overlap_validator.py    # Conflict checks against occupied ranges
├── allocation_service.py   # Multi-day greedy allocator + plan collapse
├── booking_service.py      # Locked check-and-commit, reschedule, cancel
├── lifecycle.py            # Assignment state machine + duration bookkeeping
├── extension_service.py    # Time extension request/approve/reject
└── router.py               # /scheduling endpoints
```

Every writer locks the provider row before checking for overlaps, so two
commits for the same calendar can never both succeed with overlapping time.
Completed and cancelled assignments release their time.

Modules are imported directly (``from .domain.scheduling.router import router``)
to keep this package free of import cycles.
"""
