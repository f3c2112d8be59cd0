"""Tests for the assignment state machine and duration bookkeeping."""

from datetime import datetime, time

import pytest

from maintenance_scheduler.domain.scheduling.errors import InvalidTransition
from maintenance_scheduler.domain.scheduling.lifecycle import (
    AssignmentEvent,
    LifecycleService,
    apply_transition,
    can_apply,
    compute_duration_state,
)
from maintenance_scheduler.models import IssueAssignment

START = datetime(2024, 1, 1, 10, 0)


@pytest.fixture
def lifecycle(repo):
    return LifecycleService(repo, auto_approve=False)


@pytest.fixture
def assignment(book):
    return book(time(10, 0), time(11, 30), allocated=90)


class TestApplyTransition:
    @pytest.mark.parametrize(
        "status,event,target,stamp",
        [
            ("assigned", "start", "in_progress", "started_at"),
            ("in_progress", "hold", "on_hold", "held_at"),
            ("on_hold", "resume", "in_progress", "resumed_at"),
            ("in_progress", "finish", "finished", "finished_at"),
            ("finished", "approve", "completed", "completed_at"),
            ("assigned", "cancel", "cancelled", "cancelled_at"),
            ("on_hold", "cancel", "cancelled", "cancelled_at"),
            ("finished", "cancel", "cancelled", "cancelled_at"),
        ],
    )
    def test_valid_transitions(self, status, event, target, stamp):
        assignment = IssueAssignment(status=status)

        result = apply_transition(assignment, event, START)

        assert result.value == target
        assert assignment.status == target
        assert getattr(assignment, stamp) == START

    @pytest.mark.parametrize(
        "status,event",
        [
            ("assigned", "finish"),
            ("assigned", "hold"),
            ("in_progress", "start"),
            ("on_hold", "finish"),
            ("finished", "start"),
            ("completed", "cancel"),
            ("cancelled", "start"),
            ("cancelled", "cancel"),
        ],
    )
    def test_invalid_transitions_keep_state(self, status, event):
        assignment = IssueAssignment(status=status)

        with pytest.raises(InvalidTransition) as exc_info:
            apply_transition(assignment, event, START)

        assert assignment.status == status
        assert exc_info.value.current_status == status
        assert exc_info.value.event == event

    def test_unknown_event(self):
        with pytest.raises(InvalidTransition):
            apply_transition(IssueAssignment(status="assigned"), "teleport")

    def test_can_apply(self):
        assert can_apply(IssueAssignment(status="assigned"), AssignmentEvent.START)
        assert not can_apply(IssueAssignment(status="assigned"), AssignmentEvent.APPROVE)


class TestDurationState:
    def test_nothing_known_before_start(self):
        state = compute_duration_state(IssueAssignment(status="assigned", allocated_duration_minutes=90))

        assert state.total_allowed_minutes == 90
        assert state.actual_minutes is None
        assert state.overtime_minutes is None
        assert not state.can_request_extension

    def test_overtime_counts_approved_extensions(self):
        assignment = IssueAssignment(
            status="finished",
            allocated_duration_minutes=90,
            started_at=START,
            finished_at=datetime(2024, 1, 1, 11, 40),
        )

        assert compute_duration_state(assignment).overtime_minutes == 10
        state = compute_duration_state(assignment, approved_extension_minutes=15)
        assert state.total_allowed_minutes == 105
        assert state.overtime_minutes == -5

    def test_unknown_allocation_has_no_overtime(self):
        assignment = IssueAssignment(
            status="finished", started_at=START, finished_at=datetime(2024, 1, 1, 11, 0)
        )

        state = compute_duration_state(assignment)

        assert state.actual_minutes == 60
        assert state.total_allowed_minutes is None
        assert state.overtime_minutes is None

    def test_extension_can_be_requested_while_in_progress(self):
        assignment = IssueAssignment(status="in_progress", allocated_duration_minutes=90)

        assert compute_duration_state(assignment).can_request_extension
        assert not compute_duration_state(assignment, has_pending_extension=True).can_request_extension


class TestLifecycleService:
    def test_full_workflow_writes_timeline(self, lifecycle, assignment):
        lifecycle.transition(assignment.id, "start", "tech", now=START)
        lifecycle.transition(assignment.id, "hold", "tech", notes="waiting for parts", now=datetime(2024, 1, 1, 10, 30))
        lifecycle.transition(assignment.id, "resume", "tech", now=datetime(2024, 1, 1, 10, 45))
        finished = lifecycle.transition(assignment.id, "finish", "tech", now=datetime(2024, 1, 1, 11, 40))

        assert finished.status == "finished"
        assert [t.action for t in finished.timeline] == ["assigned", "started", "held", "resumed", "finished"]
        assert finished.timeline[2].notes == "waiting for parts"
        assert finished.timeline[-1].details == {"from": "in_progress", "to": "finished", "duration_minutes": 100}

        completed = lifecycle.transition(assignment.id, "approve", "admin")
        assert completed.status == "completed"
        assert lifecycle.duration_state(completed).overtime_minutes == 10

    def test_invalid_transition_is_rolled_back(self, repo, lifecycle, assignment):
        with pytest.raises(InvalidTransition):
            lifecycle.transition(assignment.id, "finish")

        repo.db.expire_all()
        reloaded = lifecycle.get_assignment(assignment.id)
        assert reloaded.status == "assigned"
        assert reloaded.finished_at is None
        assert [t.action for t in reloaded.timeline] == ["assigned"]

    def test_auto_approve_completes_finished_work(self, repo, assignment):
        service = LifecycleService(repo, auto_approve=True)
        service.transition(assignment.id, "start", now=START)

        completed = service.transition(assignment.id, "finish", now=datetime(2024, 1, 1, 11, 0))

        assert completed.status == "completed"
        assert completed.completed_at is not None
        assert [t.action for t in completed.timeline][-2:] == ["finished", "approved"]
        assert completed.timeline[-1].performed_by is None
        assert completed.timeline[-1].details["auto_approved"] is True
