"""Tests for plan/task status enums and transition validation."""

import pytest

from plan_engine.core.exceptions import InvalidTransitionError, ValidationError
from plan_engine.domain.statuses import (
    PLAN_TRANSITIONS,
    TASK_TRANSITIONS,
    EntityKind,
    PlanStatus,
    TaskStatus,
    allowed_transitions,
    can_transition,
    is_terminal,
    parse_plan_status,
    parse_task_status,
    validate_transition,
)

pytestmark = pytest.mark.unit


# ============================================================================
# Plan transitions
# ============================================================================


@pytest.mark.parametrize(
    "current,requested",
    [
        (PlanStatus.DRAFT, PlanStatus.ACTIVE),
        (PlanStatus.ACTIVE, PlanStatus.COMPLETED),
        (PlanStatus.COMPLETED, PlanStatus.ARCHIVED),
    ],
)
def test_plan_forward_transitions_succeed(current, requested):
    validate_transition(EntityKind.PLAN, current, requested)


@pytest.mark.parametrize(
    "current,requested",
    [
        (PlanStatus.DRAFT, PlanStatus.COMPLETED),
        (PlanStatus.DRAFT, PlanStatus.ARCHIVED),
        (PlanStatus.ACTIVE, PlanStatus.DRAFT),
        (PlanStatus.ACTIVE, PlanStatus.ARCHIVED),
        (PlanStatus.COMPLETED, PlanStatus.ACTIVE),
    ],
)
def test_plan_skipping_or_backward_transitions_rejected(current, requested):
    with pytest.raises(InvalidTransitionError) as exc_info:
        validate_transition(EntityKind.PLAN, current, requested)

    assert exc_info.value.current == current.value
    assert exc_info.value.requested == requested.value
    assert exc_info.value.terminal is False


def test_archived_plan_is_terminal():
    """Archived has no exits, including archived -> archived."""
    for requested in PlanStatus:
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(EntityKind.PLAN, PlanStatus.ARCHIVED, requested)
        assert exc_info.value.terminal is True
        assert "terminal" in exc_info.value.message

    assert is_terminal(EntityKind.PLAN, "archived")


def test_self_transitions_rejected_for_every_status():
    for status in PlanStatus:
        assert not can_transition(EntityKind.PLAN, status, status)
    for status in TaskStatus:
        assert not can_transition(EntityKind.TASK, status, status)


# ============================================================================
# Task transitions
# ============================================================================


@pytest.mark.parametrize(
    "current,requested",
    [
        (TaskStatus.PENDING, TaskStatus.IN_PROGRESS),
        (TaskStatus.PENDING, TaskStatus.COMPLETED),
        (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED),
        (TaskStatus.IN_PROGRESS, TaskStatus.FAILED),
    ],
)
def test_task_legal_transitions_succeed(current, requested):
    validate_transition(EntityKind.TASK, current, requested)


def test_pending_task_cannot_fail_directly():
    with pytest.raises(InvalidTransitionError):
        validate_transition(EntityKind.TASK, TaskStatus.PENDING, TaskStatus.FAILED)


@pytest.mark.parametrize("terminal", [TaskStatus.COMPLETED, TaskStatus.FAILED])
def test_completed_and_failed_tasks_are_terminal(terminal):
    assert is_terminal(EntityKind.TASK, terminal)
    with pytest.raises(InvalidTransitionError) as exc_info:
        validate_transition(EntityKind.TASK, terminal, TaskStatus.IN_PROGRESS)
    assert exc_info.value.terminal is True
    assert exc_info.value.entity == "task"


def test_transition_tables_cover_every_status():
    assert set(PLAN_TRANSITIONS) == set(PlanStatus)
    assert set(TASK_TRANSITIONS) == set(TaskStatus)


def test_allowed_transitions_accepts_string_values():
    assert allowed_transitions(EntityKind.TASK, "pending") == frozenset(
        {TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED}
    )
    assert allowed_transitions("plan", "draft") == frozenset({PlanStatus.ACTIVE})


# ============================================================================
# Parsing
# ============================================================================


@pytest.mark.parametrize("raw", ["in_progress", "InProgress", "in-progress", "In Progress", "IN_PROGRESS"])
def test_parse_task_status_accepts_common_spellings(raw):
    assert parse_task_status(raw) == TaskStatus.IN_PROGRESS


def test_parse_plan_status_passes_enum_members_through():
    assert parse_plan_status(PlanStatus.ACTIVE) is PlanStatus.ACTIVE
    assert parse_plan_status(" Draft ") == PlanStatus.DRAFT


def test_unknown_status_raises_validation_error():
    with pytest.raises(ValidationError) as exc_info:
        parse_plan_status("paused")
    assert exc_info.value.field == "status"

    with pytest.raises(ValidationError):
        validate_transition(EntityKind.TASK, "pending", "done")
