"""Tests for PlanService: end-to-end lifecycle scenarios over a real database."""

import asyncio

import pytest

from plan_engine.core.exceptions import (
    ActivePlanConflictError,
    DuplicatePlanNameError,
    InvalidTransitionError,
    NotFoundError,
    SessionMismatchError,
    ValidationError,
)
from plan_engine.domain.statuses import PlanStatus, TaskStatus

pytestmark = pytest.mark.integration


# ============================================================================
# Scenarios
# ============================================================================


async def test_launch_plan_full_lifecycle(service, count_rows):
    """Create active with two tasks, finish both, complete and archive."""
    created = await service.create_plan(
        "session-A", "proj-1", "Launch", initial_tasks=["Write copy", "Deploy"], status="active"
    )
    plan_id = created.plan.id
    assert created.plan.status == PlanStatus.ACTIVE
    assert await count_rows() == {"plans": 1, "tasks": 2, "plan_history": 1, "task_history": 2}

    for task in created.tasks:
        await service.start_task("session-A", plan_id, task.id)
        await service.complete_task("session-A", plan_id, task.id, reason="shipped")

    await service.complete_plan("session-A", plan_id)
    archived = await service.archive_plan("session-A", plan_id)
    assert archived.status == PlanStatus.ARCHIVED

    plan = await service.get_plan("session-A", plan_id)
    assert all(t.status == TaskStatus.COMPLETED for t in plan.tasks)

    history = await service.get_plan_history("session-A", plan_id)
    assert [h.new_status for h in history] == [PlanStatus.ARCHIVED, PlanStatus.COMPLETED, PlanStatus.ACTIVE]
    assert all(h.changed_by == "session-A" for h in history)

    task_history = await service.get_task_history("session-A", plan_id, created.tasks[0].id)
    assert [h.new_status for h in task_history] == [TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS, TaskStatus.PENDING]
    assert task_history[0].reason == "shipped"


async def test_complete_task_directly_from_pending(service):
    created = await service.create_plan("session-A", "proj-1", "Quick", initial_tasks=["only"])

    task = await service.complete_task("session-A", created.plan.id, created.tasks[0].id)

    assert task.status == TaskStatus.COMPLETED
    history = await service.get_task_history("session-A", created.plan.id, task.id)
    assert (history[0].old_status, history[0].new_status) == (TaskStatus.PENDING, TaskStatus.COMPLETED)


async def test_archiving_twice_fails_as_terminal(service):
    created = await service.create_plan("session-A", "proj-1", "Twice", status="active")
    await service.complete_plan("session-A", created.plan.id)
    await service.archive_plan("session-A", created.plan.id)

    with pytest.raises(InvalidTransitionError) as exc_info:
        await service.archive_plan("session-A", created.plan.id)

    assert exc_info.value.terminal is True
    assert len(await service.get_plan_history("session-A", created.plan.id)) == 3


async def test_failed_task_is_terminal(service):
    created = await service.create_plan("session-A", "proj-1", "Risky", initial_tasks=["flaky"])
    task_id = created.tasks[0].id

    with pytest.raises(InvalidTransitionError):
        await service.fail_task("session-A", created.plan.id, task_id)

    await service.start_task("session-A", created.plan.id, task_id)
    failed = await service.fail_task("session-A", created.plan.id, task_id, reason="timeout")
    assert failed.status == TaskStatus.FAILED

    with pytest.raises(InvalidTransitionError):
        await service.complete_task("session-A", created.plan.id, task_id)


# ============================================================================
# One active plan per session
# ============================================================================


async def test_concurrent_active_creates_yield_exactly_one_plan(service, store):
    results = await asyncio.gather(
        service.create_plan("session-A", "proj-1", "Racer 1", status="active"),
        service.create_plan("session-A", "proj-1", "Racer 2", status="active"),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, BaseException)]
    failures = [r for r in results if isinstance(r, BaseException)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], ActivePlanConflictError)
    assert failures[0].active_plan_id == successes[0].plan.id

    plans = await store.list_plans_by_session("session-A")
    assert [p.status for p in plans] == [PlanStatus.ACTIVE]


async def test_concurrent_activations_leave_exactly_one_active_plan(service, store):
    first = await service.create_plan("session-A", "proj-1", "Draft 1")
    second = await service.create_plan("session-A", "proj-1", "Draft 2")

    results = await asyncio.gather(
        service.activate_plan("session-A", first.plan.id),
        service.activate_plan("session-A", second.plan.id),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, BaseException)]
    failures = [r for r in results if isinstance(r, BaseException)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], ActivePlanConflictError)
    assert failures[0].active_plan_id == successes[0].id

    plans = await store.list_plans_by_session("session-A")
    assert sorted(p.status for p in plans) == [PlanStatus.ACTIVE, PlanStatus.DRAFT]
    loser_id = ({first.plan.id, second.plan.id} - {successes[0].id}).pop()
    assert [h.new_status for h in await store.get_plan_history(loser_id)] == [PlanStatus.DRAFT]


async def test_activating_second_plan_conflicts_until_first_completes(service):
    first = await service.create_plan("session-A", "proj-1", "First", status="active")
    second = await service.create_plan("session-A", "proj-1", "Second")

    with pytest.raises(ActivePlanConflictError) as exc_info:
        await service.activate_plan("session-A", second.plan.id)
    assert exc_info.value.active_plan_id == first.plan.id

    await service.complete_plan("session-A", first.plan.id)
    activated = await service.activate_plan("session-A", second.plan.id)
    assert activated.status == PlanStatus.ACTIVE


async def test_other_sessions_can_hold_their_own_active_plan(service):
    await service.create_plan("session-A", "proj-1", "A", status="active")
    other = await service.create_plan("session-B", "proj-1", "B", status="active")
    assert other.plan.status == PlanStatus.ACTIVE


# ============================================================================
# Plan names
# ============================================================================


async def test_plan_names_are_unique_per_session_ignoring_case(service, count_rows):
    first = await service.create_plan("session-A", "proj-1", "Launch")

    with pytest.raises(DuplicatePlanNameError) as exc_info:
        await service.create_plan("session-A", "proj-2", "launch", initial_tasks=["never written"])
    assert exc_info.value.existing_plan_id == first.plan.id
    assert await count_rows() == {"plans": 1, "tasks": 0, "plan_history": 1, "task_history": 0}

    other = await service.create_plan("session-B", "proj-1", "Launch")
    assert other.plan.id != first.plan.id


async def test_rename_cannot_collide_with_another_plan_in_the_session(service):
    await service.create_plan("session-A", "proj-1", "Alpha")
    beta = await service.create_plan("session-A", "proj-1", "Beta")

    with pytest.raises(DuplicatePlanNameError):
        await service.update_plan("session-A", beta.plan.id, name="ALPHA")

    renamed = await service.update_plan("session-A", beta.plan.id, name="beta")
    assert renamed.name == "beta"


# ============================================================================
# Session isolation
# ============================================================================


async def test_foreign_session_cannot_touch_plan(service, store):
    created = await service.create_plan("session-A", "proj-1", "Private", initial_tasks=["secret"])
    plan_id = created.plan.id
    task_id = created.tasks[0].id

    attempts = [
        service.get_plan("session-B", plan_id),
        service.update_plan("session-B", plan_id, name="Hijacked"),
        service.activate_plan("session-B", plan_id),
        service.archive_plan("session-B", plan_id),
        service.create_task("session-B", plan_id, "sneaky"),
        service.update_task("session-B", plan_id, task_id, title="Hijacked"),
        service.complete_task("session-B", plan_id, task_id),
        service.get_plan_history("session-B", plan_id),
    ]
    for attempt in attempts:
        with pytest.raises(SessionMismatchError):
            await attempt

    plan = await store.get_plan_with_tasks(plan_id)
    assert plan.plan.name == "Private"
    assert plan.plan.status == PlanStatus.DRAFT
    assert [t.title for t in plan.tasks] == ["secret"]
    assert plan.tasks[0].status == TaskStatus.PENDING
    assert len(await store.get_plan_history(plan_id)) == 1


async def test_get_plan_by_name_checks_ownership(service):
    created = await service.create_plan("session-A", "proj-1", "Named", initial_tasks=["x"])

    found = await service.get_plan_by_name("session-A", "proj-1", "Named")
    assert found.plan.id == created.plan.id
    assert [t.title for t in found.tasks] == ["x"]

    with pytest.raises(SessionMismatchError):
        await service.get_plan_by_name("session-B", "proj-1", "Named")
    with pytest.raises(NotFoundError):
        await service.get_plan_by_name("session-A", "proj-1", "Unknown")


async def test_get_plan_by_name_finds_own_plan_when_another_session_reuses_the_name(service):
    mine = await service.create_plan("session-A", "proj-1", "Launch", initial_tasks=["mine"])
    theirs = await service.create_plan("session-B", "proj-1", "Launch", initial_tasks=["theirs"])

    found = await service.get_plan_by_name("session-A", "proj-1", "Launch")
    assert found.plan.id == mine.plan.id
    assert [t.title for t in found.tasks] == ["mine"]

    found = await service.get_plan_by_name("session-B", "proj-1", "Launch")
    assert found.plan.id == theirs.plan.id


async def test_get_plan_by_name_rejects_blank_lookup_keys(service):
    await service.create_plan("session-A", "proj-1", "Named")

    with pytest.raises(ValidationError) as exc_info:
        await service.get_plan_by_name("session-A", "   ", "Named")
    assert exc_info.value.field == "project_id"

    with pytest.raises(ValidationError) as exc_info:
        await service.get_plan_by_name("session-A", "proj-1", " \t ")
    assert exc_info.value.field == "name"

    found = await service.get_plan_by_name("session-A", " proj-1 ", " Named ")
    assert found.plan.name == "Named"


async def test_list_plans_only_returns_callers_plans(service):
    await service.create_plan("session-A", "proj-1", "mine")
    await service.create_plan("session-B", "proj-1", "theirs")

    plans = await service.list_plans("session-A")
    assert [p.name for p in plans] == ["mine"]


# ============================================================================
# Validation
# ============================================================================


async def test_invalid_input_is_rejected_before_any_write(service, count_rows):
    with pytest.raises(ValidationError):
        await service.create_plan("", "proj-1", "No session")
    with pytest.raises(ValidationError):
        await service.create_plan("session-A", "proj-1", "")
    with pytest.raises(ValidationError):
        await service.create_plan("session-A", "proj-1", "Archived", status="archived")
    with pytest.raises(ValidationError):
        await service.create_plan("session-A", "proj-1", "Bad task", initial_tasks=[{"priority": "high"}])

    assert (await count_rows())["plans"] == 0


async def test_update_requires_at_least_one_field(service):
    created = await service.create_plan("session-A", "proj-1", "Plan", initial_tasks=["t"])

    with pytest.raises(ValidationError):
        await service.update_plan("session-A", created.plan.id)
    with pytest.raises(ValidationError):
        await service.update_task("session-A", created.plan.id, created.tasks[0].id)


async def test_create_task_uses_default_priority(service):
    created = await service.create_plan("session-A", "proj-1", "Plan")

    task = await service.create_task("session-A", created.plan.id, "new work")

    assert task.priority == "normal"
    assert task.status == TaskStatus.PENDING
    history = await service.get_task_history("session-A", created.plan.id, task.id)
    assert history[0].old_status is None


async def test_missing_plan_raises_not_found(service):
    with pytest.raises(NotFoundError):
        await service.get_plan("session-A", 12345)
