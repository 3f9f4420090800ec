"""Plan and task status enums and transition validation.

Pure domain logic with no database access. The adjacency tables below are the
single source of truth for which status changes are legal.
"""
import re
from enum import Enum

from plan_engine.core.exceptions import InvalidTransitionError, ValidationError


class EntityKind(str, Enum):
    """Kinds of records that carry a lifecycle status."""

    PLAN = "plan"
    TASK = "task"


class PlanStatus(str, Enum):
    """Plan lifecycle status. Linear: draft -> active -> completed -> archived."""

    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class TaskStatus(str, Enum):
    """Task execution status. completed and failed are terminal."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


PLAN_TRANSITIONS: dict[PlanStatus, frozenset[PlanStatus]] = {
    PlanStatus.DRAFT: frozenset({PlanStatus.ACTIVE}),
    PlanStatus.ACTIVE: frozenset({PlanStatus.COMPLETED}),
    PlanStatus.COMPLETED: frozenset({PlanStatus.ARCHIVED}),
    PlanStatus.ARCHIVED: frozenset(),  # Terminal
}

TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    # pending -> completed lets complete_task close work that was never started
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),  # Terminal
    TaskStatus.FAILED: frozenset(),  # Terminal
}

# Statuses a plan may be created in
INITIAL_PLAN_STATUSES = frozenset({PlanStatus.DRAFT, PlanStatus.ACTIVE})


def _table_for(entity_kind: EntityKind) -> dict:
    if entity_kind == EntityKind.PLAN:
        return PLAN_TRANSITIONS
    return TASK_TRANSITIONS


def _coerce(entity_kind: EntityKind, status: str) -> PlanStatus | TaskStatus:
    if entity_kind == EntityKind.PLAN:
        return parse_plan_status(status)
    return parse_task_status(status)


def allowed_transitions(entity_kind: EntityKind, current: str) -> frozenset:
    """Return the set of statuses reachable in one step from ``current``."""
    entity_kind = EntityKind(entity_kind)
    return _table_for(entity_kind)[_coerce(entity_kind, current)]


def is_terminal(entity_kind: EntityKind, status: str) -> bool:
    """True when no transition leaves ``status``."""
    return not allowed_transitions(entity_kind, status)


def can_transition(entity_kind: EntityKind, current: str, requested: str) -> bool:
    """Boolean form of validate_transition."""
    entity_kind = EntityKind(entity_kind)
    return _coerce(entity_kind, requested) in allowed_transitions(entity_kind, current)


def validate_transition(entity_kind: EntityKind, current: str, requested: str) -> None:
    """Validate a status change against the adjacency table.

    Pure function -- no side effects, no DB access.

    Args:
        entity_kind: EntityKind.PLAN or EntityKind.TASK
        current: Current status (enum member or its string value)
        requested: Requested status (enum member or its string value)

    Raises:
        InvalidTransitionError: The pair is not in the adjacency table. The
            error's ``terminal`` flag is set when ``current`` has no exits.
        ValidationError: Either status is not a member of the entity's enum.
    """
    entity_kind = EntityKind(entity_kind)
    current_status = _coerce(entity_kind, current)
    requested_status = _coerce(entity_kind, requested)

    allowed = _table_for(entity_kind)[current_status]
    if requested_status not in allowed:
        raise InvalidTransitionError(
            entity_kind.value,
            current_status.value,
            requested_status.value,
            terminal=not allowed,
        )


def _normalize(value: str) -> str:
    # "InProgress" / "in-progress" / "In Progress" / "IN_PROGRESS" -> "in_progress"
    chars = []
    prev = ""
    for ch in value.strip():
        if ch.isupper() and prev.islower():
            chars.append("_")
        chars.append(ch.lower())
        prev = ch
    return re.sub(r"[\s\-_]+", "_", "".join(chars))


def parse_plan_status(value: str | PlanStatus) -> PlanStatus:
    """Parse a plan status from its enum member or a loosely spelled string."""
    if isinstance(value, PlanStatus):
        return value
    try:
        return PlanStatus(_normalize(str(value)))
    except ValueError:
        raise ValidationError(f"Unknown plan status '{value}'", field="status") from None


def parse_task_status(value: str | TaskStatus) -> TaskStatus:
    """Parse a task status from its enum member or a loosely spelled string."""
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(_normalize(str(value)))
    except ValueError:
        raise ValidationError(f"Unknown task status '{value}'", field="status") from None
