"""Audit rows for status transitions.

These helpers only add rows to the caller's session, so a history row is
committed or rolled back together with the status change it describes.
"""

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from plan_engine.db.models import PlanHistory, TaskHistory
from plan_engine.domain.statuses import PlanStatus, TaskStatus


def _value(status: PlanStatus | TaskStatus | None) -> str | None:
    return status.value if status is not None else None


def record_plan_transition(
    session: AsyncSession,
    plan_id: int,
    old_status: PlanStatus | None,
    new_status: PlanStatus,
    changed_by: str,
    reason: str | None = None,
    changed_at: datetime | None = None,
) -> PlanHistory:
    """Append a plan_history row. old_status None marks the initial status."""
    entry = PlanHistory(
        plan_id=plan_id,
        old_status=_value(old_status),
        new_status=new_status.value,
        changed_by=changed_by,
        changed_at=changed_at or datetime.now(timezone.utc),
        reason=reason,
    )
    session.add(entry)
    return entry


def record_task_transition(
    session: AsyncSession,
    task_id: int,
    old_status: TaskStatus | None,
    new_status: TaskStatus,
    changed_by: str,
    reason: str | None = None,
    changed_at: datetime | None = None,
) -> TaskHistory:
    """Append a task_history row. old_status None marks the initial status."""
    entry = TaskHistory(
        task_id=task_id,
        old_status=_value(old_status),
        new_status=new_status.value,
        changed_by=changed_by,
        changed_at=changed_at or datetime.now(timezone.utc),
        reason=reason,
    )
    session.add(entry)
    return entry
