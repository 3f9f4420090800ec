"""PlanStore: Transactional access to plans, tasks and their history.

Every status change updates the owning row and appends exactly one history
row inside the same transaction. Plan creation writes the plan, its initial
tasks and all initial history rows atomically.
"""

from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from plan_engine.core.exceptions import (
    ActivePlanConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from plan_engine.db.audit import record_plan_transition, record_task_transition
from plan_engine.db.base import Database
from plan_engine.db.models import Plan, PlanHistory, Task, TaskHistory
from plan_engine.domain.statuses import (
    INITIAL_PLAN_STATUSES,
    EntityKind,
    PlanStatus,
    TaskStatus,
    parse_plan_status,
    parse_task_status,
    validate_transition,
)
from plan_engine.schemas.plans import (
    PlanHistoryEntry,
    PlanRecord,
    PlanWithTasks,
    TaskHistoryEntry,
    TaskRecord,
    TaskSpec,
)

logger = structlog.get_logger(__name__)

# Session.info key naming the session whose plan a transaction is activating
_ACTIVATING_SESSION = "activating_session_id"

DEFAULT_PRIORITY = "normal"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _describe(exc: SQLAlchemyError) -> str:
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else str(exc)


def _task_spec(item: Any, index: int) -> TaskSpec:
    if isinstance(item, TaskSpec):
        return item
    try:
        return TaskSpec.model_validate(item)
    except PydanticValidationError as e:
        first = e.errors()[0]
        raise ValidationError(
            f"Invalid initial task #{index + 1}: {first['msg']}",
            field=f"initial_tasks[{index}]",
        ) from None


class PlanStore:
    """Record store for the four plan tables.

    Takes an explicit Database so tests can hand in an isolated one.
    """

    def __init__(self, database: Database, default_priority: str = DEFAULT_PRIORITY):
        self.database = database
        self.session_factory = database.session_factory
        self.default_priority = default_priority

    # ------------------------------------------------------------------
    # Session helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _reading(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Session for read-only work; driver errors become StorageError."""
        try:
            async with self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("storage_error", operation=operation, error=_describe(e), error_type=type(e).__name__)
            raise StorageError(operation, _describe(e)) from e

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Session inside one transaction: commit on success, roll back on any error.

        A unique violation raised while activating a plan is reported as
        ActivePlanConflictError naming the plan that won.
        """
        session: AsyncSession | None = None
        try:
            async with self.session_factory() as session, session.begin():
                yield session
        except IntegrityError as e:
            activating = session.info.get(_ACTIVATING_SESSION) if session is not None else None
            if activating is not None:
                active = await self.get_active_plan(activating)
                if active is not None:
                    logger.warning(
                        "active_plan_conflict",
                        operation=operation,
                        session_id=activating,
                        active_plan_id=active.id,
                        source="database",
                    )
                    raise ActivePlanConflictError(activating, active.id) from e
            logger.error("storage_error", operation=operation, error=_describe(e), error_type=type(e).__name__)
            raise StorageError(operation, _describe(e)) from e
        except SQLAlchemyError as e:
            logger.error("storage_error", operation=operation, error=_describe(e), error_type=type(e).__name__)
            raise StorageError(operation, _describe(e)) from e

    async def _lock_plan(self, session: AsyncSession, plan_id: int) -> Plan:
        result = await session.execute(select(Plan).where(Plan.id == plan_id).with_for_update())
        plan = result.scalar_one_or_none()
        if plan is None:
            raise NotFoundError(plan_id)
        return plan

    async def _lock_task(self, session: AsyncSession, plan_id: int, task_id: int) -> Task:
        result = await session.execute(
            select(Task).where(Task.id == task_id, Task.plan_id == plan_id).with_for_update()
        )
        task = result.scalar_one_or_none()
        if task is None:
            raise NotFoundError(plan_id, task_id)
        return task

    async def _insert_task(
        self,
        session: AsyncSession,
        plan_id: int,
        spec: TaskSpec,
        actor: str,
        now: datetime,
    ) -> Task:
        task = Task(
            plan_id=plan_id,
            title=spec.title,
            description=spec.description,
            priority=spec.priority or self.default_priority,
            status=TaskStatus.PENDING.value,
            created_at=now,
            updated_at=now,
            metadata_={},
        )
        session.add(task)
        await session.flush()
        record_task_transition(session, task.id, None, TaskStatus.PENDING, actor, changed_at=now)
        return task

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    async def get_plan_by_id(self, plan_id: int) -> PlanRecord:
        """Return the plan or raise NotFoundError(plan_id)."""
        async with self._reading("get_plan_by_id") as session:
            plan = await session.get(Plan, plan_id)
            if plan is None:
                raise NotFoundError(plan_id)
            return PlanRecord.model_validate(plan)

    async def get_plan_by_project_and_name(
        self, project_id: str, name: str, session_id: str | None = None
    ) -> PlanRecord:
        """Return the newest plan with this name in the project.

        Names are only unique per session, so pass ``session_id`` to restrict
        the lookup to one owner.
        """
        query = select(Plan).where(Plan.project_id == project_id, Plan.name == name)
        if session_id is not None:
            query = query.where(Plan.session_id == session_id)

        async with self._reading("get_plan_by_project_and_name") as session:
            result = await session.execute(query.order_by(Plan.created_at.desc(), Plan.id.desc()).limit(1))
            plan = result.scalar_one_or_none()
            if plan is None:
                raise NotFoundError(project_id=project_id, name=name)
            return PlanRecord.model_validate(plan)

    async def find_plan_by_session_and_name(self, session_id: str, name: str) -> PlanRecord | None:
        """Return the session's plan whose name matches case-insensitively, if any."""
        async with self._reading("find_plan_by_session_and_name") as session:
            result = await session.execute(
                select(Plan)
                .where(Plan.session_id == session_id, func.lower(Plan.name) == name.lower())
                .order_by(Plan.id.asc())
                .limit(1)
            )
            plan = result.scalar_one_or_none()
            return PlanRecord.model_validate(plan) if plan is not None else None

    async def get_active_plan(self, session_id: str) -> PlanRecord | None:
        """Return the session's active plan, if any."""
        async with self._reading("get_active_plan") as session:
            result = await session.execute(
                select(Plan)
                .where(Plan.session_id == session_id, Plan.status == PlanStatus.ACTIVE.value)
                .limit(1)
            )
            plan = result.scalar_one_or_none()
            return PlanRecord.model_validate(plan) if plan is not None else None

    async def list_plans_by_session(self, session_id: str) -> list[PlanRecord]:
        """All plans owned by the session, newest first."""
        async with self._reading("list_plans_by_session") as session:
            result = await session.execute(
                select(Plan)
                .where(Plan.session_id == session_id)
                .order_by(Plan.created_at.desc(), Plan.id.desc())
            )
            return [PlanRecord.model_validate(plan) for plan in result.scalars()]

    async def create_plan(
        self,
        session_id: str,
        project_id: str,
        name: str,
        description: str | None = None,
        initial_tasks: Iterable[TaskSpec | str | dict] = (),
        status: PlanStatus | str = PlanStatus.DRAFT,
        actor: str | None = None,
        reason: str | None = None,
        metadata: dict | None = None,
    ) -> PlanWithTasks:
        """Insert a plan, its initial tasks and their history rows atomically.

        Args:
            session_id: Owning session
            project_id: Project the plan belongs to
            name: Plan name
            description: Optional description
            initial_tasks: TaskSpec objects, dicts or bare titles
            status: draft or active
            actor: Recorded as changed_by (defaults to session_id)
            reason: Optional reason on the initial plan history row
            metadata: Optional JSON metadata

        Returns:
            PlanWithTasks with the tasks in insertion order

        Raises:
            ValidationError: A task spec or the initial status is invalid (nothing written)
            ActivePlanConflictError: status is active and the session already has an active plan
            StorageError: The transaction failed (nothing written)
        """
        specs = [_task_spec(item, i) for i, item in enumerate(initial_tasks)]
        initial_status = parse_plan_status(status)
        if initial_status not in INITIAL_PLAN_STATUSES:
            raise ValidationError(
                f"Plans can only be created as draft or active, not {initial_status.value}",
                field="status",
            )
        actor = actor or session_id

        async with self._transaction("create_plan") as session:
            if initial_status == PlanStatus.ACTIVE:
                session.info[_ACTIVATING_SESSION] = session_id

            now = _utcnow()
            plan = Plan(
                project_id=project_id,
                session_id=session_id,
                name=name,
                description=description,
                status=initial_status.value,
                created_at=now,
                updated_at=now,
                metadata_=metadata or {},
            )
            session.add(plan)
            await session.flush()

            tasks = []
            for spec in specs:
                tasks.append(await self._insert_task(session, plan.id, spec, actor, now))

            record_plan_transition(session, plan.id, None, initial_status, actor, reason, changed_at=now)
            await session.flush()

            created = PlanWithTasks(
                plan=PlanRecord.model_validate(plan),
                tasks=[TaskRecord.model_validate(task) for task in tasks],
            )

        logger.info(
            "plan_created",
            plan_id=created.plan.id,
            session_id=session_id,
            project_id=project_id,
            status=initial_status.value,
            task_count=len(created.tasks),
        )
        return created

    async def update_plan(self, plan_id: int, name: str | None = None, description: str | None = None) -> PlanRecord:
        """Change name and/or description. No status change, no history row."""
        async with self._transaction("update_plan") as session:
            plan = await self._lock_plan(session, plan_id)
            if name is not None:
                plan.name = name
            if description is not None:
                plan.description = description
            plan.updated_at = _utcnow()
            await session.flush()
            record = PlanRecord.model_validate(plan)

        logger.info("plan_updated", plan_id=plan_id)
        return record

    async def set_plan_status(
        self,
        plan_id: int,
        new_status: PlanStatus | str,
        actor: str,
        reason: str | None = None,
    ) -> PlanRecord:
        """Transition a plan and append its history row in one transaction.

        Raises:
            NotFoundError: No such plan
            InvalidTransitionError: The adjacency table forbids the change
            ActivePlanConflictError: Activation collided with another active plan
        """
        requested = parse_plan_status(new_status)

        async with self._transaction("set_plan_status") as session:
            plan = await self._lock_plan(session, plan_id)
            old_status = PlanStatus(plan.status)
            validate_transition(EntityKind.PLAN, old_status, requested)
            if requested == PlanStatus.ACTIVE:
                session.info[_ACTIVATING_SESSION] = plan.session_id

            now = _utcnow()
            plan.status = requested.value
            plan.updated_at = now
            record_plan_transition(session, plan.id, old_status, requested, actor, reason, changed_at=now)
            await session.flush()
            record = PlanRecord.model_validate(plan)

        logger.info(
            "plan_status_changed",
            plan_id=plan_id,
            old_status=old_status.value,
            new_status=requested.value,
            changed_by=actor,
        )
        return record

    async def archive_plan(self, plan_id: int, actor: str, reason: str | None = None) -> PlanRecord:
        """Transition the plan to archived (terminal)."""
        return await self.set_plan_status(plan_id, PlanStatus.ARCHIVED, actor, reason)

    async def get_plan_with_tasks(self, plan_id: int) -> PlanWithTasks:
        """Read a plan and its tasks (creation order)."""
        async with self._reading("get_plan_with_tasks") as session:
            plan = await session.get(Plan, plan_id)
            if plan is None:
                raise NotFoundError(plan_id)
            result = await session.execute(
                select(Task).where(Task.plan_id == plan_id).order_by(Task.created_at.asc(), Task.id.asc())
            )
            return PlanWithTasks(
                plan=PlanRecord.model_validate(plan),
                tasks=[TaskRecord.model_validate(task) for task in result.scalars()],
            )

    async def delete_plan(self, plan_id: int) -> None:
        """Hard-delete a plan. Tasks and all history rows go with it (ON DELETE CASCADE).

        Maintenance only; no caller-facing operation deletes plans.
        """
        async with self._transaction("delete_plan") as session:
            result = await session.execute(delete(Plan).where(Plan.id == plan_id))
            if result.rowcount == 0:
                raise NotFoundError(plan_id)

        logger.info("plan_deleted", plan_id=plan_id)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def get_task_by_id(self, plan_id: int, task_id: int) -> TaskRecord:
        """Return the task if it exists and belongs to plan_id."""
        async with self._reading("get_task_by_id") as session:
            result = await session.execute(select(Task).where(Task.id == task_id, Task.plan_id == plan_id))
            task = result.scalar_one_or_none()
            if task is None:
                raise NotFoundError(plan_id, task_id)
            return TaskRecord.model_validate(task)

    async def get_tasks_by_plan(self, plan_id: int) -> list[TaskRecord]:
        """Tasks of a plan, oldest first."""
        async with self._reading("get_tasks_by_plan") as session:
            result = await session.execute(
                select(Task).where(Task.plan_id == plan_id).order_by(Task.created_at.asc(), Task.id.asc())
            )
            return [TaskRecord.model_validate(task) for task in result.scalars()]

    async def create_task(
        self,
        plan_id: int,
        title: str,
        description: str | None = None,
        priority: str | None = None,
        actor: str | None = None,
    ) -> TaskRecord:
        """Insert a pending task and its initial history row."""
        spec = _task_spec({"title": title, "description": description, "priority": priority}, 0)

        async with self._transaction("create_task") as session:
            plan = await session.get(Plan, plan_id)
            if plan is None:
                raise NotFoundError(plan_id)
            task = await self._insert_task(session, plan_id, spec, actor or plan.session_id, _utcnow())
            await session.flush()
            record = TaskRecord.model_validate(task)

        logger.info("task_created", plan_id=plan_id, task_id=record.id)
        return record

    async def update_task(
        self,
        plan_id: int,
        task_id: int,
        title: str | None = None,
        description: str | None = None,
        priority: str | None = None,
    ) -> TaskRecord:
        """Change title, description and/or priority. No status change, no history row."""
        async with self._transaction("update_task") as session:
            task = await self._lock_task(session, plan_id, task_id)
            if title is not None:
                task.title = title
            if description is not None:
                task.description = description
            if priority is not None:
                task.priority = priority
            task.updated_at = _utcnow()
            await session.flush()
            record = TaskRecord.model_validate(task)

        logger.info("task_updated", plan_id=plan_id, task_id=task_id)
        return record

    async def set_task_status(
        self,
        plan_id: int,
        task_id: int,
        new_status: TaskStatus | str,
        actor: str,
        reason: str | None = None,
    ) -> TaskRecord:
        """Transition a task and append its history row in one transaction."""
        requested = parse_task_status(new_status)

        async with self._transaction("set_task_status") as session:
            task = await self._lock_task(session, plan_id, task_id)
            old_status = TaskStatus(task.status)
            validate_transition(EntityKind.TASK, old_status, requested)

            now = _utcnow()
            task.status = requested.value
            task.updated_at = now
            record_task_transition(session, task.id, old_status, requested, actor, reason, changed_at=now)
            await session.flush()
            record = TaskRecord.model_validate(task)

        logger.info(
            "task_status_changed",
            plan_id=plan_id,
            task_id=task_id,
            old_status=old_status.value,
            new_status=requested.value,
            changed_by=actor,
        )
        return record

    async def complete_task(self, plan_id: int, task_id: int, actor: str, reason: str | None = None) -> TaskRecord:
        """Transition the task to completed."""
        return await self.set_task_status(plan_id, task_id, TaskStatus.COMPLETED, actor, reason)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def get_plan_history(self, plan_id: int) -> list[PlanHistoryEntry]:
        """Plan status transitions, newest first."""
        async with self._reading("get_plan_history") as session:
            result = await session.execute(
                select(PlanHistory)
                .where(PlanHistory.plan_id == plan_id)
                .order_by(PlanHistory.changed_at.desc(), PlanHistory.id.desc())
            )
            return [PlanHistoryEntry.model_validate(row) for row in result.scalars()]

    async def get_task_history(self, task_id: int) -> list[TaskHistoryEntry]:
        """Task status transitions, newest first."""
        async with self._reading("get_task_history") as session:
            result = await session.execute(
                select(TaskHistory)
                .where(TaskHistory.task_id == task_id)
                .order_by(TaskHistory.changed_at.desc(), TaskHistory.id.desc())
            )
            return [TaskHistoryEntry.model_validate(row) for row in result.scalars()]
