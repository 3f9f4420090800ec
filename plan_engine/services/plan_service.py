"""PlanService: Caller-facing plan and task operations.

Each operation validates its input, checks session ownership, validates the
requested status change (if any) and then delegates to the PlanStore, which
writes the row change and its history row in one transaction.
"""

from typing import Any

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from plan_engine.core.config import Settings, get_settings
from plan_engine.core.exceptions import (
    DuplicatePlanNameError,
    NotFoundError,
    SessionMismatchError,
    ValidationError,
)
from plan_engine.db.plan_store import PlanStore
from plan_engine.domain.statuses import EntityKind, PlanStatus, TaskStatus, validate_transition
from plan_engine.schemas.plans import (
    CreatePlanRequest,
    CreateTaskRequest,
    PlanHistoryEntry,
    PlanRecord,
    PlanWithTasks,
    TaskHistoryEntry,
    TaskRecord,
    TransitionRequest,
    UpdatePlanRequest,
    UpdateTaskRequest,
)
from plan_engine.services.session_guard import SessionGuard

logger = structlog.get_logger(__name__)


def parse_request(model_cls: type[BaseModel], data: dict[str, Any]) -> Any:
    """Validate ``data`` against a request model, raising the engine ValidationError.

    Only the first pydantic error is reported; its location becomes ``field``.
    """
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        message = first["msg"].removeprefix("Value error, ")
        raise ValidationError(f"{field}: {message}" if field else message, field=field) from None


def _require_session(session_id: str) -> str:
    if not isinstance(session_id, str) or not session_id.strip():
        raise ValidationError("Session ID is required", field="session_id")
    return session_id


class PlanService:
    """Orchestrates SessionGuard, transition validation and PlanStore."""

    def __init__(self, store: PlanStore, guard: SessionGuard | None = None, settings: Settings | None = None):
        self.store = store
        self.guard = guard or SessionGuard(store)
        self.settings = settings or get_settings()

    @classmethod
    def from_store(cls, store: PlanStore, settings: Settings | None = None) -> "PlanService":
        return cls(store, SessionGuard(store), settings)

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    async def create_plan(
        self,
        session_id: str,
        project_id: str,
        name: str,
        description: str | None = None,
        initial_tasks: list | None = None,
        status: str = PlanStatus.DRAFT.value,
        actor: str | None = None,
        reason: str | None = None,
        metadata: dict | None = None,
    ) -> PlanWithTasks:
        """Create a plan with its initial tasks.

        Args:
            session_id: Caller session, becomes the plan owner
            project_id: Project the plan belongs to
            name: Plan name
            description: Optional description
            initial_tasks: Titles or {title, description?, priority?} dicts
            status: "draft" (default) or "active"
            actor: Recorded in history (defaults to session_id)
            reason: Optional reason on the initial history row
            metadata: Optional JSON metadata

        Returns:
            PlanWithTasks

        Raises:
            ValidationError: Malformed input (nothing written)
            ActivePlanConflictError: status is active and the session already has an active plan
            DuplicatePlanNameError: The session already has a plan with this name (case-insensitive)
        """
        _require_session(session_id)
        request = parse_request(
            CreatePlanRequest,
            {
                "project_id": project_id,
                "name": name,
                "description": description,
                "initial_tasks": initial_tasks or [],
                "status": status,
                "actor": actor,
                "reason": reason,
                "metadata": metadata or {},
            },
        )
        await self._ensure_unique_name(session_id, request.name)
        if request.status == PlanStatus.ACTIVE:
            await self.guard.authorize_activation(session_id)

        return await self.store.create_plan(
            session_id=session_id,
            project_id=request.project_id,
            name=request.name,
            description=request.description,
            initial_tasks=request.initial_tasks,
            status=request.status,
            actor=request.actor or session_id,
            reason=request.reason,
            metadata=request.metadata,
        )

    async def get_plan(self, session_id: str, plan_id: int) -> PlanWithTasks:
        """Return a plan owned by the session, with its tasks."""
        await self.guard.authorize_access(session_id, plan_id)
        return await self.store.get_plan_with_tasks(plan_id)

    async def get_plan_by_name(self, session_id: str, project_id: str, name: str) -> PlanWithTasks:
        """Look up the caller's plan with ``name`` in the project.

        Other sessions may reuse the name. SessionMismatchError is raised only
        when the name exists in the project but none of those plans belong to
        the caller.
        """
        _require_session(session_id)
        project_id = (project_id or "").strip()
        name = (name or "").strip()
        if not project_id or not name:
            raise ValidationError("project_id and name are required", field="name" if project_id else "project_id")

        try:
            plan = await self.store.get_plan_by_project_and_name(project_id, name, session_id=session_id)
        except NotFoundError:
            other = await self.store.get_plan_by_project_and_name(project_id, name)
            logger.warning("session_access_denied", session_id=session_id, plan_id=other.id, owner_session_id=other.session_id)
            raise SessionMismatchError(session_id, other.id) from None
        return await self.store.get_plan_with_tasks(plan.id)

    async def _ensure_unique_name(self, session_id: str, name: str, plan_id: int | None = None) -> None:
        existing = await self.store.find_plan_by_session_and_name(session_id, name)
        if existing is not None and existing.id != plan_id:
            logger.info("duplicate_plan_name", session_id=session_id, name=name, existing_plan_id=existing.id)
            raise DuplicatePlanNameError(session_id, name, existing.id)

    async def list_plans(self, session_id: str) -> list[PlanRecord]:
        _require_session(session_id)
        return await self.store.list_plans_by_session(session_id)

    async def update_plan(
        self,
        session_id: str,
        plan_id: int,
        name: str | None = None,
        description: str | None = None,
    ) -> PlanRecord:
        """Change name and/or description. At least one must be given."""
        request = parse_request(UpdatePlanRequest, {"name": name, "description": description})
        await self.guard.authorize_access(session_id, plan_id)
        if request.name is not None:
            await self._ensure_unique_name(session_id, request.name, plan_id=plan_id)
        return await self.store.update_plan(plan_id, name=request.name, description=request.description)

    async def _transition_plan(
        self,
        session_id: str,
        plan_id: int,
        requested: PlanStatus,
        actor: str | None,
        reason: str | None,
    ) -> PlanRecord:
        request = parse_request(TransitionRequest, {"actor": actor, "reason": reason})
        plan = await self.guard.authorize_access(session_id, plan_id)
        validate_transition(EntityKind.PLAN, plan.status, requested)
        if requested == PlanStatus.ACTIVE:
            await self.guard.authorize_activation(session_id, exclude_plan_id=plan_id)

        return await self.store.set_plan_status(
            plan_id,
            requested,
            actor=request.actor or session_id,
            reason=request.reason,
        )

    async def activate_plan(
        self, session_id: str, plan_id: int, actor: str | None = None, reason: str | None = None
    ) -> PlanRecord:
        """draft -> active. Fails if the session already has an active plan."""
        return await self._transition_plan(session_id, plan_id, PlanStatus.ACTIVE, actor, reason)

    async def complete_plan(
        self, session_id: str, plan_id: int, actor: str | None = None, reason: str | None = None
    ) -> PlanRecord:
        """active -> completed."""
        return await self._transition_plan(session_id, plan_id, PlanStatus.COMPLETED, actor, reason)

    async def archive_plan(
        self, session_id: str, plan_id: int, actor: str | None = None, reason: str | None = None
    ) -> PlanRecord:
        """completed -> archived. Archived is terminal."""
        return await self._transition_plan(session_id, plan_id, PlanStatus.ARCHIVED, actor, reason)

    async def get_plan_history(self, session_id: str, plan_id: int) -> list[PlanHistoryEntry]:
        await self.guard.authorize_access(session_id, plan_id)
        return await self.store.get_plan_history(plan_id)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def create_task(
        self,
        session_id: str,
        plan_id: int,
        title: str,
        description: str | None = None,
        priority: str | None = None,
        actor: str | None = None,
    ) -> TaskRecord:
        """Add a pending task to a plan owned by the session."""
        request = parse_request(CreateTaskRequest, {"title": title, "description": description, "priority": priority})
        await self.guard.authorize_access(session_id, plan_id)
        return await self.store.create_task(
            plan_id,
            request.title,
            description=request.description,
            priority=request.priority or self.settings.default_task_priority,
            actor=actor or session_id,
        )

    async def update_task(
        self,
        session_id: str,
        plan_id: int,
        task_id: int,
        title: str | None = None,
        description: str | None = None,
        priority: str | None = None,
    ) -> TaskRecord:
        """Change title, description and/or priority. At least one must be given."""
        request = parse_request(UpdateTaskRequest, {"title": title, "description": description, "priority": priority})
        await self.guard.authorize_access(session_id, plan_id)
        return await self.store.update_task(
            plan_id,
            task_id,
            title=request.title,
            description=request.description,
            priority=request.priority,
        )

    async def _transition_task(
        self,
        session_id: str,
        plan_id: int,
        task_id: int,
        requested: TaskStatus,
        actor: str | None,
        reason: str | None,
    ) -> TaskRecord:
        request = parse_request(TransitionRequest, {"actor": actor, "reason": reason})
        await self.guard.authorize_access(session_id, plan_id)
        task = await self.store.get_task_by_id(plan_id, task_id)
        validate_transition(EntityKind.TASK, task.status, requested)
        return await self.store.set_task_status(
            plan_id,
            task_id,
            requested,
            actor=request.actor or session_id,
            reason=request.reason,
        )

    async def start_task(
        self, session_id: str, plan_id: int, task_id: int, actor: str | None = None, reason: str | None = None
    ) -> TaskRecord:
        """pending -> in_progress."""
        return await self._transition_task(session_id, plan_id, task_id, TaskStatus.IN_PROGRESS, actor, reason)

    async def complete_task(
        self, session_id: str, plan_id: int, task_id: int, actor: str | None = None, reason: str | None = None
    ) -> TaskRecord:
        """pending or in_progress -> completed."""
        return await self._transition_task(session_id, plan_id, task_id, TaskStatus.COMPLETED, actor, reason)

    async def fail_task(
        self, session_id: str, plan_id: int, task_id: int, actor: str | None = None, reason: str | None = None
    ) -> TaskRecord:
        """in_progress -> failed."""
        return await self._transition_task(session_id, plan_id, task_id, TaskStatus.FAILED, actor, reason)

    async def get_task_history(self, session_id: str, plan_id: int, task_id: int) -> list[TaskHistoryEntry]:
        await self.guard.authorize_access(session_id, plan_id)
        # Confirms the task belongs to this plan before exposing its history
        await self.store.get_task_by_id(plan_id, task_id)
        return await self.store.get_task_history(task_id)
