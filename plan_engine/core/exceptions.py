from typing import Any


class PlanEngineError(Exception):
    """Base exception for the plan engine.

    Every subclass carries a stable ``kind`` string and a ``details`` dict so
    adapters can report the failure without inspecting the message.
    """

    kind = "engine"

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)


class NotFoundError(PlanEngineError):
    """Raised when a plan or task does not exist."""

    kind = "not_found"

    def __init__(
        self,
        plan_id: int | None = None,
        task_id: int | None = None,
        *,
        project_id: str | None = None,
        name: str | None = None,
    ):
        self.plan_id = plan_id
        self.task_id = task_id
        self.project_id = project_id
        self.name = name
        if task_id is not None and plan_id is not None:
            message = f"Task {task_id} in plan {plan_id} not found"
        elif task_id is not None:
            message = f"Task {task_id} not found"
        elif name is not None:
            message = f"Plan '{name}' not found in project {project_id}"
        else:
            message = f"Plan {plan_id} not found"
        details = {"plan_id": plan_id, "task_id": task_id}
        if name is not None:
            details.update(project_id=project_id, name=name)
        super().__init__(message, **details)


class InvalidTransitionError(PlanEngineError):
    """Raised when a requested status change is not reachable from the current status."""

    kind = "invalid_transition"

    def __init__(self, entity: str, current: str, requested: str, terminal: bool = False):
        self.entity = entity
        self.current = current
        self.requested = requested
        self.terminal = terminal
        if terminal:
            message = f"{entity.capitalize()} cannot transition from {current} to {requested}: {current} is terminal"
        else:
            message = f"{entity.capitalize()} cannot transition from {current} to {requested}"
        super().__init__(message, entity=entity, current=current, requested=requested, terminal=terminal)


class SessionMismatchError(PlanEngineError):
    """Raised when a session tries to touch a plan owned by another session."""

    kind = "session_mismatch"

    def __init__(self, session_id: str, plan_id: int):
        self.session_id = session_id
        self.plan_id = plan_id
        super().__init__(
            f"Access denied: plan {plan_id} does not belong to session {session_id}",
            session_id=session_id,
            plan_id=plan_id,
        )


class ActivePlanConflictError(PlanEngineError):
    """Raised when a session already owns an active plan."""

    kind = "active_plan_conflict"

    def __init__(self, session_id: str, active_plan_id: int | None):
        self.session_id = session_id
        self.active_plan_id = active_plan_id
        super().__init__(
            f"Session {session_id} already has an active plan ({active_plan_id}). "
            "Only one active plan per session is allowed.",
            session_id=session_id,
            active_plan_id=active_plan_id,
        )


class DuplicatePlanNameError(PlanEngineError):
    """Raised when a session already owns a plan with the same name (case-insensitive)."""

    kind = "duplicate_plan_name"

    def __init__(self, session_id: str, name: str, existing_plan_id: int):
        self.session_id = session_id
        self.name = name
        self.existing_plan_id = existing_plan_id
        super().__init__(
            f"A plan named '{name}' already exists for session {session_id} ({existing_plan_id})",
            session_id=session_id,
            name=name,
            existing_plan_id=existing_plan_id,
        )


class ValidationError(PlanEngineError):
    """Raised for malformed input, before any database round-trip."""

    kind = "validation"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message, field=field)


class StorageError(PlanEngineError):
    """Raised when the underlying database operation fails."""

    kind = "storage"

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"Storage failure during {operation}: {message}", operation=operation)


class SchemaError(StorageError):
    """Raised when schema provisioning fails."""

    kind = "schema"

    def __init__(self, message: str):
        super().__init__("ensure_schema", message)
