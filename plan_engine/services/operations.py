"""PlanOperations: Name-based dispatcher over PlanService.

Callers (agent tool adapters, the /api/operations route) send a logical
operation name and a JSON-like argument dict. The dispatcher always returns an
OperationResult: typed engine errors become error variants and nothing
unclassified escapes.
"""

import asyncio
from typing import Any

import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from plan_engine.core.config import Settings, get_settings
from plan_engine.core.exceptions import PlanEngineError, StorageError, ValidationError
from plan_engine.schemas.operations import OperationError, OperationResult
from plan_engine.services.plan_service import PlanService, parse_request

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Argument models: field names match the PlanService keyword arguments
# ---------------------------------------------------------------------------


class _Args(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SessionArgs(_Args):
    session_id: str = Field(min_length=1)


class PlanArgs(SessionArgs):
    plan_id: int


class TaskArgs(PlanArgs):
    task_id: int


class CreatePlanArgs(SessionArgs):
    project_id: str
    name: str = Field(validation_alias=AliasChoices("name", "planName", "plan_name"))
    description: str | None = None
    initial_tasks: list[Any] = Field(default_factory=list)
    status: str = "draft"
    actor: str | None = None
    reason: str | None = None
    metadata: dict[str, Any] | None = None


class GetPlanByNameArgs(SessionArgs):
    project_id: str
    name: str = Field(validation_alias=AliasChoices("name", "planName", "plan_name"))


class UpdatePlanArgs(PlanArgs):
    name: str | None = Field(default=None, validation_alias=AliasChoices("name", "planName", "plan_name"))
    description: str | None = None


class PlanTransitionArgs(PlanArgs):
    actor: str | None = None
    reason: str | None = None


class CreateTaskArgs(PlanArgs):
    title: str = Field(validation_alias=AliasChoices("title", "taskName", "task_name"))
    description: str | None = None
    priority: str | None = None
    actor: str | None = None


class UpdateTaskArgs(TaskArgs):
    title: str | None = Field(default=None, validation_alias=AliasChoices("title", "taskName", "task_name"))
    description: str | None = None
    priority: str | None = None


class TaskTransitionArgs(TaskArgs):
    actor: str | None = None
    reason: str | None = None


OPERATION_ARGS: dict[str, type[_Args]] = {
    "create_plan": CreatePlanArgs,
    "get_plan": PlanArgs,
    "get_plan_by_name": GetPlanByNameArgs,
    "list_plans": SessionArgs,
    "update_plan": UpdatePlanArgs,
    "activate_plan": PlanTransitionArgs,
    "complete_plan": PlanTransitionArgs,
    "archive_plan": PlanTransitionArgs,
    "get_plan_history": PlanArgs,
    "create_task": CreateTaskArgs,
    "update_task": UpdateTaskArgs,
    "start_task": TaskTransitionArgs,
    "complete_task": TaskTransitionArgs,
    "fail_task": TaskTransitionArgs,
    "get_task_history": TaskArgs,
}


def _to_data(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_to_data(item) for item in value]
    return value


def _log_context(arguments: dict[str, Any]) -> dict[str, Any]:
    """Session, plan and task ids from raw arguments (either spelling) for log context."""
    if not isinstance(arguments, dict):
        return {}
    context = {}
    for key, camel in (("session_id", "sessionId"), ("plan_id", "planId"), ("task_id", "taskId")):
        value = arguments.get(key, arguments.get(camel))
        if value is not None:
            context[key] = value
    return context


def _error_from(exc: PlanEngineError) -> OperationError:
    return OperationError(kind=exc.kind, message=exc.message, details=exc.details)


class PlanOperations:
    """Executes named plan operations and wraps every outcome in an OperationResult."""

    def __init__(self, service: PlanService, settings: Settings | None = None):
        self.service = service
        self.settings = settings or get_settings()

    @staticmethod
    def operation_names() -> list[str]:
        return sorted(OPERATION_ARGS)

    async def execute(self, operation: str, arguments: dict[str, Any] | None = None) -> OperationResult:
        """Run ``operation`` with ``arguments``.

        Never raises for engine failures: the returned result carries either
        ``data`` (JSON-ready) or an ``error`` with a stable kind. Every log
        event emitted while the operation runs carries its name and ids.
        """
        arguments = arguments or {}
        with structlog.contextvars.bound_contextvars(operation=operation, **_log_context(arguments)):
            return await self._execute(operation, arguments)

    async def _execute(self, operation: str, arguments: dict[str, Any]) -> OperationResult:
        timeout = self.settings.operation_timeout_seconds or None

        try:
            args_model = OPERATION_ARGS.get(operation)
            if args_model is None:
                raise ValidationError(f"Unknown operation '{operation}'", field="operation")

            args = parse_request(args_model, arguments)
            handler = getattr(self.service, operation)
            async with asyncio.timeout(timeout):
                value = await handler(**args.model_dump())
        except PlanEngineError as e:
            logger.info("operation_failed", kind=e.kind, error=e.message)
            return OperationResult.failure(operation, _error_from(e))
        except TimeoutError:
            logger.error("operation_timeout", timeout_seconds=timeout)
            error = StorageError(operation, f"timed out after {timeout}s")
            return OperationResult.failure(operation, _error_from(error))
        except Exception as e:
            logger.error("operation_unexpected_error", error=str(e), error_type=type(e).__name__, exc_info=True)
            error = StorageError(operation, f"{type(e).__name__}: {e}")
            return OperationResult.failure(operation, _error_from(error))

        logger.debug("operation_succeeded")
        return OperationResult.success(operation, _to_data(value))
