"""Plan and task Pydantic schemas: materialized records and request shapes."""

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from plan_engine.core.exceptions import ValidationError as EngineValidationError
from plan_engine.domain.statuses import INITIAL_PLAN_STATUSES, PlanStatus, TaskStatus, parse_plan_status

# ---------------------------------------------------------------------------
# Records (what the store returns)
# ---------------------------------------------------------------------------


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class PlanRecord(_Record):
    """A stored plan."""

    id: int
    project_id: str
    session_id: str
    name: str
    description: str | None = None
    status: PlanStatus
    created_at: datetime
    updated_at: datetime
    # ORM attribute is metadata_ ("metadata" is reserved by SQLAlchemy)
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("metadata_", "metadata"))


class TaskRecord(_Record):
    """A stored task."""

    id: int
    plan_id: int
    title: str
    description: str | None = None
    priority: str
    status: TaskStatus
    created_at: datetime
    updated_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("metadata_", "metadata"))


class PlanHistoryEntry(_Record):
    """One plan status transition."""

    id: int
    plan_id: int
    old_status: PlanStatus | None = None
    new_status: PlanStatus
    changed_by: str
    changed_at: datetime
    reason: str | None = None


class TaskHistoryEntry(_Record):
    """One task status transition."""

    id: int
    task_id: int
    old_status: TaskStatus | None = None
    new_status: TaskStatus
    changed_by: str
    changed_at: datetime
    reason: str | None = None


class PlanWithTasks(BaseModel):
    """A plan together with its tasks, ordered by creation."""

    plan: PlanRecord
    tasks: list[TaskRecord] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Requests (validated before any database round-trip)
# ---------------------------------------------------------------------------


class _Request(BaseModel):
    # Accept both snake_case and camelCase keys (agents send sessionId, planName, ...)
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


def _require_any(model: BaseModel, *fields: str) -> None:
    if all(getattr(model, name) is None for name in fields):
        raise ValueError(f"At least one of {', '.join(fields)} must be provided")


class TaskSpec(_Request):
    """Initial task definition. A bare string is accepted as the title."""

    title: str = Field(min_length=1)
    description: str | None = None
    priority: str | None = Field(default=None, min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _title_from_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"title": data}
        return data


class CreatePlanRequest(_Request):
    """Fields of create_plan, minus the caller session."""

    project_id: str = Field(min_length=1)
    name: str = Field(min_length=1, validation_alias=AliasChoices("name", "planName", "plan_name"))
    description: str | None = None
    initial_tasks: list[TaskSpec] = Field(default_factory=list)
    status: PlanStatus = PlanStatus.DRAFT
    actor: str | None = Field(default=None, min_length=1)
    reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> PlanStatus:
        try:
            status = parse_plan_status(value)
        except EngineValidationError as e:
            raise ValueError(e.message) from None
        if status not in INITIAL_PLAN_STATUSES:
            raise ValueError(f"Plans can only be created as draft or active, not {status.value}")
        return status


class UpdatePlanRequest(_Request):
    """Non-status plan fields. None leaves a field untouched."""

    name: str | None = Field(default=None, min_length=1, validation_alias=AliasChoices("name", "planName", "plan_name"))
    description: str | None = None

    @model_validator(mode="after")
    def _at_least_one(self) -> "UpdatePlanRequest":
        _require_any(self, "name", "description")
        return self


class CreateTaskRequest(_Request):
    title: str = Field(min_length=1, validation_alias=AliasChoices("title", "taskName", "task_name"))
    description: str | None = None
    priority: str | None = Field(default=None, min_length=1)


class UpdateTaskRequest(_Request):
    """Non-status task fields. None leaves a field untouched."""

    title: str | None = Field(default=None, min_length=1, validation_alias=AliasChoices("title", "taskName", "task_name"))
    description: str | None = None
    priority: str | None = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def _at_least_one(self) -> "UpdateTaskRequest":
        _require_any(self, "title", "description", "priority")
        return self


class TransitionRequest(_Request):
    """Actor and optional reason recorded in the history row."""

    actor: str | None = Field(default=None, min_length=1)
    reason: str | None = None
