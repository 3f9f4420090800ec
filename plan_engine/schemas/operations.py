"""Operation result envelope returned by the operation dispatcher."""

from typing import Any, Literal

from pydantic import BaseModel, Field

ErrorKind = Literal[
    "not_found",
    "invalid_transition",
    "session_mismatch",
    "active_plan_conflict",
    "duplicate_plan_name",
    "validation",
    "storage",
    "schema",
]


class OperationError(BaseModel):
    """Typed failure variant. ``kind`` is one of the engine error kinds."""

    kind: ErrorKind
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class OperationResult(BaseModel):
    """Tagged result: exactly one of ``data`` (ok) or ``error`` (failure) is meaningful."""

    operation: str
    ok: bool
    data: Any = None
    error: OperationError | None = None

    @classmethod
    def success(cls, operation: str, data: Any) -> "OperationResult":
        return cls(operation=operation, ok=True, data=data)

    @classmethod
    def failure(cls, operation: str, error: OperationError) -> "OperationResult":
        return cls(operation=operation, ok=False, error=error)
