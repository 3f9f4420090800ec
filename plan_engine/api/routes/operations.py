"""Operation dispatcher route for agent tool adapters."""

from typing import Any

from fastapi import APIRouter, Body, Depends

from plan_engine.api.deps import get_operations
from plan_engine.schemas.operations import OperationResult
from plan_engine.services.operations import PlanOperations

router = APIRouter()


@router.get("", response_model=list[str])
async def list_operations():
    """Names accepted by POST /operations/{name}."""
    return PlanOperations.operation_names()


@router.post("/{name}", response_model=OperationResult)
async def execute_operation(
    name: str,
    arguments: dict[str, Any] | None = Body(default=None),
    operations: PlanOperations = Depends(get_operations),
):
    """Run a named operation. Always 200: failures come back as ``ok=false`` results.

    The caller session travels in the arguments (``session_id`` / ``sessionId``).
    """
    return await operations.execute(name, arguments)
