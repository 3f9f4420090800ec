"""Plan and task API routes.

Every route acts on behalf of the session in the X-Session-ID header. Engine
errors propagate to the PlanEngineError handler registered in main.py.
"""

from fastapi import APIRouter, Depends, Query

from plan_engine.api.deps import get_plan_service, require_session
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
from plan_engine.services.plan_service import PlanService

router = APIRouter()


@router.post("", response_model=PlanWithTasks, status_code=201)
async def create_plan(
    request: CreatePlanRequest,
    session_id: str = Depends(require_session),
    service: PlanService = Depends(get_plan_service),
):
    """Create a plan, optionally active, with its initial tasks.

    Raises:
        409: Session already has an active plan (status=active only)
        422: Malformed body
    """
    return await service.create_plan(
        session_id,
        request.project_id,
        request.name,
        description=request.description,
        initial_tasks=[task.model_dump() for task in request.initial_tasks],
        status=request.status.value,
        actor=request.actor,
        reason=request.reason,
        metadata=request.metadata,
    )


@router.get("", response_model=list[PlanRecord])
async def list_plans(
    session_id: str = Depends(require_session),
    service: PlanService = Depends(get_plan_service),
):
    """List the session's plans, newest first."""
    return await service.list_plans(session_id)


@router.get("/by-name", response_model=PlanWithTasks)
async def get_plan_by_name(
    project_id: str = Query(min_length=1),
    name: str = Query(min_length=1),
    session_id: str = Depends(require_session),
    service: PlanService = Depends(get_plan_service),
):
    return await service.get_plan_by_name(session_id, project_id, name)


@router.get("/{plan_id}", response_model=PlanWithTasks)
async def get_plan(
    plan_id: int,
    session_id: str = Depends(require_session),
    service: PlanService = Depends(get_plan_service),
):
    return await service.get_plan(session_id, plan_id)


@router.patch("/{plan_id}", response_model=PlanRecord)
async def update_plan(
    plan_id: int,
    request: UpdatePlanRequest,
    session_id: str = Depends(require_session),
    service: PlanService = Depends(get_plan_service),
):
    return await service.update_plan(session_id, plan_id, name=request.name, description=request.description)


@router.post("/{plan_id}/activate", response_model=PlanRecord)
async def activate_plan(
    plan_id: int,
    request: TransitionRequest | None = None,
    session_id: str = Depends(require_session),
    service: PlanService = Depends(get_plan_service),
):
    request = request or TransitionRequest()
    return await service.activate_plan(session_id, plan_id, actor=request.actor, reason=request.reason)


@router.post("/{plan_id}/complete", response_model=PlanRecord)
async def complete_plan(
    plan_id: int,
    request: TransitionRequest | None = None,
    session_id: str = Depends(require_session),
    service: PlanService = Depends(get_plan_service),
):
    request = request or TransitionRequest()
    return await service.complete_plan(session_id, plan_id, actor=request.actor, reason=request.reason)


@router.post("/{plan_id}/archive", response_model=PlanRecord)
async def archive_plan(
    plan_id: int,
    request: TransitionRequest | None = None,
    session_id: str = Depends(require_session),
    service: PlanService = Depends(get_plan_service),
):
    """Archive a completed plan. Archiving twice returns 409."""
    request = request or TransitionRequest()
    return await service.archive_plan(session_id, plan_id, actor=request.actor, reason=request.reason)


@router.get("/{plan_id}/history", response_model=list[PlanHistoryEntry])
async def get_plan_history(
    plan_id: int,
    session_id: str = Depends(require_session),
    service: PlanService = Depends(get_plan_service),
):
    return await service.get_plan_history(session_id, plan_id)


@router.post("/{plan_id}/tasks", response_model=TaskRecord, status_code=201)
async def create_task(
    plan_id: int,
    request: CreateTaskRequest,
    session_id: str = Depends(require_session),
    service: PlanService = Depends(get_plan_service),
):
    return await service.create_task(
        session_id, plan_id, request.title, description=request.description, priority=request.priority
    )


@router.patch("/{plan_id}/tasks/{task_id}", response_model=TaskRecord)
async def update_task(
    plan_id: int,
    task_id: int,
    request: UpdateTaskRequest,
    session_id: str = Depends(require_session),
    service: PlanService = Depends(get_plan_service),
):
    return await service.update_task(
        session_id,
        plan_id,
        task_id,
        title=request.title,
        description=request.description,
        priority=request.priority,
    )


@router.post("/{plan_id}/tasks/{task_id}/start", response_model=TaskRecord)
async def start_task(
    plan_id: int,
    task_id: int,
    request: TransitionRequest | None = None,
    session_id: str = Depends(require_session),
    service: PlanService = Depends(get_plan_service),
):
    request = request or TransitionRequest()
    return await service.start_task(session_id, plan_id, task_id, actor=request.actor, reason=request.reason)


@router.post("/{plan_id}/tasks/{task_id}/complete", response_model=TaskRecord)
async def complete_task(
    plan_id: int,
    task_id: int,
    request: TransitionRequest | None = None,
    session_id: str = Depends(require_session),
    service: PlanService = Depends(get_plan_service),
):
    request = request or TransitionRequest()
    return await service.complete_task(session_id, plan_id, task_id, actor=request.actor, reason=request.reason)


@router.post("/{plan_id}/tasks/{task_id}/fail", response_model=TaskRecord)
async def fail_task(
    plan_id: int,
    task_id: int,
    request: TransitionRequest | None = None,
    session_id: str = Depends(require_session),
    service: PlanService = Depends(get_plan_service),
):
    request = request or TransitionRequest()
    return await service.fail_task(session_id, plan_id, task_id, actor=request.actor, reason=request.reason)


@router.get("/{plan_id}/tasks/{task_id}/history", response_model=list[TaskHistoryEntry])
async def get_task_history(
    plan_id: int,
    task_id: int,
    session_id: str = Depends(require_session),
    service: PlanService = Depends(get_plan_service),
):
    return await service.get_task_history(session_id, plan_id, task_id)
