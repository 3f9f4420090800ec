"""Shared FastAPI dependencies for the plan routes."""

from fastapi import Depends, Header, HTTPException, Request

from plan_engine.core.config import Settings, get_settings
from plan_engine.db.plan_store import PlanStore
from plan_engine.services.operations import PlanOperations
from plan_engine.services.plan_service import PlanService


def require_session(x_session_id: str | None = Header(default=None, alias="X-Session-ID")) -> str:
    """Return the caller session from the X-Session-ID header.

    Raises:
        HTTPException(401): Header missing or blank
    """
    if not x_session_id or not x_session_id.strip():
        raise HTTPException(status_code=401, detail="X-Session-ID header required")
    return x_session_id.strip()


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_plan_service(request: Request, settings: Settings = Depends(get_app_settings)) -> PlanService:
    """Build a PlanService over the Database created in the app lifespan.

    Override this dependency in tests via app.dependency_overrides.
    """
    store = PlanStore(request.app.state.database, default_priority=settings.default_task_priority)
    return PlanService.from_store(store, settings)


def get_operations(
    service: PlanService = Depends(get_plan_service),
    settings: Settings = Depends(get_app_settings),
) -> PlanOperations:
    return PlanOperations(service, settings)
