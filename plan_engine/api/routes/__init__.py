from fastapi import APIRouter

from plan_engine.api.routes import health, operations, plans

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(plans.router, prefix="/plans", tags=["plans"])
api_router.include_router(operations.router, prefix="/operations", tags=["operations"])
