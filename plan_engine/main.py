"""Plan Engine: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager

# configure_structlog must run before other plan_engine imports
# (structlog caches the processor chain on first use).
from plan_engine.core.logging import configure_structlog
from plan_engine.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else _early_settings.log_level,
    json_logs=not _early_settings.debug,
    sql_echo=_early_settings.database_echo,
)

import structlog

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from plan_engine import __version__
from plan_engine.api.routes import api_router
from plan_engine.core.config import Settings, get_settings
from plan_engine.core.exceptions import PlanEngineError
from plan_engine.db import Database, ensure_schema
from plan_engine.middleware.correlation import get_correlation_id, setup_correlation_middleware

logger = structlog.get_logger(__name__)

# HTTP status per engine error kind
ERROR_STATUS_CODES = {
    "not_found": 404,
    "invalid_transition": 409,
    "session_mismatch": 403,
    "active_plan_conflict": 409,
    "duplicate_plan_name": 409,
    "validation": 422,
    "storage": 503,
    "schema": 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the Database, provision the schema, dispose on shutdown."""
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    try:
        signal.signal(signal.SIGTERM, handle_sigterm)
    except ValueError:
        # Not in the main thread (e.g. TestClient portal)
        pass

    settings: Settings = app.state.settings
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    database = Database.from_settings(settings)
    await ensure_schema(database.engine)
    app.state.database = database
    logger.info("db_initialized", dialect=database.dialect_name)

    yield

    logger.info("shutdown_begin")
    await database.dispose()
    logger.info("shutdown_complete")


async def plan_engine_exception_handler(request: Request, exc: PlanEngineError) -> JSONResponse:
    """Map engine errors to HTTP status codes, keeping kind and details for clients."""
    debug_id = str(uuid.uuid4())
    status_code = ERROR_STATUS_CODES.get(exc.kind, 500)

    log = logger.error if status_code >= 500 else logger.info
    log(
        "plan_engine_error",
        kind=exc.kind,
        status_code=status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        detail=exc.message,
    )

    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "kind": exc.kind, "details": exc.details, "debug_id": debug_id},
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Global exception handler for HTTPException with debug_id tracking."""
    debug_id = str(uuid.uuid4())

    logger.error(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        detail=exc.detail,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "debug_id": debug_id},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors with debug_id tracking.

    Logs full exception with traceback, returns generic 500 to client.
    """
    debug_id = str(uuid.uuid4())

    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Plan and task lifecycle engine",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    app.exception_handler(PlanEngineError)(plan_engine_exception_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "plan_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
