"""Challenge Engine - Main Application.

Combines the challenge, progression and recommendation routers, maps the
engine's error taxonomy onto HTTP responses and runs the lifecycle jobs
in-process.
"""

import time
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from challenge_engine.challenges.api import router as challenges_router
from challenge_engine.challenges.api import scheduler_router
from challenge_engine.challenges.api import users_router as participation_router
from challenge_engine.challenges.exceptions import (
    AlreadyJoined,
    ChallengeFull,
    ChallengeNotJoinable,
    InvalidTransition,
    NotParticipating,
)
from challenge_engine.config import EngineSettings, get_settings
from challenge_engine.dependencies import EngineContainer, build_container
from challenge_engine.progression.api import router as progression_router
from challenge_engine.recommendations.api import router as recommendations_router
from challenge_engine.repositories.exceptions import (
    ConcurrencyError,
    DuplicateEntityError,
    EntityNotFoundError,
    StoreUnavailable,
)
from challenge_engine.shared.schemas.base import ErrorDetail
from challenge_engine.shared.utils.logging import (
    bind_request_context,
    clear_request_context,
    configure_logging,
    get_logger,
)

logger = get_logger(__name__)


# ===========================================
# APPLICATION METADATA
# ===========================================

APP_TITLE = "Challenge Engine"
APP_DESCRIPTION = """
Lifecycle, participation, rewards and recommendations for time-boxed
creative challenges.

| Module | Prefix |
|--------|--------|
| Challenges | `/api/v1/challenges` |
| Participation | `/api/v1/users/{user_id}/challenges` |
| Progression | `/api/v1/users/{user_id}/progression` |
| Recommendations | `/api/v1/users/{user_id}/recommendations` |
| Scheduler | `/api/v1/scheduler` |
"""
APP_VERSION = "1.0.0"
API_PREFIX = "/api/v1"

TAGS_METADATA = [
    {"name": "health", "description": "Health check and status endpoints"},
    {"name": "challenges", "description": "Challenge catalog, lifecycle and participation"},
    {"name": "participation", "description": "Per-user participation history and stats"},
    {"name": "progression", "description": "Tier eligibility and bonus multipliers"},
    {"name": "recommendations", "description": "Ranked challenge recommendations"},
    {"name": "scheduler", "description": "Manual runs of the lifecycle jobs"},
]

# (exception, status code, title); handlers resolve through the exception MRO
ERROR_MAP: list[tuple[type[Exception], int, str]] = [
    (EntityNotFoundError, status.HTTP_404_NOT_FOUND, "Not Found"),
    (AlreadyJoined, status.HTTP_409_CONFLICT, "Already Joined"),
    (ChallengeFull, status.HTTP_409_CONFLICT, "Challenge Full"),
    (InvalidTransition, status.HTTP_409_CONFLICT, "Invalid Transition"),
    (ConcurrencyError, status.HTTP_409_CONFLICT, "Concurrent Modification"),
    (DuplicateEntityError, status.HTTP_409_CONFLICT, "Duplicate Entity"),
    (ChallengeNotJoinable, status.HTTP_422_UNPROCESSABLE_ENTITY, "Challenge Not Joinable"),
    (NotParticipating, status.HTTP_422_UNPROCESSABLE_ENTITY, "Not Participating"),
    (StoreUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE, "Store Unavailable"),
]


# ===========================================
# LIFECYCLE MANAGEMENT
# ===========================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine if needed, start the jobs, and tear down on exit."""
    settings: EngineSettings = app.state.settings
    logger.info("app_starting", title=APP_TITLE, version=APP_VERSION)

    container: EngineContainer | None = getattr(app.state, "container", None)
    if container is None:
        container = build_container(settings)
        app.state.container = container

    if container.uses_database:
        from challenge_engine.infrastructure.database.session import init_db

        await init_db(settings)

    if settings.scheduler_enabled:
        await container.periodic.start()

    logger.info("app_started", jobs=container.periodic.job_names)

    yield

    logger.info("app_stopping")
    if settings.scheduler_enabled:
        await container.periodic.stop()
    await container.ledger.close()
    await container.link_resolver.close()
    if container.uses_database:
        from challenge_engine.infrastructure.database.session import close_db

        await close_db()
    logger.info("app_stopped")


# ===========================================
# APPLICATION FACTORY
# ===========================================


def create_app(
    settings: EngineSettings | None = None,
    container: EngineContainer | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``container`` is built from ``settings`` at startup when not given.
    """
    settings = settings or get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_json)

    app = FastAPI(
        title=APP_TITLE,
        description=APP_DESCRIPTION,
        version=APP_VERSION,
        openapi_tags=TAGS_METADATA,
        lifespan=lifespan,
    )
    app.state.settings = settings
    if container is not None:
        app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        bind_request_context(request_id, path=request.url.path)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response

    register_exception_handlers(app)

    app.include_router(challenges_router, prefix=API_PREFIX)
    app.include_router(participation_router, prefix=API_PREFIX)
    app.include_router(progression_router, prefix=API_PREFIX)
    app.include_router(recommendations_router, prefix=API_PREFIX)
    app.include_router(scheduler_router, prefix=API_PREFIX)

    register_root_endpoints(app)

    return app


def _problem(status_code: int, title: str, exc: Exception, errors: list[dict] | None = None) -> JSONResponse:
    body = ErrorDetail(
        type=f"/errors/{type(exc).__name__}",
        title=title,
        status=status_code,
        detail=str(exc),
        errors=errors,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", exclude_none=True))


def register_exception_handlers(app: FastAPI) -> None:
    """Translate engine errors into RFC 7807 responses."""

    for exc_type, status_code, title in ERROR_MAP:

        async def handler(
            request: Request,
            exc: Exception,
            status_code: int = status_code,
            title: str = title,
        ) -> JSONResponse:
            if status_code >= 500:
                logger.error("request_failed", error_type=type(exc).__name__, error=str(exc))
            details = getattr(exc, "details", None)
            return _problem(status_code, title, exc, [details] if details else None)

        app.add_exception_handler(exc_type, handler)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error", error_type=type(exc).__name__)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "detail": str(exc) if app.debug else "An unexpected error occurred",
            },
        )


def register_root_endpoints(app: FastAPI) -> None:
    """Register root-level endpoints."""

    @app.get("/", tags=["health"])
    async def root() -> dict[str, Any]:
        return {
            "name": APP_TITLE,
            "version": APP_VERSION,
            "status": "running",
            "docs": "/docs",
            "api_prefix": API_PREFIX,
        }

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, Any]:
        """Basic health check endpoint."""
        return {
            "status": "healthy",
            "version": APP_VERSION,
            "timestamp": time.time(),
        }

    @app.get("/health/live", tags=["health"])
    async def liveness_check() -> dict[str, Any]:
        """Liveness probe."""
        return {"alive": True, "timestamp": time.time()}

    @app.get("/health/ready", tags=["health"])
    async def readiness_check(request: Request) -> dict[str, Any]:
        """Readiness probe: the engine is wired and its jobs are registered."""
        container: EngineContainer | None = getattr(request.app.state, "container", None)
        return {
            "ready": container is not None,
            "jobs": container.periodic.job_names if container else [],
        }


# ===========================================
# APPLICATION INSTANCE
# ===========================================

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "challenge_engine.main:app",
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )
