"""Progress Approval API - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.config import Settings, get_settings
from src.core.context import get_request_id
from src.core.database import init_async_cassandra, shutdown_async_cassandra
from src.core.logging import configure_structlog, get_logger
from src.core.middleware import RequestContextMiddleware
from src.health import router as health_router
from src.progress.directory import (
    CassandraCourseDirectory,
    CourseDirectory,
    InMemoryCourseDirectory,
)
from src.progress.events import TrackingEventDispatcher, log_event_handler
from src.progress.memory import InMemoryProgressStore, InMemoryTrackingLogStore
from src.progress.repository import (
    CassandraProgressStore,
    CassandraTrackingLogStore,
    ProgressStore,
    TrackingLogStore,
)
from src.progress.router import router as progress_router
from src.progress.service import ProgressTransitionService
from src.quick_track.bulk_pass import BulkPassCoordinator
from src.quick_track.router import router as quick_track_router
from src.quick_track.router import ws_router as quick_track_ws_router


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(settings, log_dir=Path(settings.log_dir))

logger = get_logger(__name__)


# Application state for dependency injection
class AppState:
    """Application state container."""

    cassandra_session: Any = None
    course_directory: CourseDirectory | None = None
    event_dispatcher: TrackingEventDispatcher | None = None
    progress_service: ProgressTransitionService | None = None
    bulk_pass_coordinator: BulkPassCoordinator | None = None


app_state = AppState()


def wire_services(
    app: FastAPI,
    progress_store: ProgressStore,
    log_store: TrackingLogStore,
    directory: CourseDirectory,
    settings: Settings,
    dispatcher: TrackingEventDispatcher | None = None,
) -> ProgressTransitionService:
    """Build the service graph and expose it on app.state."""
    progress_service = ProgressTransitionService(
        progress_store,
        log_store,
        directory,
        settings,
        dispatcher=dispatcher,
    )
    coordinator = BulkPassCoordinator(progress_service, max_items=settings.bulk_pass_max_items)

    app_state.course_directory = directory
    app_state.progress_service = progress_service
    app_state.bulk_pass_coordinator = coordinator

    app.state.course_directory = directory
    app.state.progress_service = progress_service
    app.state.bulk_pass_coordinator = coordinator
    return progress_service


def _memory_directory(settings: Settings) -> InMemoryCourseDirectory:
    """In-memory directory, seeded from the catalog file when one is configured."""
    if not settings.course_catalog_file:
        return InMemoryCourseDirectory()
    directory = InMemoryCourseDirectory.from_file(settings.course_catalog_file)
    logger.info("course_catalog_loaded", path=settings.course_catalog_file)
    return directory


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    dispatcher = TrackingEventDispatcher(queue_size=settings.events_queue_size)
    dispatcher.subscribe(log_event_handler)
    await dispatcher.start()
    app_state.event_dispatcher = dispatcher

    if settings.cassandra_enabled:
        try:
            session = await init_async_cassandra()
            app_state.cassandra_session = session
            logger.info("cassandra_initialized")

            keyspace = settings.cassandra_keyspace
            wire_services(
                app,
                CassandraProgressStore(session=session, keyspace=keyspace),
                CassandraTrackingLogStore(session=session, keyspace=keyspace),
                CassandraCourseDirectory(session=session, keyspace=keyspace),
                settings,
                dispatcher=dispatcher,
            )
            logger.info("progress_service_initialized", storage="cassandra")
        except Exception as e:
            logger.warning(
                "database_init_skipped",
                error=str(e),
                message="Running without database connection",
            )
    else:
        wire_services(
            app,
            InMemoryProgressStore(),
            InMemoryTrackingLogStore(),
            _memory_directory(settings),
            settings,
            dispatcher=dispatcher,
        )
        logger.info("progress_service_initialized", storage="memory")

    yield

    # Shutdown
    logger.info("shutting_down_application")
    await dispatcher.stop()
    if app_state.cassandra_session is not None:
        await shutdown_async_cassandra()
        app_state.cassandra_session = None


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    # Never expose stack traces; handlers below return safe messages
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Progress approval and bulk pass API",
        debug=False,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    # Request context middleware (must be added first - outermost)
    app.add_middleware(
        RequestContextMiddleware,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )

    def _get_request_id_safe(request: Request) -> str | None:
        """Get request_id from request state or context."""
        if hasattr(request.state, "request_id"):
            return request.state.request_id
        return get_request_id()

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> ORJSONResponse:
        """Handle HTTP exceptions with safe error messages."""
        request_id = _get_request_id_safe(request)

        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=str(exc.detail),
            path=request.url.path,
            method=request.method,
        )

        # Tracking errors carry {"code", "message"} details
        code = None
        message = str(exc.detail)
        if isinstance(exc.detail, dict):
            code = exc.detail.get("code")
            message = exc.detail.get("message", message)

        return ORJSONResponse(
            status_code=exc.status_code,
            content={
                "error": True,
                "code": code,
                "message": message
                if exc.status_code < status.HTTP_500_INTERNAL_SERVER_ERROR
                else "Internal server error",
                "status_code": exc.status_code,
                "request_id": request_id,
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        """Handle validation errors with safe error messages."""
        request_id = _get_request_id_safe(request)

        logger.warning(
            "validation_error",
            errors=exc.errors(),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": True,
                "code": "VALIDATION_ERROR",
                "message": "Validation error",
                "status_code": 422,
                "request_id": request_id,
                "details": [
                    {
                        "field": ".".join(str(loc) for loc in err.get("loc", [])),
                        "message": err.get("msg", "Invalid value"),
                    }
                    for err in exc.errors()
                ],
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> ORJSONResponse:
        """Catch-all handler for unhandled exceptions.

        Details are logged internally, never returned to the client.
        """
        request_id = _get_request_id_safe(request)

        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": True,
                "message": "An unexpected error occurred. Please try again later.",
                "status_code": 500,
                "request_id": request_id,
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(progress_router)
    app.include_router(quick_track_router)
    app.include_router(quick_track_ws_router)

    @app.get("/", include_in_schema=False)
    async def root(request: Request) -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "Progress Approval API",
            "version": settings.app_version,
            "docs": f"{request.url}docs",
        }

    return app


app = create_app()
