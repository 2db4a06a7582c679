"""
FastAPI application setup with dependency injection.
"""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from typing import Optional
import logging

from tripshare.config.settings import get_settings
from tripshare.core.exceptions import ErrorCode, TripShareException
from tripshare.core.logging import configure_logging
from tripshare.api.dependencies import ServiceContainer
from tripshare.middleware import RequestContextMiddleware
from tripshare.schemas.base import Envelope

settings = get_settings()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan management with service container.
    """
    configure_logging(settings.log_level.value, settings.log_format)
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    container: ServiceContainer = app.state.service_container
    try:
        await container.initialize_services()
        logger.info("Application startup complete")
        yield
    except Exception as e:
        logger.error(f"Application startup failed: {e}", exc_info=True)
        raise
    finally:
        logger.info("Shutting down application")
        await container.cleanup_services()
        logger.info("Application shutdown complete")


def _error_response(status_code: int, message: str, error_code: str) -> JSONResponse:
    envelope = Envelope(status="error", error=message, error_code=error_code)
    return JSONResponse(status_code=status_code, content=envelope.model_dump(mode="json"))


def setup_error_handlers(app: FastAPI) -> None:
    """Map every error to the response envelope."""

    @app.exception_handler(TripShareException)
    async def handle_trip_share_exception(request: Request, exc: TripShareException):
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(
            f"{exc.error_code.value} in request {request_id}: {exc.message}",
            extra={
                "request_id": request_id,
                "error_code": exc.error_code.value,
                "status_code": exc.status_code,
                "details": exc.details,
                "request_path": request.url.path,
            },
        )
        return _error_response(exc.status_code, exc.message, exc.error_code.value)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return _error_response(
            422,
            "Invalid request",
            ErrorCode.VALIDATION_ERROR.value,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        return _error_response(exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}")


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        container: Pre-built service container; a fresh one is created otherwise

    Returns:
        FastAPI: Configured application instance
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.service_container = container or ServiceContainer()

    app.add_middleware(RequestContextMiddleware)
    setup_error_handlers(app)

    from tripshare.api.trips_endpoints import router as trips_router
    app.include_router(trips_router)

    @app.get("/")
    async def root():
        """Root endpoint for basic health check."""
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.app_version,
            "status": "running",
        }

    @app.get("/health")
    async def health_check(request: Request):
        """Health check with cache status."""
        try:
            details = await request.app.state.service_container.trip_service.health()
        except RuntimeError:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "unhealthy", "message": "Service container not initialized"},
            )
        return {"status": "healthy", "version": settings.app_version, **details}

    return app


# Create application instance
app = create_app()
