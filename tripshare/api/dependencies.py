"""
Dependency injection setup for FastAPI.
Provides the service container and the caller identity to endpoints.
"""

from fastapi import HTTPException, Request, status
from typing import Optional
import asyncio
import logging

from tripshare.config.settings import settings
from tripshare.core import db
from tripshare.core.exceptions import TripValidationError
from tripshare.core.cache_client import close_cache_client, get_cache_client
from tripshare.services import TripService, create_trip_service


logger = logging.getLogger(__name__)

MAX_USER_ID_LENGTH = 128


class ServiceContainer:
    """
    Container for managing application services with lifecycle management.

    A ready ``TripService`` may be handed in (tests do this); otherwise the
    database engine, tables and cache client are set up on first use.
    """

    def __init__(self, trip_service: Optional[TripService] = None):
        self._trip_service = trip_service
        self._owns_infrastructure = trip_service is None
        self._initialized = trip_service is not None
        self._initialization_lock = asyncio.Lock()

    async def initialize_services(self) -> None:
        async with self._initialization_lock:
            if self._initialized:
                return

            logger.info("Initializing service container")
            try:
                session_factory = db.init_engine()
                await db.create_all(db.engine)
                cache_client = await get_cache_client()
                self._trip_service = create_trip_service(session_factory, cache_client)
                self._initialized = True
                logger.info("Service container initialization completed")
            except Exception as e:
                logger.error(f"Service container initialization failed: {e}", exc_info=True)
                raise

    async def cleanup_services(self) -> None:
        if not self._owns_infrastructure:
            return

        logger.info("Cleaning up service container")
        try:
            await close_cache_client()
            await db.dispose_engine()
            logger.info("Service container cleanup completed")
        except Exception as e:
            logger.error(f"Service container cleanup failed: {e}", exc_info=True)
        finally:
            self._trip_service = None
            self._initialized = False

    @property
    def trip_service(self) -> TripService:
        if not self._initialized or self._trip_service is None:
            raise RuntimeError("Service container not initialized")
        return self._trip_service


def get_trip_service(request: Request) -> TripService:
    """Get trip service instance."""
    container: Optional[ServiceContainer] = getattr(request.app.state, "service_container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service container not initialized",
        )
    return container.trip_service


def get_current_user_id(request: Request) -> str:
    """
    Caller identity as asserted by the upstream identity provider.

    The header value is trusted as-is; verification happens before requests
    reach this service.
    """
    user_id = request.headers.get(settings.user_id_header, "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {settings.user_id_header} header",
        )
    if len(user_id) > MAX_USER_ID_LENGTH:
        raise TripValidationError(
            f"{settings.user_id_header} cannot be longer than {MAX_USER_ID_LENGTH} characters",
            details={"header": settings.user_id_header},
        )
    return user_id
