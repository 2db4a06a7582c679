# Business logic services

from .trip_store import TripRepository
from .user_directory import UserDirectory
from .cache_coordinator import CacheCoordinator, CacheNamespace
from .permission_evaluator import PermissionEvaluator
from .collaboration import CollaborationService
from .notifications import TripEventPublisher
from .trip_service import TripService


def create_trip_service(session_factory, cache_client, cache_settings=None) -> TripService:
    """
    Factory function wiring a TripService from its infrastructure.

    Args:
        session_factory: Async SQLAlchemy session factory
        cache_client: Redis cache client (may be disabled)
        cache_settings: Optional cache settings override

    Returns:
        Configured TripService instance
    """
    repository = TripRepository(session_factory)
    return TripService(
        repository=repository,
        user_directory=UserDirectory(session_factory),
        cache=CacheCoordinator(cache_client, cache_settings, enabled=cache_client.enabled),
        publisher=TripEventPublisher(cache_client),
    )


__all__ = [
    "TripRepository",
    "UserDirectory",
    "CacheCoordinator",
    "CacheNamespace",
    "PermissionEvaluator",
    "CollaborationService",
    "TripEventPublisher",
    "TripService",
    "create_trip_service",
]
