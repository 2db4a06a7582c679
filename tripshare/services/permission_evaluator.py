"""
Permission Evaluator - role based access decisions for a (trip, user) pair

Default deny: anything that goes wrong while looking up the trip produces a
``lookup_failed`` denial instead of an exception. Decisions are cached under
``permission:{trip_id}:{user_id}:{permission}`` unless they stem from a
missing trip or a failed lookup.
"""
import logging
from typing import Optional

from tripshare.core.exceptions import (
    PermissionDeniedError,
    StoreUnavailableError,
    TripNotFoundError,
)
from tripshare.core.permissions import Permission, role_has_permission
from tripshare.schemas.trip import DecisionReason, PermissionDecision, Trip
from tripshare.services.cache_coordinator import CacheCoordinator, CacheNamespace
from tripshare.services.trip_store import TripRepository

logger = logging.getLogger(__name__)


class PermissionEvaluator:
    """Answers whether a user may perform an action on a trip"""

    def __init__(self, repository: TripRepository, cache: CacheCoordinator):
        self.repository = repository
        self.cache = cache

    async def load_trip(self, trip_id: str) -> Optional[Trip]:
        """Read-through load of the trip document."""
        return await self.cache.get_or_load(
            CacheNamespace.TRIP,
            trip_id,
            lambda: self.repository.get_by_id(trip_id),
            Trip,
        )

    async def check(self, trip_id: str, user_id: str, permission: Permission) -> PermissionDecision:
        """
        Decide whether ``user_id`` holds ``permission`` on the trip

        Args:
            trip_id: Trip ID
            user_id: Caller
            permission: Capability being exercised

        Returns:
            The decision, never raises
        """
        uncacheable = []

        async def decide() -> Optional[PermissionDecision]:
            decision = await self._evaluate(trip_id, user_id, permission)
            if decision.cacheable:
                return decision
            uncacheable.append(decision)
            return None

        key = f"{trip_id}:{user_id}:{permission.value}"
        try:
            decision = await self.cache.get_or_load(CacheNamespace.PERMISSION, key, decide, PermissionDecision)
        except Exception as e:
            logger.warning(
                f"Permission lookup failed for trip {trip_id}: {e}",
                exc_info=True,
                extra={"trip_id": trip_id, "user_id": user_id, "permission": permission.value},
            )
            return PermissionDecision(
                allowed=False, permission=permission, reason=DecisionReason.LOOKUP_FAILED
            )

        if decision is None:
            decision = uncacheable[0]
        if not decision.allowed:
            logger.info(
                f"Permission denied: {permission.value} on trip {trip_id} ({decision.reason.value})",
                extra={"trip_id": trip_id, "user_id": user_id, "reason": decision.reason.value},
            )
        return decision

    async def require(
        self,
        trip_id: str,
        user_id: str,
        permission: Permission,
        mask_denied: bool = False,
    ) -> PermissionDecision:
        """
        Like ``check`` but raises on denial

        Args:
            mask_denied: Report a denial as a missing trip, so reads do not
                reveal that the trip exists

        Raises:
            TripNotFoundError: trip absent, or denied with ``mask_denied``
            PermissionDeniedError: trip exists and the user lacks the permission
            StoreUnavailableError: the lookup itself failed
        """
        decision = await self.check(trip_id, user_id, permission)
        if decision.allowed:
            return decision
        if decision.reason == DecisionReason.TRIP_NOT_FOUND:
            raise TripNotFoundError(trip_id)
        if decision.reason == DecisionReason.LOOKUP_FAILED:
            raise StoreUnavailableError("permission_check", {"trip_id": trip_id})
        if mask_denied:
            raise TripNotFoundError(trip_id)
        raise PermissionDeniedError(trip_id, user_id, permission.value)

    async def _evaluate(self, trip_id: str, user_id: str, permission: Permission) -> PermissionDecision:
        trip = await self.load_trip(trip_id)
        if trip is None:
            return PermissionDecision(
                allowed=False, permission=permission, reason=DecisionReason.TRIP_NOT_FOUND
            )
        entry = trip.accepted_entry(user_id)
        if entry is None:
            return PermissionDecision(
                allowed=False, permission=permission, reason=DecisionReason.NOT_COLLABORATOR
            )
        if not role_has_permission(entry.role, permission):
            return PermissionDecision(
                allowed=False,
                permission=permission,
                role=entry.role,
                reason=DecisionReason.MISSING_PERMISSION,
            )
        return PermissionDecision(
            allowed=True, permission=permission, role=entry.role, reason=DecisionReason.GRANTED
        )
