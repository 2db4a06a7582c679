"""
Trip Service - the single entry point for trip collaboration

Every mutation runs in a fixed order: validate input, authorize, mutate
(activity recorded in the same transaction), invalidate cache, publish the
change notification. Business conditions come back as failed
``ServiceResult`` values; only ``StoreUnavailableError`` propagates.
"""
import logging
from typing import Any, Awaitable, Dict, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from tripshare.config.settings import settings
from tripshare.core.db import utcnow
from tripshare.core.exceptions import (
    StoreUnavailableError,
    TripNotFoundError,
    TripShareException,
    TripValidationError,
)
from tripshare.core.permissions import CollaboratorRole, Permission
from tripshare.models.trip import ActivityAction
from tripshare.schemas.base import ServiceResult
from tripshare.schemas.trip import (
    ActivityDraft,
    ActivityRecord,
    Collaboration,
    Invitation,
    PageRequest,
    PermissionDecision,
    Trip,
    TripCreate,
    TripFilters,
    TripMutation,
    TripPage,
    TripUpdate,
    query_fingerprint,
)
from tripshare.services.cache_coordinator import CacheCoordinator, CacheNamespace
from tripshare.services.collaboration import CollaborationService, parse_assignable_role
from tripshare.services.notifications import TripEventPublisher
from tripshare.services.permission_evaluator import PermissionEvaluator
from tripshare.services.trip_store import TripRepository, validate_patch
from tripshare.services.user_directory import UserDirectory

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

MAX_QUERY_LENGTH = 200


def _coerce(model: Type[M], value: Union[M, Mapping[str, Any], None], label: str) -> M:
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(dict(value or {}))
    except ValidationError as e:
        raise TripValidationError(f"Invalid {label}", {"errors": e.errors(include_url=False)}) from e


def _collaboration(trip_id: str, trip: Trip, user_id: str, updated_by: str) -> Collaboration:
    # The user's most recent entry, live or terminal
    entry = next(c for c in reversed(trip.collaborators) if c.user_id == user_id)
    return Collaboration(
        trip_id=trip_id,
        user_id=user_id,
        role=entry.role,
        status=entry.status,
        accepted_at=entry.accepted_at,
        updated_by=updated_by,
    )


class TripService:
    """Façade over the trip store, collaboration rules, permissions and cache"""

    def __init__(
        self,
        repository: TripRepository,
        user_directory: UserDirectory,
        cache: CacheCoordinator,
        publisher: TripEventPublisher,
    ):
        self.repository = repository
        self.user_directory = user_directory
        self.cache = cache
        self.publisher = publisher
        self.permissions = PermissionEvaluator(repository, cache)
        self.collaboration = CollaborationService(repository, user_directory)

    async def _execute(self, operation: str, work: Awaitable[Any]) -> ServiceResult:
        try:
            data = await work
        except StoreUnavailableError:
            raise
        except TripShareException as e:
            logger.info(
                f"{operation} rejected: {e.error_code.value}",
                extra={"operation": operation, "error_code": e.error_code.value, "details": e.details},
            )
            return ServiceResult.failure(e)
        return ServiceResult.success(data)

    # Trip lifecycle

    async def create_trip(
        self, user_id: str, data: Union[TripCreate, Mapping[str, Any]]
    ) -> ServiceResult[Trip]:
        """
        Create a trip owned by ``user_id``

        Args:
            user_id: Creating user, becomes the sole owner
            data: Trip fields (model or raw mapping)

        Returns:
            ServiceResult with the created trip
        """
        return await self._execute("create_trip", self._create_trip(user_id, data))

    async def _create_trip(self, user_id: str, data) -> Trip:
        trip_data = _coerce(TripCreate, data, "trip")
        trip = await self.repository.create(user_id, trip_data)
        await self.cache.invalidate_for_users(CacheNamespace.USER_TRIPS, [user_id])
        await self.cache.invalidate_for_users(CacheNamespace.USER_SEARCH, [user_id])
        await self.publisher.publish(trip.id, ActivityAction.TRIP_CREATED.value, user_id, title=trip.title)
        return trip

    async def get_trip(self, trip_id: str, user_id: str) -> ServiceResult[Trip]:
        """
        Fetch a trip the user can view

        A trip the user cannot view is reported as not found.
        """
        return await self._execute("get_trip", self._get_trip(trip_id, user_id))

    async def _get_trip(self, trip_id: str, user_id: str) -> Trip:
        await self.permissions.require(trip_id, user_id, Permission.VIEW_TRIP, mask_denied=True)
        trip = await self.permissions.load_trip(trip_id)
        if trip is None:
            raise TripNotFoundError(trip_id)
        return trip

    async def update_trip(
        self,
        trip_id: str,
        user_id: str,
        patch: Union[TripUpdate, Mapping[str, Any]],
        expected_version: Optional[int] = None,
    ) -> ServiceResult[Trip]:
        """
        Patch business fields of a trip

        Args:
            trip_id: Trip ID
            user_id: Caller, needs edit_trip
            patch: Fields to change; identity, ownership, membership,
                versioning and timestamps are rejected
            expected_version: When given, the write only happens if the
                trip is still at this version

        Returns:
            ServiceResult with the updated trip
        """
        return await self._execute(
            "update_trip", self._update_trip(trip_id, user_id, patch, expected_version)
        )

    async def _update_trip(self, trip_id, user_id, patch, expected_version) -> Trip:
        if isinstance(patch, TripUpdate):
            patch = patch.model_dump(exclude_unset=True)
        validate_patch(patch)
        await self.permissions.require(trip_id, user_id, Permission.EDIT_TRIP)

        mutation = await self.repository.update(
            trip_id, patch, actor_id=user_id, expected_version=expected_version
        )
        if mutation is None:
            raise TripNotFoundError(trip_id)
        if mutation.changed:
            await self.cache.invalidate_trip_and_fan_out(trip_id, mutation.before.accepted_user_ids())
            await self.publisher.publish(
                trip_id,
                ActivityAction.TRIP_UPDATED.value,
                user_id,
                fields=sorted(mutation.activity.payload.get("changes", {})),
                version=mutation.after.version,
            )
            logger.info(f"Trip updated: {trip_id}", extra={"trip_id": trip_id, "version": mutation.after.version})
        return mutation.after

    async def archive_trip(self, trip_id: str, user_id: str) -> ServiceResult[Trip]:
        """Hide a trip from listings. Requires delete_trip."""
        return await self._execute("archive_trip", self._archive_trip(trip_id, user_id))

    async def _archive_trip(self, trip_id: str, user_id: str) -> Trip:
        await self.permissions.require(trip_id, user_id, Permission.DELETE_TRIP)

        def archive(trip: Trip) -> Optional[ActivityDraft]:
            if trip.is_archived:
                return None
            trip.is_archived = True
            trip.archived_at = utcnow()
            return ActivityDraft(action=ActivityAction.TRIP_ARCHIVED, payload={"title": trip.title})

        mutation = await self.repository.mutate(trip_id, archive, actor_id=user_id)
        if mutation is None:
            raise TripNotFoundError(trip_id)
        if mutation.changed:
            await self.cache.invalidate_trip_and_fan_out(trip_id, mutation.before.accepted_user_ids())
            await self.publisher.publish(trip_id, ActivityAction.TRIP_ARCHIVED.value, user_id)
            logger.info(f"Trip archived: {trip_id}", extra={"trip_id": trip_id})
        return mutation.after

    async def delete_trip(self, trip_id: str, user_id: str) -> ServiceResult[Trip]:
        """
        Delete a trip. Requires delete_trip.

        Returns:
            ServiceResult with the trip as it was before deletion
        """
        return await self._execute("delete_trip", self._delete_trip(trip_id, user_id))

    async def _delete_trip(self, trip_id: str, user_id: str) -> Trip:
        await self.permissions.require(trip_id, user_id, Permission.DELETE_TRIP)
        snapshot = await self.repository.delete(trip_id, actor_id=user_id)
        if snapshot is None:
            raise TripNotFoundError(trip_id)
        await self.cache.invalidate_trip_and_fan_out(trip_id, snapshot.accepted_user_ids())
        await self.cache.invalidate_permissions(trip_id)
        await self.publisher.publish(trip_id, ActivityAction.TRIP_DELETED.value, user_id)
        return snapshot

    # Collaboration

    async def invite_collaborator(
        self,
        trip_id: str,
        inviter_id: str,
        invitee_id: str,
        role: Union[str, CollaboratorRole],
    ) -> ServiceResult[Invitation]:
        """
        Invite a user to collaborate with an assignable role

        Args:
            trip_id: Trip ID
            inviter_id: Caller, needs invite_users
            invitee_id: User being invited, must exist in the user directory
            role: editor, contributor or viewer

        Returns:
            ServiceResult with the pending invitation
        """
        return await self._execute(
            "invite_collaborator", self._invite(trip_id, inviter_id, invitee_id, role)
        )

    async def _invite(self, trip_id, inviter_id, invitee_id, role) -> Invitation:
        role = parse_assignable_role(role)
        if not invitee_id:
            raise TripValidationError("Invitee user id is required")
        await self.permissions.require(trip_id, inviter_id, Permission.INVITE_USERS)

        mutation = await self.collaboration.invite(trip_id, inviter_id, invitee_id, role)
        await self._after_collaboration_change(mutation, inviter_id, invitee_id)
        entry = mutation.after.live_entry(invitee_id)
        return Invitation(
            trip_id=trip_id,
            invitee_id=invitee_id,
            role=entry.role,
            status=entry.status,
            invited_by=entry.invited_by,
            invited_at=entry.invited_at,
        )

    async def accept_invitation(self, trip_id: str, user_id: str) -> ServiceResult[Collaboration]:
        return await self._execute("accept_invitation", self._respond(trip_id, user_id, accept=True))

    async def decline_invitation(self, trip_id: str, user_id: str) -> ServiceResult[Collaboration]:
        return await self._execute("decline_invitation", self._respond(trip_id, user_id, accept=False))

    async def _respond(self, trip_id: str, user_id: str, accept: bool) -> Collaboration:
        if accept:
            mutation = await self.collaboration.accept(trip_id, user_id)
        else:
            mutation = await self.collaboration.decline(trip_id, user_id)
        await self._after_collaboration_change(mutation, user_id, user_id)
        return _collaboration(trip_id, mutation.after, user_id, user_id)

    async def remove_collaborator(
        self, trip_id: str, actor_id: str, target_id: str
    ) -> ServiceResult[Collaboration]:
        """Remove an accepted collaborator or withdraw a pending invitation."""
        return await self._execute(
            "remove_collaborator", self._remove(trip_id, actor_id, target_id)
        )

    async def _remove(self, trip_id: str, actor_id: str, target_id: str) -> Collaboration:
        await self.permissions.require(trip_id, actor_id, Permission.MANAGE_COLLABORATORS)
        mutation = await self.collaboration.remove(trip_id, actor_id, target_id)
        await self._after_collaboration_change(mutation, actor_id, target_id)
        return _collaboration(trip_id, mutation.after, target_id, actor_id)

    async def change_collaborator_role(
        self,
        trip_id: str,
        actor_id: str,
        target_id: str,
        new_role: Union[str, CollaboratorRole],
    ) -> ServiceResult[Collaboration]:
        """
        Change the role of an accepted collaborator

        Asking for the role the collaborator already has succeeds without
        writing anything.
        """
        return await self._execute(
            "change_collaborator_role",
            self._change_role(trip_id, actor_id, target_id, new_role),
        )

    async def _change_role(self, trip_id, actor_id, target_id, new_role) -> Collaboration:
        new_role = parse_assignable_role(new_role)
        await self.permissions.require(trip_id, actor_id, Permission.MANAGE_COLLABORATORS)
        mutation = await self.collaboration.change_role(trip_id, actor_id, target_id, new_role)
        await self._after_collaboration_change(mutation, actor_id, target_id)
        return _collaboration(trip_id, mutation.after, target_id, actor_id)

    async def _after_collaboration_change(
        self, mutation: TripMutation, actor_id: str, target_id: str
    ) -> None:
        if not mutation.changed:
            return
        trip_id = mutation.after.id
        await self.cache.invalidate_trip_and_fan_out(
            trip_id, [*mutation.before.accepted_user_ids(), target_id]
        )
        await self.cache.invalidate_permissions(trip_id, target_id)
        await self.publisher.publish(
            trip_id,
            mutation.activity.action.value,
            actor_id,
            **mutation.activity.payload,
        )

    # Queries

    async def list_trips_for_user(
        self,
        user_id: str,
        filters: Union[TripFilters, Mapping[str, Any], None] = None,
        page: Union[PageRequest, Mapping[str, Any], None] = None,
    ) -> ServiceResult[TripPage]:
        """
        List the non-archived trips a user owns or has accepted

        Args:
            user_id: User ID
            filters: Status, destination, date, budget and tag filters
            page: Page number and size

        Returns:
            ServiceResult with one page of trips, most recently changed first
        """
        return await self._execute("list_trips_for_user", self._list(user_id, filters, page))

    async def _list(self, user_id, filters, page) -> TripPage:
        filters = _coerce(TripFilters, filters, "filters")
        page = _coerce(PageRequest, page or {"limit": settings.store.default_page_size}, "page")
        key = f"{user_id}:{query_fingerprint(filters, page)}"
        return await self.cache.get_or_load(
            CacheNamespace.USER_TRIPS,
            key,
            lambda: self.repository.list_for_user(user_id, filters, page),
            TripPage,
        )

    async def search_trips(
        self,
        user_id: str,
        query: str,
        page: Union[PageRequest, Mapping[str, Any], None] = None,
    ) -> ServiceResult[TripPage]:
        """Substring search across the user's trips."""
        return await self._execute("search_trips", self._search(user_id, query, page))

    async def _search(self, user_id, query, page) -> TripPage:
        term = (query or "").strip()
        if not term or len(term) > MAX_QUERY_LENGTH:
            raise TripValidationError(
                f"Search query must be between 1 and {MAX_QUERY_LENGTH} characters"
            )
        page = _coerce(PageRequest, page or {"limit": settings.store.default_page_size}, "page")
        key = f"{user_id}:{query_fingerprint(term.lower(), page)}"
        return await self.cache.get_or_load(
            CacheNamespace.USER_SEARCH,
            key,
            lambda: self.repository.search_for_user(user_id, term, page),
            TripPage,
        )

    async def get_trip_activity(
        self, trip_id: str, user_id: str, limit: Optional[int] = None
    ) -> ServiceResult[List[ActivityRecord]]:
        """Recent activity of a trip, newest first. Requires view_trip."""
        return await self._execute("get_trip_activity", self._activity(trip_id, user_id, limit))

    async def _activity(self, trip_id, user_id, limit) -> List[ActivityRecord]:
        max_limit = settings.store.max_page_size
        if limit is not None and not 1 <= limit <= max_limit:
            raise TripValidationError(f"Limit must be between 1 and {max_limit}", {"limit": limit})
        await self.permissions.require(trip_id, user_id, Permission.VIEW_TRIP, mask_denied=True)
        return await self.repository.list_activity(trip_id, limit)

    async def check_permission(
        self, trip_id: str, user_id: str, permission: Union[str, Permission]
    ) -> ServiceResult[PermissionDecision]:
        """
        Report whether a user holds a permission

        Never fails for a denial; the decision carries ``allowed`` and the reason.
        """
        return await self._execute("check_permission", self._check(trip_id, user_id, permission))

    async def _check(self, trip_id, user_id, permission) -> PermissionDecision:
        try:
            permission = Permission(permission)
        except ValueError:
            raise TripValidationError(
                f"Unknown permission '{permission}'",
                {"allowed": [p.value for p in Permission]},
            ) from None
        return await self.permissions.check(trip_id, user_id, permission)

    async def health(self) -> Dict[str, Any]:
        cache_ok = await self.cache.cache.ping() if self.cache.enabled else None
        return {"cache_enabled": self.cache.enabled, "cache_reachable": cache_ok}
