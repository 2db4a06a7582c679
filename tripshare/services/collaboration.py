"""
Collaboration State Machine

Guards and transitions are plain functions over a ``Trip`` value: they
check the caller's rights against the document they are given, edit it in
place and return the activity to record. ``CollaborationService`` runs them
inside ``TripRepository.mutate`` so they always see the freshest document.

Entry lifecycle::

    pending -> accepted -> removed
    pending -> declined
    pending -> removed   (invitation withdrawn)

``declined`` and ``removed`` are terminal for their entry. Re-inviting such a
user appends a new pending entry and keeps the old one as history.
"""
import logging
from datetime import datetime
from typing import Optional, Union

from tripshare.core.db import utcnow
from tripshare.core.exceptions import (
    AlreadyCollaboratorError,
    CollaboratorNotFoundError,
    InvalidRoleError,
    InvitationNotFoundError,
    InvitationPendingError,
    OwnerImmutableError,
    PermissionDeniedError,
    TripNotFoundError,
    UserNotFoundError,
)
from tripshare.core.permissions import (
    ASSIGNABLE_ROLES,
    CollaboratorRole,
    Permission,
    role_has_permission,
)
from tripshare.models.trip import ActivityAction, CollaboratorStatus
from tripshare.schemas.trip import ActivityDraft, Collaborator, Trip, TripMutation
from tripshare.services.trip_store import TripRepository
from tripshare.services.user_directory import UserDirectory

logger = logging.getLogger(__name__)


def parse_assignable_role(role: Union[str, CollaboratorRole]) -> CollaboratorRole:
    """
    Turn caller input into a role that invitations and role changes may grant

    Raises:
        InvalidRoleError: unknown role or the owner role
    """
    allowed = sorted(r.value for r in ASSIGNABLE_ROLES)
    try:
        parsed = CollaboratorRole(role)
    except ValueError:
        raise InvalidRoleError(str(role), allowed) from None
    if parsed not in ASSIGNABLE_ROLES:
        raise InvalidRoleError(parsed.value, allowed)
    return parsed


def require_permission(trip: Trip, user_id: str, permission: Permission) -> Collaborator:
    entry = trip.accepted_entry(user_id)
    if entry is None or not role_has_permission(entry.role, permission):
        raise PermissionDeniedError(trip.id, user_id, permission.value)
    return entry


def invite(
    trip: Trip,
    inviter_id: str,
    invitee_id: str,
    role: CollaboratorRole,
    now: Optional[datetime] = None,
) -> ActivityDraft:
    require_permission(trip, inviter_id, Permission.INVITE_USERS)
    if role not in ASSIGNABLE_ROLES:
        raise InvalidRoleError(role.value, sorted(r.value for r in ASSIGNABLE_ROLES))

    existing = trip.live_entry(invitee_id)
    if existing is not None:
        if existing.status == CollaboratorStatus.ACCEPTED:
            raise AlreadyCollaboratorError(trip.id, invitee_id)
        raise InvitationPendingError(trip.id, invitee_id)

    now = now or utcnow()
    trip.collaborators.append(Collaborator(
        user_id=invitee_id,
        role=role,
        status=CollaboratorStatus.PENDING,
        invited_by=inviter_id,
        invited_at=now,
        last_active_at=now,
    ))
    return ActivityDraft(
        action=ActivityAction.COLLABORATOR_INVITED,
        payload={"user_id": invitee_id, "role": role.value},
    )


def _pending_entry(trip: Trip, user_id: str) -> Collaborator:
    entry = trip.live_entry(user_id)
    if entry is None or entry.status != CollaboratorStatus.PENDING:
        raise InvitationNotFoundError(trip.id, user_id)
    return entry


def accept(trip: Trip, user_id: str, now: Optional[datetime] = None) -> ActivityDraft:
    entry = _pending_entry(trip, user_id)
    now = now or utcnow()
    entry.status = CollaboratorStatus.ACCEPTED
    entry.accepted_at = now
    entry.last_active_at = now
    return ActivityDraft(
        action=ActivityAction.COLLABORATOR_ACCEPTED,
        payload={"user_id": user_id, "role": entry.role.value},
    )


def decline(trip: Trip, user_id: str, now: Optional[datetime] = None) -> ActivityDraft:
    entry = _pending_entry(trip, user_id)
    entry.status = CollaboratorStatus.DECLINED
    entry.last_active_at = now or utcnow()
    return ActivityDraft(
        action=ActivityAction.COLLABORATOR_DECLINED,
        payload={"user_id": user_id, "role": entry.role.value},
    )


def remove(trip: Trip, actor_id: str, target_id: str, now: Optional[datetime] = None) -> ActivityDraft:
    require_permission(trip, actor_id, Permission.MANAGE_COLLABORATORS)
    if target_id == trip.owner_id:
        raise OwnerImmutableError(trip.id)

    entry = trip.live_entry(target_id)
    if entry is None:
        raise CollaboratorNotFoundError(trip.id, target_id)
    previous_status = entry.status
    entry.status = CollaboratorStatus.REMOVED
    entry.last_active_at = now or utcnow()
    return ActivityDraft(
        action=ActivityAction.COLLABORATOR_REMOVED,
        payload={
            "user_id": target_id,
            "role": entry.role.value,
            "previous_status": previous_status.value,
        },
    )


def change_role(
    trip: Trip,
    actor_id: str,
    target_id: str,
    new_role: CollaboratorRole,
) -> Optional[ActivityDraft]:
    """Returns None when the target already holds ``new_role``."""
    require_permission(trip, actor_id, Permission.MANAGE_COLLABORATORS)
    if new_role not in ASSIGNABLE_ROLES:
        raise InvalidRoleError(new_role.value, sorted(r.value for r in ASSIGNABLE_ROLES))
    if target_id == trip.owner_id:
        raise OwnerImmutableError(trip.id)

    entry = trip.accepted_entry(target_id)
    if entry is None:
        raise CollaboratorNotFoundError(trip.id, target_id)
    if entry.role == new_role:
        return None
    old_role = entry.role
    entry.role = new_role
    return ActivityDraft(
        action=ActivityAction.COLLABORATOR_ROLE_UPDATED,
        payload={"user_id": target_id, "old_role": old_role.value, "new_role": new_role.value},
    )


class CollaborationService:
    """Runs collaboration transitions as atomic trip writes"""

    def __init__(self, repository: TripRepository, user_directory: UserDirectory):
        self.repository = repository
        self.user_directory = user_directory

    async def invite(
        self,
        trip_id: str,
        inviter_id: str,
        invitee_id: str,
        role: CollaboratorRole,
    ) -> TripMutation:
        if not await self.user_directory.exists(invitee_id):
            raise UserNotFoundError(invitee_id)
        mutation = await self.repository.mutate(
            trip_id,
            lambda trip: invite(trip, inviter_id, invitee_id, role),
            actor_id=inviter_id,
        )
        return self._found(trip_id, mutation)

    async def accept(self, trip_id: str, user_id: str) -> TripMutation:
        mutation = await self.repository.mutate(
            trip_id, lambda trip: accept(trip, user_id), actor_id=user_id
        )
        return self._found(trip_id, mutation, missing=InvitationNotFoundError(trip_id, user_id))

    async def decline(self, trip_id: str, user_id: str) -> TripMutation:
        mutation = await self.repository.mutate(
            trip_id, lambda trip: decline(trip, user_id), actor_id=user_id
        )
        return self._found(trip_id, mutation, missing=InvitationNotFoundError(trip_id, user_id))

    async def remove(self, trip_id: str, actor_id: str, target_id: str) -> TripMutation:
        mutation = await self.repository.mutate(
            trip_id, lambda trip: remove(trip, actor_id, target_id), actor_id=actor_id
        )
        return self._found(trip_id, mutation)

    async def change_role(
        self,
        trip_id: str,
        actor_id: str,
        target_id: str,
        new_role: CollaboratorRole,
    ) -> TripMutation:
        mutation = await self.repository.mutate(
            trip_id,
            lambda trip: change_role(trip, actor_id, target_id, new_role),
            actor_id=actor_id,
        )
        return self._found(trip_id, mutation)

    @staticmethod
    def _found(
        trip_id: str,
        mutation: Optional[TripMutation],
        missing: Optional[Exception] = None,
    ) -> TripMutation:
        # An invitee of a vanished trip has no invitation left to answer
        if mutation is None:
            raise missing or TripNotFoundError(trip_id)
        if mutation.changed:
            logger.info(
                f"Collaboration change on trip {trip_id}: {mutation.activity.action.value}",
                extra={"trip_id": trip_id, "action": mutation.activity.action.value},
            )
        return mutation
