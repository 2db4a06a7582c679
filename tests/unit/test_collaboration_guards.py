"""
Unit tests for collaboration guards and transitions on in-memory trips
"""
from datetime import datetime, timedelta, timezone

import pytest

from tripshare.core.exceptions import (
    AlreadyCollaboratorError,
    CollaboratorNotFoundError,
    InvalidRoleError,
    InvitationNotFoundError,
    InvitationPendingError,
    OwnerImmutableError,
    PermissionDeniedError,
)
from tripshare.core.permissions import CollaboratorRole
from tripshare.models.trip import ActivityAction, CollaboratorStatus
from tripshare.schemas.trip import Collaborator, Trip
from tripshare.services import collaboration

NOW = datetime(2030, 1, 1, tzinfo=timezone.utc)


def entry(user_id, role, status, invited_by="u1"):
    return Collaborator(
        user_id=user_id,
        role=role,
        status=status,
        invited_by=invited_by,
        invited_at=NOW,
        accepted_at=NOW if status == CollaboratorStatus.ACCEPTED else None,
        last_active_at=NOW,
    )


def build_trip(*extra):
    return Trip(
        id="t1",
        owner_id="u1",
        title="Lisbon Weekend",
        destination={"name": "Lisbon", "country": "Portugal"},
        start_date=NOW,
        end_date=NOW + timedelta(days=2),
        budget={"total": 100},
        status="draft",
        visibility="private",
        collaborators=[entry("u1", CollaboratorRole.OWNER, CollaboratorStatus.ACCEPTED), *extra],
        created_at=NOW,
        updated_at=NOW,
    )


def test_invite_appends_pending_entry():
    trip = build_trip()
    draft = collaboration.invite(trip, "u1", "u2", CollaboratorRole.EDITOR, now=NOW)

    assert draft.action == ActivityAction.COLLABORATOR_INVITED
    added = trip.live_entry("u2")
    assert added.status == CollaboratorStatus.PENDING
    assert added.role == CollaboratorRole.EDITOR
    assert added.invited_by == "u1"


def test_invite_requires_invite_permission():
    trip = build_trip(entry("u2", CollaboratorRole.CONTRIBUTOR, CollaboratorStatus.ACCEPTED))
    with pytest.raises(PermissionDeniedError):
        collaboration.invite(trip, "u2", "u3", CollaboratorRole.VIEWER)


def test_editor_can_invite():
    trip = build_trip(entry("u2", CollaboratorRole.EDITOR, CollaboratorStatus.ACCEPTED))
    collaboration.invite(trip, "u2", "u3", CollaboratorRole.VIEWER)
    assert trip.live_entry("u3").invited_by == "u2"


def test_pending_invitee_cannot_invite():
    trip = build_trip(entry("u2", CollaboratorRole.EDITOR, CollaboratorStatus.PENDING))
    with pytest.raises(PermissionDeniedError):
        collaboration.invite(trip, "u2", "u3", CollaboratorRole.VIEWER)


def test_invite_rejects_owner_role():
    with pytest.raises(InvalidRoleError):
        collaboration.invite(build_trip(), "u1", "u2", CollaboratorRole.OWNER)


def test_invite_existing_accepted_collaborator():
    trip = build_trip(entry("u2", CollaboratorRole.EDITOR, CollaboratorStatus.ACCEPTED))
    with pytest.raises(AlreadyCollaboratorError):
        collaboration.invite(trip, "u1", "u2", CollaboratorRole.VIEWER)
    assert len(trip.collaborators) == 2


def test_invite_user_with_pending_invitation():
    trip = build_trip(entry("u2", CollaboratorRole.EDITOR, CollaboratorStatus.PENDING))
    with pytest.raises(InvitationPendingError):
        collaboration.invite(trip, "u1", "u2", CollaboratorRole.VIEWER)


@pytest.mark.parametrize("terminal", [CollaboratorStatus.DECLINED, CollaboratorStatus.REMOVED])
def test_reinvite_after_terminal_state_keeps_history(terminal):
    trip = build_trip(entry("u2", CollaboratorRole.EDITOR, terminal))
    collaboration.invite(trip, "u1", "u2", CollaboratorRole.VIEWER)

    u2_entries = [c for c in trip.collaborators if c.user_id == "u2"]
    assert [c.status for c in u2_entries] == [terminal, CollaboratorStatus.PENDING]
    assert trip.live_entry("u2").role == CollaboratorRole.VIEWER


def test_accept_pending_invitation():
    trip = build_trip(entry("u2", CollaboratorRole.EDITOR, CollaboratorStatus.PENDING))
    later = NOW + timedelta(hours=1)
    draft = collaboration.accept(trip, "u2", now=later)

    accepted = trip.accepted_entry("u2")
    assert draft.action == ActivityAction.COLLABORATOR_ACCEPTED
    assert accepted.accepted_at == later
    assert accepted.last_active_at == later


def test_accept_without_invitation():
    with pytest.raises(InvitationNotFoundError):
        collaboration.accept(build_trip(), "u2")


def test_accept_twice_fails():
    trip = build_trip(entry("u2", CollaboratorRole.EDITOR, CollaboratorStatus.ACCEPTED))
    with pytest.raises(InvitationNotFoundError):
        collaboration.accept(trip, "u2")


def test_decline_pending_invitation():
    trip = build_trip(entry("u2", CollaboratorRole.VIEWER, CollaboratorStatus.PENDING))
    draft = collaboration.decline(trip, "u2")

    assert draft.action == ActivityAction.COLLABORATOR_DECLINED
    assert trip.live_entry("u2") is None
    assert trip.collaborators[-1].status == CollaboratorStatus.DECLINED


def test_declined_invitation_cannot_be_accepted():
    trip = build_trip(entry("u2", CollaboratorRole.VIEWER, CollaboratorStatus.DECLINED))
    with pytest.raises(InvitationNotFoundError):
        collaboration.accept(trip, "u2")


def test_remove_accepted_collaborator():
    trip = build_trip(entry("u2", CollaboratorRole.EDITOR, CollaboratorStatus.ACCEPTED))
    draft = collaboration.remove(trip, "u1", "u2")

    assert draft.payload["previous_status"] == "accepted"
    assert trip.collaborators[-1].status == CollaboratorStatus.REMOVED
    assert "u2" not in trip.accepted_user_ids()


def test_remove_withdraws_pending_invitation():
    trip = build_trip(entry("u2", CollaboratorRole.EDITOR, CollaboratorStatus.PENDING))
    draft = collaboration.remove(trip, "u1", "u2")
    assert draft.payload["previous_status"] == "pending"
    assert trip.live_entry("u2") is None


def test_remove_owner_is_refused():
    with pytest.raises(OwnerImmutableError):
        collaboration.remove(build_trip(), "u1", "u1")


def test_remove_requires_manage_permission():
    trip = build_trip(
        entry("u2", CollaboratorRole.EDITOR, CollaboratorStatus.ACCEPTED),
        entry("u3", CollaboratorRole.VIEWER, CollaboratorStatus.ACCEPTED),
    )
    with pytest.raises(PermissionDeniedError):
        collaboration.remove(trip, "u2", "u3")


def test_remove_unknown_collaborator():
    with pytest.raises(CollaboratorNotFoundError):
        collaboration.remove(build_trip(), "u1", "ghost")


def test_remove_already_removed_collaborator():
    trip = build_trip(entry("u2", CollaboratorRole.EDITOR, CollaboratorStatus.REMOVED))
    with pytest.raises(CollaboratorNotFoundError):
        collaboration.remove(trip, "u1", "u2")


def test_change_role():
    trip = build_trip(entry("u2", CollaboratorRole.VIEWER, CollaboratorStatus.ACCEPTED))
    draft = collaboration.change_role(trip, "u1", "u2", CollaboratorRole.CONTRIBUTOR)

    assert draft.payload == {"user_id": "u2", "old_role": "viewer", "new_role": "contributor"}
    assert trip.accepted_entry("u2").role == CollaboratorRole.CONTRIBUTOR


def test_change_role_to_same_role_is_noop():
    trip = build_trip(entry("u2", CollaboratorRole.VIEWER, CollaboratorStatus.ACCEPTED))
    assert collaboration.change_role(trip, "u1", "u2", CollaboratorRole.VIEWER) is None


def test_change_role_to_owner_is_refused():
    trip = build_trip(entry("u2", CollaboratorRole.VIEWER, CollaboratorStatus.ACCEPTED))
    with pytest.raises(InvalidRoleError):
        collaboration.change_role(trip, "u1", "u2", CollaboratorRole.OWNER)


def test_change_role_of_owner_is_refused():
    with pytest.raises(OwnerImmutableError):
        collaboration.change_role(build_trip(), "u1", "u1", CollaboratorRole.VIEWER)


def test_change_role_of_pending_invitee():
    trip = build_trip(entry("u2", CollaboratorRole.VIEWER, CollaboratorStatus.PENDING))
    with pytest.raises(CollaboratorNotFoundError):
        collaboration.change_role(trip, "u1", "u2", CollaboratorRole.EDITOR)


@pytest.mark.parametrize("raw", ["owner", "admin", ""])
def test_parse_assignable_role_rejects(raw):
    with pytest.raises(InvalidRoleError):
        collaboration.parse_assignable_role(raw)


def test_parse_assignable_role_accepts_strings():
    assert collaboration.parse_assignable_role("editor") == CollaboratorRole.EDITOR
