"""
Unit tests for the role to permission table
"""
import pytest

from tripshare.core.permissions import (
    ASSIGNABLE_ROLES,
    CollaboratorRole,
    Permission,
    permissions_for,
    role_has_permission,
)


def test_owner_holds_every_permission():
    assert permissions_for(CollaboratorRole.OWNER) == frozenset(Permission)


@pytest.mark.parametrize(
    "role,expected",
    [
        (CollaboratorRole.EDITOR, {Permission.VIEW_TRIP, Permission.EDIT_TRIP, Permission.INVITE_USERS}),
        (CollaboratorRole.CONTRIBUTOR, {Permission.VIEW_TRIP, Permission.EDIT_TRIP}),
        (CollaboratorRole.VIEWER, {Permission.VIEW_TRIP}),
    ],
)
def test_non_owner_roles(role, expected):
    assert permissions_for(role) == expected


def test_only_owner_can_delete_or_manage():
    for role in CollaboratorRole:
        if role == CollaboratorRole.OWNER:
            continue
        assert not role_has_permission(role, Permission.DELETE_TRIP)
        assert not role_has_permission(role, Permission.MANAGE_COLLABORATORS)


def test_every_role_can_view():
    assert all(role_has_permission(role, Permission.VIEW_TRIP) for role in CollaboratorRole)


def test_unknown_role_is_rejected_not_mapped():
    with pytest.raises(TypeError):
        permissions_for("admin")


def test_plain_string_role_is_rejected():
    # Even a valid role name must come in as the enum
    with pytest.raises(TypeError):
        permissions_for("owner")


def test_owner_is_not_assignable():
    assert CollaboratorRole.OWNER not in ASSIGNABLE_ROLES
    assert ASSIGNABLE_ROLES == {
        CollaboratorRole.EDITOR,
        CollaboratorRole.CONTRIBUTOR,
        CollaboratorRole.VIEWER,
    }
