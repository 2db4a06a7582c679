"""
Role to permission mapping.

The table is fixed and total over ``CollaboratorRole``. Only the owner can
delete a trip or manage collaborators.
"""
from enum import Enum
from typing import Dict, FrozenSet


class CollaboratorRole(str, Enum):
    OWNER = "owner"
    EDITOR = "editor"
    CONTRIBUTOR = "contributor"
    VIEWER = "viewer"


class Permission(str, Enum):
    VIEW_TRIP = "view_trip"
    EDIT_TRIP = "edit_trip"
    DELETE_TRIP = "delete_trip"
    INVITE_USERS = "invite_users"
    MANAGE_COLLABORATORS = "manage_collaborators"


# Roles that can be handed out through invitations and role changes.
ASSIGNABLE_ROLES: FrozenSet[CollaboratorRole] = frozenset({
    CollaboratorRole.EDITOR,
    CollaboratorRole.CONTRIBUTOR,
    CollaboratorRole.VIEWER,
})

_PERMISSION_TABLE: Dict[CollaboratorRole, FrozenSet[Permission]] = {
    CollaboratorRole.OWNER: frozenset({
        Permission.VIEW_TRIP,
        Permission.EDIT_TRIP,
        Permission.DELETE_TRIP,
        Permission.INVITE_USERS,
        Permission.MANAGE_COLLABORATORS,
    }),
    CollaboratorRole.EDITOR: frozenset({
        Permission.VIEW_TRIP,
        Permission.EDIT_TRIP,
        Permission.INVITE_USERS,
    }),
    CollaboratorRole.CONTRIBUTOR: frozenset({
        Permission.VIEW_TRIP,
        Permission.EDIT_TRIP,
    }),
    CollaboratorRole.VIEWER: frozenset({
        Permission.VIEW_TRIP,
    }),
}


def permissions_for(role: CollaboratorRole) -> FrozenSet[Permission]:
    """Return the permission set granted by ``role``.

    Raises:
        TypeError: ``role`` is not a ``CollaboratorRole``. Plain strings are
            rejected on purpose so a typo can never resolve to some grant.
    """
    if not isinstance(role, CollaboratorRole):
        raise TypeError(f"Expected CollaboratorRole, got {type(role).__name__}: {role!r}")
    return _PERMISSION_TABLE[role]


def role_has_permission(role: CollaboratorRole, permission: Permission) -> bool:
    return permission in permissions_for(role)
