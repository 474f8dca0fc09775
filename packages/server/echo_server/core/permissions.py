"""Role -> permission table.

Six organization roles, each mapped to an explicit permission set.
Lookups fail closed: an unknown or missing role has no permissions.

  owner, admin      -> everything
  product_manager   -> feedback triage, API keys, backup view
  customer_support  -> create, submit on behalf
  developer         -> create
  customer          -> create
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from typing import Optional

from echo_shared.schemas.common import Role


class Permission(str, Enum):
    CREATE_FEEDBACK = "create_feedback"
    SUBMIT_ON_BEHALF = "submit_on_behalf"
    DELETE_FEEDBACK = "delete_feedback"
    EDIT_FEEDBACK = "edit_feedback"
    UPDATE_FEEDBACK_STATUS = "update_feedback_status"
    MANAGE_ORG = "manage_org"
    MANAGE_MEMBERS = "manage_members"
    MANAGE_API_KEYS = "manage_api_keys"
    BACKUP_CREATE = "backup_create"
    BACKUP_VIEW = "backup_view"


# Roles allowed to grant or revoke other owners.
OWNER_ROLES: frozenset[Role] = frozenset({Role.OWNER})

# Roles that count towards "the organization still has an administrator".
ADMIN_ROLES: frozenset[Role] = frozenset({Role.OWNER, Role.ADMIN})

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.OWNER: frozenset(Permission),
    Role.ADMIN: frozenset(Permission),
    Role.PRODUCT_MANAGER: frozenset(
        {
            Permission.CREATE_FEEDBACK,
            Permission.SUBMIT_ON_BEHALF,
            Permission.DELETE_FEEDBACK,
            Permission.EDIT_FEEDBACK,
            Permission.UPDATE_FEEDBACK_STATUS,
            Permission.MANAGE_API_KEYS,
            Permission.BACKUP_VIEW,
        }
    ),
    Role.DEVELOPER: frozenset({Permission.CREATE_FEEDBACK}),
    Role.CUSTOMER_SUPPORT: frozenset(
        {
            Permission.CREATE_FEEDBACK,
            Permission.SUBMIT_ON_BEHALF,
        }
    ),
    Role.CUSTOMER: frozenset({Permission.CREATE_FEEDBACK}),
}


def parse_role(value: object) -> Optional[Role]:
    """Parse a stored role string into a Role, returning None if unknown."""
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return None


def get_role_permissions(role: Optional[Role]) -> frozenset[Permission]:
    """Return the permission set for a role (empty for None/unknown)."""
    parsed = parse_role(role) if role is not None else None
    if parsed is None:
        return frozenset()
    return ROLE_PERMISSIONS.get(parsed, frozenset())


def has_permission(role: Optional[Role], permission: Permission) -> bool:
    return permission in get_role_permissions(role)


def has_all_permissions(role: Optional[Role], permissions: Iterable[Permission]) -> bool:
    """True only if the role holds every listed permission."""
    granted = get_role_permissions(role)
    if not granted:
        return False
    return all(permission in granted for permission in permissions)


def can_submit_on_behalf(role: Optional[Role]) -> bool:
    return has_permission(role, Permission.SUBMIT_ON_BEHALF)


def can_update_feedback_status(role: Optional[Role]) -> bool:
    return has_permission(role, Permission.UPDATE_FEEDBACK_STATUS)


def can_delete_feedback(role: Optional[Role]) -> bool:
    return has_permission(role, Permission.DELETE_FEEDBACK)


def can_edit_feedback(role: Optional[Role]) -> bool:
    return has_permission(role, Permission.EDIT_FEEDBACK)
