"""Permission gate consumed by every mutating or privileged route."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from echo_server.core.errors import Forbidden, Unauthenticated
from echo_server.core.permissions import Permission, Role, has_permission, parse_role


class DenyReason(str, Enum):
    UNAUTHENTICATED = "unauthenticated"  # -> 401
    FORBIDDEN = "forbidden"  # -> 403


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    permission: Permission
    reason: Optional[DenyReason] = None


def require_permission(permission: Permission, role: Optional[Role]) -> GateDecision:
    """Decide whether a resolved role may perform ``permission``."""
    if role is None:
        return GateDecision(False, permission, DenyReason.UNAUTHENTICATED)
    if not has_permission(role, permission):
        return GateDecision(False, permission, DenyReason.FORBIDDEN)
    return GateDecision(True, permission)


def enforce_permission(permission: Permission, role: Optional[Role]) -> Role:
    """Raise Unauthenticated/Forbidden unless the role holds ``permission``."""
    decision = require_permission(permission, role)
    if decision.reason is DenyReason.UNAUTHENTICATED:
        raise Unauthenticated()
    if decision.reason is DenyReason.FORBIDDEN:
        raise Forbidden(f"Missing permission: {permission.value}")
    return parse_role(role)
