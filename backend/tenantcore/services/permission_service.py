# Overview: Service-layer operations for permission; role resolution and security event logging.

"""
Permission Checking and Security Event Logging with Multi-Tenant Support

WHY: Enforce role-based access control and create audit trail.

MULTI-TENANT: Security events include organization_id for tenant isolation.
All permission checks occur within the caller's tenant boundary.

DESIGN PRINCIPLES:
- Fail closed: Deny by default, require explicit permission grant
- Log denials only: Permission grants are not logged
- Roles are strings from membership edges; permissions derive from
  DEFAULT_ROLE_PERMISSIONS and are unioned across roles
"""

from __future__ import annotations

from typing import Iterable

from ..errors import PermissionDeniedError
from ..extensions import db
from ..models import SecurityEvent
from ..permissions import ADMIN_ROLES, DEFAULT_ROLE_PERMISSIONS, validate_permission_code


def log_security_event(
    actor_id: str | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    organization_id: str | None = None,
) -> SecurityEvent:
    """
    Log security event to audit trail with tenant context.

    WHY: Immutable audit log for compliance and security monitoring.
    Callers log before they stage any write, so the commit here never
    carries a half-built operation with it.

    event_type examples:
    - TENANT_CONTEXT_MISSING
    - CROSS_TENANT_ACCESS_DENIED
    - MEMBERSHIP_DENIED
    - PERMISSION_DENIED
    """
    event = SecurityEvent(
        actor_id=actor_id,
        organization_id=organization_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
    )

    db.session.add(event)
    db.session.commit()

    return event


def permissions_for_roles(roles: Iterable[str]) -> frozenset[str]:
    """
    Union of permission codes for a set of role names.

    Unknown roles contribute nothing (fail closed).
    """
    codes: set[str] = set()
    for role in roles:
        codes.update(DEFAULT_ROLE_PERMISSIONS.get((role or "").lower(), ()))
    return frozenset(codes)


def is_admin_role(roles: Iterable[str]) -> bool:
    return any((role or "").lower() in ADMIN_ROLES for role in roles)


def require_permission(ctx, permission_code: str, resource: str | None = None) -> None:
    """
    Require the context's role to carry a permission, raise PermissionDeniedError if not.

    Usage:
        require_permission(ctx, "MANAGE_MEMBERS", resource="memberships")
    """
    if not validate_permission_code(permission_code):
        raise ValueError(f"Unknown permission code: {permission_code}")
    if ctx.has_permission(permission_code):
        return

    # Log only denials (policy: no granted logs)
    log_security_event(
        actor_id=ctx.actor_id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=permission_code,
        reason=f"Missing permission: {permission_code}",
        organization_id=ctx.organization_id,
    )
    raise PermissionDeniedError(f"Permission denied: {permission_code}")
