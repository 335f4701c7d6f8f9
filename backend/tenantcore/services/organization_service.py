# Overview: Service-layer operations for organizations; the tenant registry and its settings.

"""
Organization Registry

MULTI-TENANT: Organizations are the tenant boundary. Creating one is a
platform-level operation (no TenantContext); reading and editing one goes
through the context of a member.

PLATFORM ORGANIZATION: PLATFORM_ORGANIZATION_ID is created on demand by
ensure_platform_organization and holds actor identities only. It is never
returned by get_organization and never reachable through a TenantContext.
"""

from __future__ import annotations

from flask import current_app

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import PLATFORM_ORGANIZATION_ID, Organization
from ..validation import require_text
from .concurrency import translates_store_errors
from .permission_service import permissions_for_roles, require_permission
from .smart_code_service import build_smart_code, validate_smart_code
from .tenant_service import TenantContext, require_context

PLATFORM_ORGANIZATION_CODE = "PLATFORM"


def ensure_platform_organization() -> Organization:
    """
    Ensure the platform organization exists.

    Safe to call repeatedly (idempotent). Flushes, does not commit.
    """
    org = db.session.get(Organization, PLATFORM_ORGANIZATION_ID)
    if org is not None:
        return org

    org = Organization(
        id=PLATFORM_ORGANIZATION_ID,
        organization_name="Platform",
        organization_code=PLATFORM_ORGANIZATION_CODE,
        status="active",
        settings={},
    )
    db.session.add(org)
    db.session.flush()
    return org


@translates_store_errors
def create_organization(
    name: str,
    code: str,
    settings: dict | None = None,
    owner_actor_id: str | None = None,
    owner_smart_code: str | None = None,
) -> Organization:
    """
    Create a tenant, optionally with its first owner.

    Args:
        name: Display name
        code: Globally unique short code
        settings: Initial settings blob
        owner_actor_id: Platform actor to make owner (membership + HAS_ROLE edges)
        owner_smart_code: Smart code of the owner edges; defaults to
            <namespace>.UNIVERSAL.MEMBERSHIP.OWNER.V1

    Raises:
        ValidationError, ConflictError (code taken), NotFoundError (unknown owner)
    """
    from .membership_service import stage_membership
    from .relationship_service import require_platform_actor

    require_text(name, "organization_name", max_length=255)
    require_text(code, "organization_code", max_length=64)
    if code.upper() == PLATFORM_ORGANIZATION_CODE:
        raise ValidationError("organization_code is reserved", field="organization_code")
    if settings is not None and not isinstance(settings, dict):
        raise ValidationError("settings must be an object", field="settings")
    if owner_actor_id is not None:
        if owner_smart_code is None:
            namespace = current_app.config.get("SMART_CODE_NAMESPACE", "HERA")
            owner_smart_code = build_smart_code(namespace, "UNIVERSAL", "MEMBERSHIP", "OWNER")
        validate_smart_code(owner_smart_code, field="owner_smart_code")
        require_platform_actor(owner_actor_id)

    if db.session.query(Organization.id).filter(Organization.organization_code == code).first() is not None:
        raise ConflictError(f"Organization code '{code}' already exists")

    org = Organization(
        organization_name=name,
        organization_code=code,
        status="active",
        settings=dict(settings or {}),
    )
    db.session.add(org)
    db.session.flush()

    if owner_actor_id is not None:
        owner_ctx = TenantContext(
            organization_id=org.id,
            actor_id=owner_actor_id,
            role="owner",
            permissions=permissions_for_roles(["owner"]),
        )
        stage_membership(owner_ctx, owner_actor_id, "owner", owner_smart_code)

    db.session.commit()
    current_app.logger.info("Created organization %s code=%s", org.id, org.organization_code)
    return org


@translates_store_errors
def get_organization(ctx: TenantContext) -> Organization:
    """The context's organization record."""
    org_id = require_context(ctx)
    org = db.session.get(Organization, org_id)
    if org is None:
        raise NotFoundError("Organization not found")
    return org


@translates_store_errors
def list_organizations(include_inactive: bool = False) -> list[Organization]:
    """Platform-level listing for maintenance tooling. Excludes the platform organization."""
    q = db.session.query(Organization).filter(Organization.id != PLATFORM_ORGANIZATION_ID)
    if not include_inactive:
        q = q.filter(Organization.status == "active")
    return q.order_by(Organization.organization_name.asc(), Organization.id.asc()).all()


@translates_store_errors
def update_settings(ctx: TenantContext, patch: dict) -> Organization:
    """
    Shallow-merge a patch into the organization's settings.

    Requires MANAGE_ORGANIZATION. Keys set to None are removed.
    """
    if not isinstance(patch, dict):
        raise ValidationError("settings patch must be an object", field="settings")
    require_permission(ctx, "MANAGE_ORGANIZATION", resource="organization_settings")
    org = get_organization(ctx)

    merged = dict(org.settings or {})
    for key, value in patch.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    org.settings = merged

    db.session.commit()
    return org
