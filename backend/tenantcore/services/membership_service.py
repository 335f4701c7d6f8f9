# Overview: Service-layer operations for actor membership; resolves organizations, roles and permissions.

"""
Auth/Membership Resolver

WHY: Turn an authenticated actor id into the authorization context every
store call takes as its first argument.

STATE MACHINE:
    unresolved --(membership + role lookup)--> resolved(memberships)
                                          \--> denied (unknown actor, or no
                                               active membership edge)

IDENTITY MODEL:
- Actors are USER entities in the platform organization
  (PLATFORM_ORGANIZATION_ID), so one identity can join many organizations
- Membership: USER_MEMBER_OF_ORG edge stored in the target organization,
  actor -> organization id; relationship_data["role"] is the primary role
- Roles: HAS_ROLE edges stored in the organization, actor -> role entity
  (entity_type "role", entity_code = role name)

These two edge types are the only rows allowed to reference another tenant's
records (see relationship_service). Resolution never widens a context: each
TenantContext it builds targets exactly one organization.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..errors import ConflictError, MembershipDeniedError, NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    ACTOR_ENTITY_TYPE,
    ENTITY_STATUS_DELETED,
    HAS_ROLE,
    MEMBER_OF_ORG,
    PLATFORM_ORGANIZATION_ID,
    ROLE_ENTITY_TYPE,
    CoreEntity,
    CoreRelationship,
    Organization,
)
from ..permissions import ROLE_PRIORITY
from ..validation import require_text
from .concurrency import translates_store_errors
from .entity_service import stage_recovery
from .organization_service import ensure_platform_organization
from .permission_service import is_admin_role, log_security_event, permissions_for_roles, require_permission
from .relationship_service import build_membership_edge, require_platform_actor
from .smart_code_service import build_smart_code, validate_smart_code
from .tenant_service import TenantContext, require_context, scoped_query

STATE_RESOLVED = "resolved"
STATE_DENIED = "denied"


@dataclass(frozen=True)
class Membership:
    organization_id: str
    organization_name: str
    organization_code: str
    role: str | None
    roles: tuple[str, ...]
    is_owner: bool
    is_admin: bool
    permissions: frozenset[str]

    def to_dict(self) -> dict:
        return {
            "organization_id": self.organization_id,
            "organization_name": self.organization_name,
            "organization_code": self.organization_code,
            "role": self.role,
            "roles": list(self.roles),
            "is_owner": self.is_owner,
            "is_admin": self.is_admin,
            "permissions": sorted(self.permissions),
        }


@dataclass(frozen=True)
class ActorAuthorization:
    """
    Everything an actor may do, resolved in one call.

    default_organization_id is the preferred organization when the actor is
    a member of it, otherwise the first organization joined.
    """
    state: str
    actor_id: str
    memberships: tuple[Membership, ...] = ()
    default_organization_id: str | None = None
    reason: str | None = field(default=None, compare=False)

    @property
    def is_resolved(self) -> bool:
        return self.state == STATE_RESOLVED

    def membership_for(self, organization_id: str) -> Membership | None:
        for membership in self.memberships:
            if membership.organization_id == organization_id:
                return membership
        return None

    def context_for(self, organization_id: str | None = None, timeout_seconds: float | None = None) -> TenantContext:
        """
        Build the TenantContext for one organization (default organization
        when omitted).

        Raises:
            MembershipDeniedError: denied actor, or not a member of that organization
        """
        if not self.is_resolved:
            raise MembershipDeniedError(self.reason or "Actor has no active membership")

        org_id = organization_id or self.default_organization_id
        membership = self.membership_for(org_id)
        if membership is None:
            raise MembershipDeniedError("Actor is not a member of this organization")

        ctx = TenantContext(
            organization_id=membership.organization_id,
            actor_id=self.actor_id,
            role=membership.role,
            permissions=membership.permissions,
        )
        if timeout_seconds is not None:
            ctx = ctx.with_timeout(timeout_seconds)
        return ctx

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "actor_id": self.actor_id,
            "default_organization_id": self.default_organization_id,
            "memberships": [m.to_dict() for m in self.memberships],
        }


def _primary_role(declared: str | None, roles: list[str]) -> str | None:
    if declared:
        return declared
    ranked = sorted(roles, key=lambda r: ROLE_PRIORITY.index(r) if r in ROLE_PRIORITY else len(ROLE_PRIORITY))
    return ranked[0] if ranked else None


# =============================================================================
# RESOLUTION
# =============================================================================

@translates_store_errors
def resolve_actor(actor_id: str, preferred_organization_id: str | None = None) -> ActorAuthorization:
    """
    Resolve an actor's memberships, roles and permissions.

    Combines the membership edges, the role edges and the organization rows
    into one consistent answer. Never raises for an unknown actor: the result
    is in the denied state instead.
    """
    if not actor_id or not isinstance(actor_id, str):
        return ActorAuthorization(state=STATE_DENIED, actor_id=actor_id, reason="No actor identity supplied")

    actor = db.session.query(CoreEntity).filter(
        CoreEntity.id == actor_id,
        CoreEntity.organization_id == PLATFORM_ORGANIZATION_ID,
        CoreEntity.entity_type == ACTOR_ENTITY_TYPE,
        CoreEntity.status != ENTITY_STATUS_DELETED,
    ).first()
    if actor is None:
        return ActorAuthorization(state=STATE_DENIED, actor_id=actor_id, reason="Unknown actor")

    member_rows = (
        db.session.query(CoreRelationship, Organization)
        .join(Organization, db.and_(
            Organization.id == CoreRelationship.organization_id,
            Organization.id == CoreRelationship.to_entity_id,
        ))
        .filter(
            CoreRelationship.relationship_type == MEMBER_OF_ORG,
            CoreRelationship.from_entity_id == actor_id,
            CoreRelationship.is_active.is_(True),
            Organization.status == "active",
            Organization.id != PLATFORM_ORGANIZATION_ID,
        )
        .order_by(CoreRelationship.created_at.asc(), CoreRelationship.id.asc())
        .all()
    )
    if not member_rows:
        return ActorAuthorization(state=STATE_DENIED, actor_id=actor_id, reason="Actor has no active membership")

    role_rows = (
        db.session.query(CoreRelationship.organization_id, CoreEntity.entity_code)
        .join(CoreEntity, db.and_(
            CoreEntity.id == CoreRelationship.to_entity_id,
            CoreEntity.organization_id == CoreRelationship.organization_id,
        ))
        .filter(
            CoreRelationship.relationship_type == HAS_ROLE,
            CoreRelationship.from_entity_id == actor_id,
            CoreRelationship.is_active.is_(True),
            CoreEntity.entity_type == ROLE_ENTITY_TYPE,
            CoreEntity.status != ENTITY_STATUS_DELETED,
        )
        .all()
    )
    roles_by_org: dict[str, list[str]] = {}
    for org_id, role_name in role_rows:
        if role_name:
            roles_by_org.setdefault(org_id, []).append(role_name.lower())

    memberships: list[Membership] = []
    seen: set[str] = set()
    for edge, org in member_rows:
        if org.id in seen:
            continue
        seen.add(org.id)

        declared = (edge.relationship_data or {}).get("role")
        declared = declared.lower() if isinstance(declared, str) and declared.strip() else None
        roles = list(dict.fromkeys(([declared] if declared else []) + roles_by_org.get(org.id, [])))

        memberships.append(Membership(
            organization_id=org.id,
            organization_name=org.organization_name,
            organization_code=org.organization_code,
            role=_primary_role(declared, roles),
            roles=tuple(roles),
            is_owner="owner" in roles,
            is_admin=is_admin_role(roles),
            permissions=permissions_for_roles(roles),
        ))

    member_ids = [m.organization_id for m in memberships]
    default_org = preferred_organization_id if preferred_organization_id in member_ids else member_ids[0]

    return ActorAuthorization(
        state=STATE_RESOLVED,
        actor_id=actor_id,
        memberships=tuple(memberships),
        default_organization_id=default_org,
    )


def authorize(actor_id: str, organization_id: str | None = None) -> TenantContext:
    """
    Resolve an actor and return the context for one organization.

    Usage:
        ctx = authorize(actor_id, organization_id=org_id)
        entity_service.list_entities(ctx, "customer")

    Raises:
        MembershipDeniedError (logged as a MEMBERSHIP_DENIED security event)
    """
    auth = resolve_actor(actor_id, preferred_organization_id=organization_id)
    try:
        return auth.context_for(organization_id)
    except MembershipDeniedError as exc:
        current_app.logger.warning("Membership denied for actor %s org=%s: %s", actor_id, organization_id, exc)
        log_security_event(
            actor_id=actor_id if isinstance(actor_id, str) else None,
            event_type="MEMBERSHIP_DENIED",
            success=False,
            resource="organization",
            action="authorize",
            reason=str(exc),
            organization_id=organization_id,
        )
        raise


# =============================================================================
# IDENTITIES AND MEMBERSHIPS
# =============================================================================

@translates_store_errors
def create_actor_identity(
    entity_name: str,
    smart_code: str,
    entity_code: str | None = None,
    metadata: dict | None = None,
) -> CoreEntity:
    """
    Create an actor identity (USER entity) in the platform organization.

    Platform-level operation: it takes no TenantContext, and it is the only
    way rows are written to the platform organization.

    Raises:
        ValidationError, ConflictError (entity_code already used by another actor)
    """
    validate_smart_code(smart_code)
    require_text(entity_name, "entity_name", max_length=255)
    if entity_code is not None:
        require_text(entity_code, "entity_code", max_length=100)
    if metadata is not None and not isinstance(metadata, dict):
        raise ValidationError("metadata must be an object", field="metadata")

    ensure_platform_organization()
    if entity_code is not None:
        taken = db.session.query(CoreEntity.id).filter(
            CoreEntity.organization_id == PLATFORM_ORGANIZATION_ID,
            CoreEntity.entity_type == ACTOR_ENTITY_TYPE,
            CoreEntity.entity_code == entity_code,
        ).first()
        if taken is not None:
            raise ConflictError(f"Actor with entity_code '{entity_code}' already exists")

    actor = CoreEntity(
        organization_id=PLATFORM_ORGANIZATION_ID,
        entity_type=ACTOR_ENTITY_TYPE,
        entity_name=entity_name,
        entity_code=entity_code,
        status="active",
        smart_code=smart_code,
        metadata_=dict(metadata or {}),
    )
    db.session.add(actor)
    db.session.commit()
    current_app.logger.info("Created actor identity %s", actor.id)
    return actor


def _ensure_role_entity(ctx: TenantContext, role: str) -> CoreEntity:
    role_entity = scoped_query(CoreEntity, ctx).filter(
        CoreEntity.entity_type == ROLE_ENTITY_TYPE,
        CoreEntity.entity_code == role,
    ).first()
    if role_entity is not None:
        if role_entity.is_deleted:
            stage_recovery(ctx, role_entity)
            db.session.flush()
        return role_entity

    namespace = current_app.config.get("SMART_CODE_NAMESPACE", "HERA")
    role_entity = CoreEntity(
        organization_id=ctx.organization_id,
        entity_type=ROLE_ENTITY_TYPE,
        entity_name=role.title(),
        entity_code=role,
        status="active",
        smart_code=build_smart_code(namespace, "UNIVERSAL", "ROLE", "ENTITY"),
        metadata_={},
    )
    db.session.add(role_entity)
    db.session.flush()
    return role_entity


def stage_membership(ctx: TenantContext, actor_id: str, role: str, smart_code: str) -> CoreRelationship:
    """
    Stage (no commit) the membership and role edges for an actor.

    A grant sets the actor's role in the organization; it does not add to
    it. An existing active membership keeps its edge and takes the new role,
    and any other active HAS_ROLE edge of the actor here is deactivated, so
    a demotion takes effect immediately.
    """
    org_id = require_context(ctx)
    role = require_text(role, "role", max_length=100).strip().lower()
    validate_smart_code(smart_code)
    require_platform_actor(actor_id)

    membership = scoped_query(CoreRelationship, ctx).filter(
        CoreRelationship.relationship_type == MEMBER_OF_ORG,
        CoreRelationship.from_entity_id == actor_id,
        CoreRelationship.to_entity_id == org_id,
        CoreRelationship.is_active.is_(True),
    ).first()
    if membership is None:
        membership = build_membership_edge(ctx, actor_id, org_id, MEMBER_OF_ORG, smart_code, {"role": role})
        db.session.add(membership)
    else:
        membership.relationship_data = {**(membership.relationship_data or {}), "role": role}

    role_entity = _ensure_role_entity(ctx, role)
    role_edges = scoped_query(CoreRelationship, ctx).filter(
        CoreRelationship.relationship_type == HAS_ROLE,
        CoreRelationship.from_entity_id == actor_id,
        CoreRelationship.is_active.is_(True),
    ).all()

    kept = False
    for edge in role_edges:
        if edge.to_entity_id == role_entity.id and not kept:
            kept = True
            continue
        edge.is_active = False
    if not kept:
        db.session.add(build_membership_edge(ctx, actor_id, role_entity.id, HAS_ROLE, smart_code))

    return membership


@translates_store_errors
def grant_membership(ctx: TenantContext, actor_id: str, role: str, smart_code: str) -> CoreRelationship:
    """
    Make an actor a member of the context's organization with a role.

    Requires MANAGE_MEMBERS.

    Raises:
        PermissionDeniedError, ValidationError, NotFoundError (unknown actor)
    """
    require_permission(ctx, "MANAGE_MEMBERS", resource="memberships")
    membership = stage_membership(ctx, actor_id, role, smart_code)
    db.session.commit()
    current_app.logger.info("Granted %s membership in org %s to actor %s", role, ctx.organization_id, actor_id)
    return membership


@translates_store_errors
def revoke_membership(ctx: TenantContext, actor_id: str) -> int:
    """
    Deactivate the actor's membership and role edges in the context's
    organization. Edges are kept for audit history.

    Requires MANAGE_MEMBERS.

    Returns:
        Number of edges deactivated

    Raises:
        PermissionDeniedError
        NotFoundError: the actor has no active membership here
    """
    require_permission(ctx, "MANAGE_MEMBERS", resource="memberships")
    edges = scoped_query(CoreRelationship, ctx).filter(
        CoreRelationship.from_entity_id == actor_id,
        CoreRelationship.relationship_type.in_([MEMBER_OF_ORG, HAS_ROLE]),
        CoreRelationship.is_active.is_(True),
    ).all()
    if not any(edge.relationship_type == MEMBER_OF_ORG for edge in edges):
        raise NotFoundError("Membership not found")

    for edge in edges:
        edge.is_active = False
    db.session.commit()
    current_app.logger.info("Revoked membership in org %s for actor %s", ctx.organization_id, actor_id)
    return len(edges)
