# Overview: Service-layer operations for the relationship graph; typed directed edges between entities.

"""
Relationship Graph with Multi-Tenant Support

MULTI-TENANT: An edge lives in the context's organization and both endpoints
must be live entities of that same organization.

MEMBERSHIP EXCEPTION (the only one):
- USER_MEMBER_OF_ORG: from = platform actor identity, to = the id of the
  organization the edge is stored in
- HAS_ROLE: from = platform actor identity, to = a role entity of the
  organization
Nothing else may point outside the organization.

SECURITY: Membership edges grant permissions, so the graph operations here
refuse to create, reactivate or deactivate them. They are written only by
membership_service (build_membership_edge): grants behind MANAGE_MEMBERS,
and the owner edges of a newly created organization.

LIFECYCLE: Edges are deactivated, never deleted. No cycle checks and no edge
uniqueness; both are domain concerns.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, CoreError, NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    ACTOR_ENTITY_TYPE,
    ENTITY_STATUS_DELETED,
    HAS_ROLE,
    MEMBER_OF_ORG,
    MEMBERSHIP_RELATIONSHIP_TYPES,
    PLATFORM_ORGANIZATION_ID,
    ROLE_ENTITY_TYPE,
    CoreEntity,
    CoreRelationship,
)
from ..validation import require_text
from .concurrency import translates_store_errors
from .entity_service import load_entity
from .smart_code_service import validate_smart_code
from .tenant_service import TenantContext, assert_row_scoped, require_context, require_row_in_org, scoped_query

DIRECTIONS = ("outgoing", "incoming", "both")


@dataclass
class RelationshipResult:
    """Outcome of one item of a bulk create."""
    index: int
    ok: bool
    relationship: CoreRelationship | None = None
    error: CoreError | None = None

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "ok": self.ok,
            "relationship": self.relationship.to_dict() if self.relationship is not None else None,
            "error": self.error.to_dict() if self.error is not None else None,
        }


# =============================================================================
# ENDPOINT RULES
# =============================================================================

def require_platform_actor(actor_id: str) -> CoreEntity:
    actor = db.session.query(CoreEntity).filter(
        CoreEntity.id == actor_id,
        CoreEntity.organization_id == PLATFORM_ORGANIZATION_ID,
        CoreEntity.entity_type == ACTOR_ENTITY_TYPE,
        CoreEntity.status != ENTITY_STATUS_DELETED,
    ).first()
    if actor is None:
        raise NotFoundError("Entity not found")
    return actor


def _reject_membership_type(relationship_type: str) -> None:
    if relationship_type in MEMBERSHIP_RELATIONSHIP_TYPES:
        raise ValidationError(
            f"{relationship_type} edges are managed through memberships, not the relationship graph",
            field="relationship_type",
        )


def _check_membership_endpoints(ctx: TenantContext, actor_id: str, to_entity_id: str, relationship_type: str) -> None:
    """
    Raises:
        NotFoundError: actor is not a live platform identity, or the role
        entity is not a live role of this organization
        ValidationError: a USER_MEMBER_OF_ORG edge does not point at this organization
    """
    org_id = require_context(ctx)
    require_platform_actor(actor_id)

    if relationship_type == MEMBER_OF_ORG:
        if to_entity_id != org_id:
            raise ValidationError(
                f"{MEMBER_OF_ORG} edges must point at the organization they are stored in",
                field="to_entity_id",
            )
        return

    role = load_entity(ctx, to_entity_id)
    if role.entity_type != ROLE_ENTITY_TYPE:
        raise ValidationError(f"{HAS_ROLE} edges must point at a role entity", field="to_entity_id")


def _check_endpoints(ctx: TenantContext, from_entity_id: str, to_entity_id: str) -> None:
    """
    Both endpoints must be live entities of the context's organization.

    Raises:
        NotFoundError: an endpoint is absent, deleted or in another organization
    """
    require_context(ctx)
    load_entity(ctx, from_entity_id)
    load_entity(ctx, to_entity_id)


def _validate_edge_fields(smart_code, relationship_type, relationship_data, is_active, from_entity_id, to_entity_id) -> None:
    validate_smart_code(smart_code)
    require_text(relationship_type, "relationship_type", max_length=100)
    if relationship_data is not None and not isinstance(relationship_data, dict):
        raise ValidationError("relationship_data must be an object", field="relationship_data")
    if not isinstance(is_active, bool):
        raise ValidationError("is_active must be a boolean", field="is_active")
    if not from_entity_id or not to_entity_id:
        raise ValidationError("from_entity_id and to_entity_id are required", field="from_entity_id")


def _new_edge(ctx, from_entity_id, to_entity_id, relationship_type, smart_code, relationship_data, is_active) -> CoreRelationship:
    return CoreRelationship(
        organization_id=ctx.organization_id,
        from_entity_id=from_entity_id,
        to_entity_id=to_entity_id,
        relationship_type=relationship_type,
        smart_code=smart_code,
        relationship_data=dict(relationship_data or {}),
        is_active=is_active,
    )


def build_relationship(
    ctx: TenantContext,
    from_entity_id: str,
    to_entity_id: str,
    relationship_type: str,
    smart_code: str,
    relationship_data: dict | None,
    is_active: bool,
) -> CoreRelationship:
    """
    Validate everything and build a transient edge. Nothing is staged.

    Raises:
        ValidationError: bad fields, or a membership relationship_type
        NotFoundError: an endpoint is not a live entity of this organization
    """
    _validate_edge_fields(smart_code, relationship_type, relationship_data, is_active, from_entity_id, to_entity_id)
    _reject_membership_type(relationship_type)
    _check_endpoints(ctx, from_entity_id, to_entity_id)
    return _new_edge(ctx, from_entity_id, to_entity_id, relationship_type, smart_code, relationship_data, is_active)


def build_membership_edge(
    ctx: TenantContext,
    actor_id: str,
    to_entity_id: str,
    relationship_type: str,
    smart_code: str,
    relationship_data: dict | None = None,
) -> CoreRelationship:
    """
    Build a transient USER_MEMBER_OF_ORG or HAS_ROLE edge for a platform actor.

    SECURITY: No permission check here. Callers are membership_service
    operations, which gate on MANAGE_MEMBERS themselves.
    """
    if relationship_type not in MEMBERSHIP_RELATIONSHIP_TYPES:
        raise ValidationError(f"Not a membership relationship_type: {relationship_type!r}", field="relationship_type")
    _validate_edge_fields(smart_code, relationship_type, relationship_data, True, actor_id, to_entity_id)
    _check_membership_endpoints(ctx, actor_id, to_entity_id, relationship_type)
    return _new_edge(ctx, actor_id, to_entity_id, relationship_type, smart_code, relationship_data, True)


# =============================================================================
# OPERATIONS
# =============================================================================

@translates_store_errors
def create_relationship(
    ctx: TenantContext,
    from_entity_id: str,
    to_entity_id: str,
    relationship_type: str,
    smart_code: str,
    relationship_data: dict | None = None,
    is_active: bool = True,
) -> CoreRelationship:
    """
    Create a directed edge from_entity_id -> to_entity_id.

    Raises:
        ValidationError: bad smart code, type or data
        NotFoundError: an endpoint is not a live entity of this organization
    """
    rel = build_relationship(
        ctx, from_entity_id, to_entity_id, relationship_type, smart_code, relationship_data, is_active
    )
    db.session.add(rel)
    db.session.commit()
    return rel


@translates_store_errors
def create_bidirectional_relationship(
    ctx: TenantContext,
    entity_a_id: str,
    entity_b_id: str,
    relationship_type: str,
    smart_code: str,
    relationship_data: dict | None = None,
) -> tuple[CoreRelationship, CoreRelationship]:
    """
    Create a -> b and b -> a together (both or neither).

    relationship_data of each edge is tagged with relationship_direction
    "forward" or "reverse".
    """
    data = dict(relationship_data or {})
    forward = build_relationship(
        ctx, entity_a_id, entity_b_id, relationship_type, smart_code,
        {**data, "relationship_direction": "forward"}, True,
    )
    reverse = build_relationship(
        ctx, entity_b_id, entity_a_id, relationship_type, smart_code,
        {**data, "relationship_direction": "reverse"}, True,
    )
    db.session.add_all([forward, reverse])
    db.session.commit()
    return forward, reverse


@translates_store_errors
def bulk_create_relationships(ctx: TenantContext, items: list[dict]) -> list[RelationshipResult]:
    """
    Best-effort bulk create. Each item takes the keyword arguments of
    create_relationship. Returns one RelationshipResult per item, in order.
    """
    if not isinstance(items, (list, tuple)):
        raise ValidationError("items must be a list", field="items")
    require_context(ctx)

    results: list[RelationshipResult] = []
    for index, item in enumerate(items):
        # Endpoint lookups happen before the savepoint opens
        try:
            if not isinstance(item, dict):
                raise ValidationError(f"items[{index}] must be an object", field=f"items[{index}]")
            rel = build_relationship(
                ctx,
                item.get("from_entity_id"),
                item.get("to_entity_id"),
                item.get("relationship_type"),
                item.get("smart_code"),
                item.get("relationship_data"),
                item.get("is_active", True),
            )
        except CoreError as exc:
            results.append(RelationshipResult(index=index, ok=False, error=exc))
            continue

        nested = db.session.begin_nested()
        try:
            db.session.add(rel)
            db.session.flush()
            nested.commit()
            results.append(RelationshipResult(index=index, ok=True, relationship=rel))
        except IntegrityError as exc:
            nested.rollback()
            results.append(RelationshipResult(index=index, ok=False, error=ConflictError(f"Conflicting write: {exc.orig}")))

    db.session.commit()
    return results


@translates_store_errors
def find_by_endpoint(
    ctx: TenantContext,
    entity_id: str,
    direction: str = "outgoing",
    relationship_type: str | None = None,
    include_inactive: bool = False,
) -> list[CoreRelationship]:
    """
    Edges touching entity_id.

    outgoing: entity_id is from_entity_id; incoming: entity_id is
    to_entity_id; both: either. Inactive edges only with include_inactive.
    """
    if direction not in DIRECTIONS:
        raise ValidationError(f"Invalid direction: {direction!r}", field="direction", expected="|".join(DIRECTIONS))

    q = scoped_query(CoreRelationship, ctx)
    if direction == "outgoing":
        q = q.filter(CoreRelationship.from_entity_id == entity_id)
    elif direction == "incoming":
        q = q.filter(CoreRelationship.to_entity_id == entity_id)
    else:
        q = q.filter(db.or_(
            CoreRelationship.from_entity_id == entity_id,
            CoreRelationship.to_entity_id == entity_id,
        ))
    if relationship_type is not None:
        q = q.filter(CoreRelationship.relationship_type == relationship_type)
    if not include_inactive:
        q = q.filter(CoreRelationship.is_active.is_(True))

    rows = q.order_by(CoreRelationship.created_at.asc(), CoreRelationship.id.asc()).all()
    for row in rows:
        assert_row_scoped(row, ctx)
    return rows


@translates_store_errors
def deactivate_relationship(ctx: TenantContext, relationship_id: str) -> CoreRelationship:
    """
    Set is_active=False. Already inactive edges are returned unchanged.

    Raises:
        ValidationError: a membership edge (use membership_service.revoke_membership)
    """
    rel = require_row_in_org(CoreRelationship, relationship_id, ctx, label="Relationship")
    _reject_membership_type(rel.relationship_type)
    if rel.is_active:
        rel.is_active = False
        db.session.commit()
    return rel


@translates_store_errors
def reactivate_relationship(ctx: TenantContext, relationship_id: str) -> CoreRelationship:
    """
    Set is_active=True after re-checking both endpoints.

    Raises:
        NotFoundError: the edge, or one of its endpoints, no longer resolves
        ValidationError: a membership edge (grant the membership again instead)
    """
    rel = require_row_in_org(CoreRelationship, relationship_id, ctx, label="Relationship")
    _reject_membership_type(rel.relationship_type)
    if not rel.is_active:
        _check_endpoints(ctx, rel.from_entity_id, rel.to_entity_id)
        rel.is_active = True
        db.session.commit()
    return rel


@translates_store_errors
def find_path(
    ctx: TenantContext,
    start_id: str,
    target_id: str,
    relationship_type: str | None = None,
    max_depth: int = 5,
) -> list[CoreRelationship] | None:
    """
    Shortest chain of active outgoing edges from start_id to target_id.

    Returns:
        The edges in order ([] when start_id == target_id), or None if no
        path of at most max_depth edges exists.
    """
    if isinstance(max_depth, bool) or not isinstance(max_depth, int) or max_depth < 1:
        raise ValidationError("max_depth must be a positive integer", field="max_depth")
    require_context(ctx)
    if start_id == target_id:
        return []

    came_from: dict[str, CoreRelationship] = {}
    frontier = deque([(start_id, 0)])
    seen = {start_id}

    while frontier:
        node, depth = frontier.popleft()
        if depth >= max_depth:
            continue
        q = scoped_query(CoreRelationship, ctx).filter(
            CoreRelationship.from_entity_id == node,
            CoreRelationship.is_active.is_(True),
        )
        if relationship_type is not None:
            q = q.filter(CoreRelationship.relationship_type == relationship_type)

        for edge in q.order_by(CoreRelationship.created_at.asc(), CoreRelationship.id.asc()):
            nxt = edge.to_entity_id
            if nxt in seen:
                continue
            seen.add(nxt)
            came_from[nxt] = edge
            if nxt == target_id:
                path = []
                while nxt != start_id:
                    step = came_from[nxt]
                    path.append(step)
                    nxt = step.from_entity_id
                path.reverse()
                return path
            frontier.append((nxt, depth + 1))

    return None
