# backend/tenantcore/services/entity_service.py
"""
Entity Store with Multi-Tenant Support

MULTI-TENANT: All entity operations are tenant-scoped.
- Every call takes a TenantContext first; reads use scoped_query and every
  loaded row is re-checked against the context (defense in depth)
- entity_code is unique within (organization_id, entity_type)
- parent_entity_id must resolve inside the same organization

DELETE SEMANTICS: Soft delete only. delete_entity flips status to "deleted",
recover_entity reverses it. Rows are never removed.

STATUS EVENTS: When ENTITY_STATUS_EVENTS is on, every status change is
recorded as an "entity_status_change" transaction in the same DB transaction.
"""
from __future__ import annotations

from flask import current_app

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import CoreEntity, ENTITY_STATUS_DELETED, MEMBERSHIP_RELATIONSHIP_TYPES
from ..validation import ModelValidationPolicy, validate_payload
from .concurrency import translates_store_errors
from .pagination import paginate
from .smart_code_service import validate_smart_code
from .tenant_service import (
    TenantContext,
    assert_row_scoped,
    require_context,
    require_row_in_org,
    scoped_query,
    stamp_write,
)
from . import transaction_service

ENTITY_POLICY = ModelValidationPolicy(
    writable_fields={
        "organization_id", "entity_type", "entity_name", "entity_code",
        "status", "smart_code", "metadata", "parent_entity_id",
    },
    required_on_create={"entity_type", "entity_name", "smart_code"},
    aliases={"metadata": "metadata_"},
)

ENTITY_MUTABLE_FIELDS = {"entity_name", "entity_code", "status", "smart_code", "metadata", "parent_entity_id"}


def load_entity(ctx: TenantContext, entity_id: str, include_deleted: bool = False) -> CoreEntity:
    """Resolve an entity inside another service call (no session rollback on failure)."""
    entity = require_row_in_org(CoreEntity, entity_id, ctx, label="Entity")
    if entity.is_deleted and not include_deleted:
        raise NotFoundError("Entity not found")
    return entity


def _check_code_available(org_id: str, entity_type: str, entity_code: str | None, exclude_id: str | None = None) -> None:
    if entity_code is None:
        return
    q = db.session.query(CoreEntity.id).filter(
        CoreEntity.organization_id == org_id,
        CoreEntity.entity_type == entity_type,
        CoreEntity.entity_code == entity_code,
    )
    if exclude_id is not None:
        q = q.filter(CoreEntity.id != exclude_id)
    if q.first() is not None:
        raise ConflictError(f"entity_code '{entity_code}' already exists for entity_type '{entity_type}'")


def _check_parent(ctx: TenantContext, parent_entity_id: str | None, entity_id: str | None = None) -> None:
    if parent_entity_id is None:
        return
    if entity_id is not None and parent_entity_id == entity_id:
        raise ValidationError("An entity cannot be its own parent", field="parent_entity_id")
    load_entity(ctx, parent_entity_id)


@translates_store_errors
def create_entity(
    ctx: TenantContext,
    entity_type: str,
    entity_name: str,
    smart_code: str,
    *,
    entity_code: str | None = None,
    status: str = "active",
    metadata: dict | None = None,
    parent_entity_id: str | None = None,
    organization_id: str | None = None,
    dynamic: dict | None = None,
    relationships: list[dict] | None = None,
) -> CoreEntity:
    """
    Create an entity in the context's organization.

    Smart code is validated first; any failure aborts before anything is staged.

    dynamic (field_name -> field item, see dynamic_data_service.stage_fields)
    and relationships (items with to_entity_id, relationship_type, smart_code
    and optional relationship_data; from is the new entity) are written in
    the same DB transaction: the entity, its fields and its edges commit
    together or not at all.

    Raises:
        ValidationError: malformed smart code or payload
        TenantIsolationError: organization_id given and not the context's
        NotFoundError: parent_entity_id, or a relationship target, not in this organization
        ConflictError: entity_code already used for this entity_type
    """
    validate_smart_code(smart_code)
    if relationships is not None and not isinstance(relationships, (list, tuple)):
        raise ValidationError("relationships must be a list", field="relationships")
    payload = stamp_write(ctx, {
        "organization_id": organization_id,
        "entity_type": entity_type,
        "entity_name": entity_name,
        "entity_code": entity_code,
        "status": status,
        "smart_code": smart_code,
        "metadata": metadata if metadata is not None else {},
        "parent_entity_id": parent_entity_id,
    })
    patch = validate_payload(model=CoreEntity, payload=payload, policy=ENTITY_POLICY, partial=False)
    if patch["status"] == ENTITY_STATUS_DELETED:
        raise ValidationError("Entities cannot be created in the deleted state", field="status")

    _check_parent(ctx, patch.get("parent_entity_id"))
    _check_code_available(patch["organization_id"], patch["entity_type"], patch.get("entity_code"))
    # Cross-tenant lookups log (and commit) a security event, so resolve targets before staging
    for index, item in enumerate(relationships or ()):
        if not isinstance(item, dict) or not item.get("to_entity_id"):
            raise ValidationError(f"relationships[{index}] needs a to_entity_id", field=f"relationships[{index}]")
        if item.get("relationship_type") in MEMBERSHIP_RELATIONSHIP_TYPES:
            raise ValidationError(
                f"relationships[{index}] cannot be a membership edge", field=f"relationships[{index}].relationship_type"
            )
        load_entity(ctx, item["to_entity_id"])

    entity = CoreEntity(**patch)
    db.session.add(entity)

    field_count = edge_count = 0
    if dynamic or relationships:
        # Local imports: both services import this module
        from .dynamic_data_service import stage_fields
        from .relationship_service import build_relationship

        db.session.flush()
        if dynamic:
            field_count = len(stage_fields(entity, dynamic))
        for item in relationships or ():
            db.session.add(build_relationship(
                ctx,
                entity.id,
                item.get("to_entity_id"),
                item.get("relationship_type"),
                item.get("smart_code"),
                item.get("relationship_data"),
                True,
            ))
            edge_count += 1

    db.session.commit()

    current_app.logger.info(
        "Created entity %s type=%s org=%s fields=%d relationships=%d",
        entity.id, entity.entity_type, entity.organization_id, field_count, edge_count,
    )
    return entity


@translates_store_errors
def read_entity(
    ctx: TenantContext,
    entity_id: str | None = None,
    *,
    entity_type: str | None = None,
    entity_code: str | None = None,
    include_deleted: bool = False,
) -> CoreEntity:
    """
    Read one entity by id, or by (entity_type, entity_code).

    Raises:
        NotFoundError: absent, soft-deleted (unless include_deleted), or in
        another organization; the three are indistinguishable
    """
    require_context(ctx)
    if entity_id is not None:
        return load_entity(ctx, entity_id, include_deleted=include_deleted)

    if not entity_type or entity_code is None:
        raise ValidationError("read_entity needs entity_id, or entity_type with entity_code", field="entity_id")

    q = scoped_query(CoreEntity, ctx).filter(
        CoreEntity.entity_type == entity_type,
        CoreEntity.entity_code == entity_code,
    )
    if not include_deleted:
        q = q.filter(CoreEntity.status != ENTITY_STATUS_DELETED)
    entity = q.first()
    if entity is None:
        raise NotFoundError("Entity not found")
    assert_row_scoped(entity, ctx)
    return entity


@translates_store_errors
def list_entities(
    ctx: TenantContext,
    entity_type: str | None = None,
    *,
    status: str | None = None,
    smart_code: str | None = None,
    parent_entity_id: str | None = None,
    search: str | None = None,
    include_deleted: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Tenant-scoped entity listing with optional filters and pagination.

    Args:
        entity_type: logical collection (e.g. "customer"); None lists all types
        status: exact status filter
        smart_code: exact smart code filter
        parent_entity_id: children of one entity
        search: case-insensitive substring of entity_name or entity_code
        include_deleted: include soft-deleted rows
        page/per_page: see pagination.paginate

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    q = scoped_query(CoreEntity, ctx)

    if entity_type is not None:
        q = q.filter(CoreEntity.entity_type == entity_type)
    if status is not None:
        q = q.filter(CoreEntity.status == status)
    elif not include_deleted:
        q = q.filter(CoreEntity.status != ENTITY_STATUS_DELETED)
    if smart_code is not None:
        q = q.filter(CoreEntity.smart_code == smart_code)
    if parent_entity_id is not None:
        q = q.filter(CoreEntity.parent_entity_id == parent_entity_id)
    if search:
        pattern = f"%{search}%"
        q = q.filter(db.or_(CoreEntity.entity_name.ilike(pattern), CoreEntity.entity_code.ilike(pattern)))

    q = q.order_by(CoreEntity.entity_name.asc(), CoreEntity.id.asc())
    return paginate(q, page=page, per_page=per_page)


@translates_store_errors
def update_entity(ctx: TenantContext, entity_id: str, patch: dict) -> CoreEntity:
    """
    Update an entity.

    Allowed keys: entity_name, entity_code, status, smart_code, metadata,
    parent_entity_id. organization_id may be present only if it equals the
    context's. Soft-deleted entities must be recovered first.

    Raises:
        ValidationError, TenantIsolationError, NotFoundError, ConflictError
    """
    if not isinstance(patch, dict):
        raise ValidationError("Invalid payload: expected an object")
    if "smart_code" in patch:
        validate_smart_code(patch["smart_code"])

    stamped = stamp_write(ctx, patch)
    stamped.pop("organization_id")
    for key in stamped:
        if key not in ENTITY_MUTABLE_FIELDS:
            raise ValidationError(f"Field not allowed: {key}", field=key)
    clean = validate_payload(model=CoreEntity, payload=stamped, policy=ENTITY_POLICY, partial=True)

    if clean.get("status") == ENTITY_STATUS_DELETED:
        raise ValidationError("Use delete_entity to delete an entity", field="status")

    # Resolve everything before touching the row
    entity = load_entity(ctx, entity_id)
    if "parent_entity_id" in clean:
        _check_parent(ctx, clean["parent_entity_id"], entity_id=entity.id)
    if "entity_code" in clean and clean["entity_code"] != entity.entity_code:
        _check_code_available(entity.organization_id, entity.entity_type, clean["entity_code"], exclude_id=entity.id)

    previous_status = entity.status
    for k, v in clean.items():
        setattr(entity, k, v)

    if "status" in clean and clean["status"] != previous_status:
        _record_status_change(ctx, entity, previous_status, clean["status"])

    db.session.commit()
    return entity


@translates_store_errors
def delete_entity(ctx: TenantContext, entity_id: str) -> CoreEntity:
    """
    Soft-delete an entity (status -> "deleted").

    The row, its dynamic fields and its relationships stay in place so that
    recover_entity can bring it back.

    Raises:
        NotFoundError: absent, already deleted, or in another organization
    """
    entity = load_entity(ctx, entity_id)
    previous_status = entity.status
    entity.status = ENTITY_STATUS_DELETED
    _record_status_change(ctx, entity, previous_status, ENTITY_STATUS_DELETED)

    db.session.commit()
    current_app.logger.info("Soft-deleted entity %s org=%s", entity.id, entity.organization_id)
    return entity


@translates_store_errors
def recover_entity(ctx: TenantContext, entity_id: str, status: str = "active") -> CoreEntity:
    """
    Reverse a soft delete.

    Raises:
        NotFoundError: absent or in another organization
        ConflictError: the entity is not deleted
        ValidationError: status is blank or "deleted"
    """
    entity = load_entity(ctx, entity_id, include_deleted=True)
    stage_recovery(ctx, entity, status)

    db.session.commit()
    current_app.logger.info("Recovered entity %s org=%s", entity.id, entity.organization_id)
    return entity


def stage_recovery(ctx: TenantContext, entity: CoreEntity, status: str = "active") -> CoreEntity:
    """Stage (no commit) the recovery of a soft-deleted entity, with its status event."""
    if not isinstance(status, str) or not status.strip() or status == ENTITY_STATUS_DELETED:
        raise ValidationError("Recovered status must be a non-deleted status", field="status")
    if not entity.is_deleted:
        raise ConflictError("Entity is not deleted")

    entity.status = status
    _record_status_change(ctx, entity, ENTITY_STATUS_DELETED, status)
    return entity


def _record_status_change(ctx: TenantContext, entity: CoreEntity, old_status: str, new_status: str) -> None:
    if not current_app.config.get("ENTITY_STATUS_EVENTS", True):
        return
    transaction_service.stage_entity_status_change(ctx, entity, old_status, new_status)
