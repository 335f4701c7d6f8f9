# Overview: Service-layer operations for dynamic data; typed per-entity attributes with atomic upserts.

"""
Dynamic Data Engine with Multi-Tenant Support

MULTI-TENANT: Fields belong to an entity of the context's organization and
carry that organization_id themselves.

UPSERT SEMANTICS:
- One row per (organization_id, entity_id, field_name); last write wins
- The existence check and the write are one statement
  (INSERT ... ON CONFLICT DO UPDATE) on PostgreSQL and SQLite. Other
  dialects use a savepoint and re-read on IntegrityError
- Exactly one field_value_* slot is populated and it matches field_type.
  Values are type-checked, never coerced (ISO date strings excepted)

BATCH SEMANTICS: Best-effort. Each field is written in its own savepoint and
reported individually; one bad field never undoes the others.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, CoreError, NotFoundError, ValidationError
from ..extensions import db
from ..models import CoreDynamicData, CoreEntity, FIELD_VALUE_SLOTS, NUMBER_SCALE, generate_id
from ..time_utils import as_naive_utc, parse_iso_date, parse_iso_datetime, utcnow
from ..validation import MAX_AMOUNT, require_text
from .concurrency import lock_for_update, translates_store_errors
from .entity_service import read_entity
from .smart_code_service import validate_smart_code
from .tenant_service import TenantContext, assert_row_scoped, scoped_query

FIELD_NAME_MAX_LENGTH = 100

_UPSERT_KEY = ["organization_id", "entity_id", "field_name"]


@dataclass
class FieldResult:
    """Outcome of one item of a batch upsert."""
    field_name: str | None
    ok: bool
    field: CoreDynamicData | None = None
    error: CoreError | None = None

    def to_dict(self) -> dict:
        return {
            "field_name": self.field_name,
            "ok": self.ok,
            "field": self.field.to_dict() if self.field is not None else None,
            "error": self.error.to_dict() if self.error is not None else None,
        }


# =============================================================================
# VALUE CHECKS
# =============================================================================

def _check_field_type(field_type) -> str:
    if field_type not in FIELD_VALUE_SLOTS:
        raise ValidationError(
            f"Unsupported field_type: {field_type!r}",
            field="field_type",
            expected="|".join(FIELD_VALUE_SLOTS),
        )
    return field_type


def _check_value(field_name: str, field_type: str, value):
    """Return the value in the Python type stored in the slot for field_type."""
    if value is None:
        raise ValidationError(f"{field_name} value cannot be null", field=field_name)

    if field_type == "text":
        if not isinstance(value, str):
            raise ValidationError(f"{field_name} must be a string", field=field_name, expected="text")
        return value

    if field_type == "number":
        if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
            raise ValidationError(f"{field_name} must be a number", field=field_name, expected="number")
        try:
            number = value if isinstance(value, Decimal) else Decimal(str(value))
        except InvalidOperation:
            raise ValidationError(f"{field_name} must be a number", field=field_name, expected="number")
        if not number.is_finite():
            raise ValidationError(f"{field_name} must be a finite number", field=field_name, expected="number")
        if abs(number) > MAX_AMOUNT:
            raise ValidationError(f"{field_name} cannot exceed {MAX_AMOUNT}", field=field_name, expected="number")
        if number.normalize().as_tuple().exponent < -NUMBER_SCALE:
            raise ValidationError(
                f"{field_name} has more than {NUMBER_SCALE} decimal places",
                field=field_name,
                expected="number",
            )
        return number

    if field_type == "boolean":
        if not isinstance(value, bool):
            raise ValidationError(f"{field_name} must be a boolean", field=field_name, expected="boolean")
        return value

    if field_type == "date":
        # datetime is a date subclass; reject it so the time is never dropped silently
        if isinstance(value, datetime):
            raise ValidationError(f"{field_name} must be a date, not a datetime", field=field_name, expected="date")
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                parsed = parse_iso_date(value)
            except ValueError:
                parsed = None
            if parsed is not None:
                return parsed
        raise ValidationError(f"{field_name} must be an ISO-8601 date", field=field_name, expected="date")

    if field_type == "datetime":
        if isinstance(value, datetime):
            return as_naive_utc(value)
        if isinstance(value, str):
            try:
                parsed = parse_iso_datetime(value)
            except ValueError:
                parsed = None
            if parsed is not None:
                return parsed
        raise ValidationError(f"{field_name} must be an ISO-8601 datetime", field=field_name, expected="datetime")

    # json: any JSON-serializable value
    try:
        json.dumps(value, allow_nan=False)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be JSON-serializable", field=field_name, expected="json")
    return value


def _value_from_item(item: dict, field_name: str, field_type: str):
    """
    Pull the value out of a batch item: either "value", or exactly one
    explicit field_value_* slot matching field_type.
    """
    populated = [slot for slot in FIELD_VALUE_SLOTS.values() if item.get(slot) is not None]
    if "value" in item:
        if populated:
            raise ValidationError(
                f"{field_name} gives both value and {populated[0]}",
                field=populated[0],
            )
        return item["value"]

    if len(populated) != 1:
        raise ValidationError(
            f"{field_name} must populate exactly one value slot, got {len(populated)}",
            field=field_name,
            expected=FIELD_VALUE_SLOTS[field_type],
        )
    slot = populated[0]
    if slot != FIELD_VALUE_SLOTS[field_type]:
        raise ValidationError(
            f"{field_name} populates {slot} but field_type {field_type} uses {FIELD_VALUE_SLOTS[field_type]}",
            field=slot,
            expected=FIELD_VALUE_SLOTS[field_type],
        )
    return item[slot]


def _row_values(entity: CoreEntity, field_name: str, field_type: str, value, smart_code: str) -> dict:
    field_name = require_text(field_name, "field_name", FIELD_NAME_MAX_LENGTH)
    field_type = _check_field_type(field_type)
    validate_smart_code(smart_code)
    stored = _check_value(field_name, field_type, value)

    now = utcnow()
    values = {slot: None for slot in FIELD_VALUE_SLOTS.values()}
    values[FIELD_VALUE_SLOTS[field_type]] = stored
    values.update(
        id=generate_id(),
        organization_id=entity.organization_id,
        entity_id=entity.id,
        field_name=field_name,
        field_type=field_type,
        smart_code=smart_code,
        created_at=now,
        updated_at=now,
    )
    return values


# =============================================================================
# UPSERT
# =============================================================================

def _field_query(organization_id: str, entity_id: str, field_name: str):
    return db.session.query(CoreDynamicData).filter(
        CoreDynamicData.organization_id == organization_id,
        CoreDynamicData.entity_id == entity_id,
        CoreDynamicData.field_name == field_name,
    )


def _apply_values(row: CoreDynamicData, values: dict) -> None:
    for key in (*FIELD_VALUE_SLOTS.values(), "field_type", "smart_code"):
        setattr(row, key, values[key])
    row.updated_at = values["updated_at"]


def _write_row(values: dict) -> CoreDynamicData:
    """Insert or update one field row as a single logical operation. No commit."""
    dialect = db.session.get_bind().dialect.name
    q = _field_query(values["organization_id"], values["entity_id"], values["field_name"])

    if dialect in ("postgresql", "sqlite"):
        insert = postgresql_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert(CoreDynamicData.__table__).values(**values)
        overwrite = {slot: stmt.excluded[slot] for slot in FIELD_VALUE_SLOTS.values()}
        overwrite.update(
            field_type=stmt.excluded.field_type,
            smart_code=stmt.excluded.smart_code,
            updated_at=stmt.excluded.updated_at,
        )
        db.session.execute(stmt.on_conflict_do_update(index_elements=_UPSERT_KEY, set_=overwrite))
        return q.populate_existing().one()

    existing = lock_for_update(q).first()
    if existing is not None:
        _apply_values(existing, values)
        db.session.flush()
        return existing

    try:
        with db.session.begin_nested():
            row = CoreDynamicData(**values)
            db.session.add(row)
        return row
    except IntegrityError:
        # Lost the insert race: the other writer's row exists now
        existing = lock_for_update(q).one()
        _apply_values(existing, values)
        db.session.flush()
        return existing


def stage_fields(entity: CoreEntity, dynamic: dict) -> list[CoreDynamicData]:
    """
    Write several fields on one entity inside the caller's DB transaction.

    dynamic maps field_name -> {"field_type", "smart_code", and "value" or
    one explicit "field_value_<type>" slot}. All or nothing: the first bad
    field raises and the caller rolls back. No commit.
    """
    if not isinstance(dynamic, dict):
        raise ValidationError("dynamic must be an object keyed by field_name", field="dynamic")

    staged = []
    for name, item in dynamic.items():
        if not isinstance(item, dict):
            raise ValidationError(f"dynamic.{name} must be an object", field=f"dynamic.{name}")
        field_type = _check_field_type(item.get("field_type"))
        value = _value_from_item(item, name, field_type)
        staged.append(_write_row(_row_values(entity, name, field_type, value, item.get("smart_code"))))
    return staged


@translates_store_errors
def upsert_field(
    ctx: TenantContext,
    entity_id: str,
    field_name: str,
    field_type: str,
    value,
    smart_code: str,
) -> CoreDynamicData:
    """
    Create or replace one typed field on an entity.

    Calling it twice for the same (entity_id, field_name) updates the row in
    place; the second call may also change field_type.

    Raises:
        ValidationError: bad smart code, field name, field type or value
        NotFoundError: entity absent, deleted, or in another organization
    """
    entity = read_entity(ctx, entity_id)
    values = _row_values(entity, field_name, field_type, value, smart_code)

    row = _write_row(values)
    assert_row_scoped(row, ctx)
    db.session.commit()
    return row


@translates_store_errors
def batch_upsert(ctx: TenantContext, entity_id: str, fields: list[dict]) -> list[FieldResult]:
    """
    Upsert several fields on one entity, best-effort.

    Each item: {"field_name", "field_type", "smart_code", and "value" or one
    explicit "field_value_<type>" slot}.

    Returns:
        One FieldResult per item, in input order. Successful items are
        committed even when others fail.

    Raises:
        ValidationError: fields is not a list
        NotFoundError: the entity itself cannot be resolved
    """
    if not isinstance(fields, (list, tuple)):
        raise ValidationError("fields must be a list", field="fields")
    entity = read_entity(ctx, entity_id)

    results: list[FieldResult] = []
    for index, item in enumerate(fields):
        name = item.get("field_name") if isinstance(item, dict) else None
        nested = db.session.begin_nested()
        try:
            if not isinstance(item, dict):
                raise ValidationError(f"fields[{index}] must be an object", field=f"fields[{index}]")
            field_type = _check_field_type(item.get("field_type"))
            value = _value_from_item(item, name or f"fields[{index}]", field_type)
            row = _write_row(_row_values(entity, name, field_type, value, item.get("smart_code")))
            nested.commit()
            results.append(FieldResult(field_name=name, ok=True, field=row))
        except CoreError as exc:
            nested.rollback()
            results.append(FieldResult(field_name=name, ok=False, error=exc))
        except IntegrityError as exc:
            nested.rollback()
            results.append(FieldResult(field_name=name, ok=False, error=ConflictError(f"Conflicting write: {exc.orig}")))

    db.session.commit()
    failed = sum(1 for r in results if not r.ok)
    if failed:
        current_app.logger.info("Batch upsert on entity %s: %d of %d fields failed", entity.id, failed, len(results))
    return results


@translates_store_errors
def get_fields(ctx: TenantContext, entity_id: str) -> list[CoreDynamicData]:
    """All fields of an entity, ordered by field_name."""
    entity = read_entity(ctx, entity_id)
    rows = (
        scoped_query(CoreDynamicData, ctx)
        .filter(CoreDynamicData.entity_id == entity.id)
        .order_by(CoreDynamicData.field_name.asc())
        .all()
    )
    for row in rows:
        assert_row_scoped(row, ctx)
    return rows


@translates_store_errors
def get_field(ctx: TenantContext, entity_id: str, field_name: str) -> CoreDynamicData:
    entity = read_entity(ctx, entity_id)
    row = scoped_query(CoreDynamicData, ctx).filter(
        CoreDynamicData.entity_id == entity.id,
        CoreDynamicData.field_name == field_name,
    ).first()
    if row is None:
        raise NotFoundError("Field not found")
    assert_row_scoped(row, ctx)
    return row


@translates_store_errors
def delete_field(ctx: TenantContext, entity_id: str, field_name: str) -> None:
    """
    Remove one field row (hard delete; fields have no history of their own).

    Raises:
        NotFoundError: entity or field absent in this organization
    """
    row = get_field(ctx, entity_id, field_name)
    db.session.delete(row)
    db.session.commit()
