from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from tenantcore.time_utils import as_naive_utc, parse_iso_datetime

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ConflictError, ValidationError  # noqa: F401  (re-exported)


# Largest amount accepted on ledger columns (Numeric(18, 4))
MAX_AMOUNT = Decimal("99999999999999.9999")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what callers are allowed to set (security boundary)
    - required_on_create: fields required on create
    - aliases: payload key -> mapped column key (e.g. "metadata" -> "metadata_")
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)
    aliases: dict[str, str] = field(default_factory=dict)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.column_attrs}


def _coerce_value(name: str, col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers (line numbers): int, or a string of plain digits; never bool or float
    if isinstance(coltype, Integer):
        if isinstance(value, str) and re.fullmatch(r"\s*-?\d+\s*", value):
            return int(value)
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValidationError(f"{name} must be an integer", field=name, expected="integer")
        return value

    # Amounts - Decimal, int, float or numeric string; never bool
    if isinstance(coltype, Numeric):
        if isinstance(value, bool):
            raise ValidationError(f"{name} must be a number", field=name)
        try:
            amount = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
        except InvalidOperation:
            raise ValidationError(f"{name} must be a number", field=name)
        if not amount.is_finite():
            raise ValidationError(f"{name} must be a finite number", field=name)
        if abs(amount) > MAX_AMOUNT:
            raise ValidationError(f"{name} cannot exceed {MAX_AMOUNT}", field=name)
        return amount

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{name} must be a boolean", field=name)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return as_naive_utc(value)
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{name} must be an ISO-8601 datetime", field=name)
            if dt is None:
                raise ValidationError(f"{name} must be an ISO-8601 datetime", field=name)
            return dt
        raise ValidationError(f"{name} must be a datetime", field=name)

    # Structured blobs (metadata, line_data, relationship_data, settings)
    if isinstance(coltype, JSON):
        if not isinstance(value, dict):
            raise ValidationError(f"{name} must be an object", field=name)
        return dict(value)

    # Strings / Text: no trimming, codes are stored exactly as given
    if isinstance(coltype, (String, Text)):
        if not isinstance(value, str):
            raise ValidationError(f"{name} must be a string", field=name)
        return value

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming data against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict keyed by mapped attribute name.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid payload: expected an object")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) is None)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", field=missing[0])

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", field=k)
        if policy.aliases.get(k, k) not in cols:
            raise ValidationError(f"Unknown field: {k}", field=k)

    patch: dict = {}

    for k, raw in payload.items():
        attr = policy.aliases.get(k, k)
        col = cols[attr].columns[0]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", field=k)
            patch[attr] = None
            continue

        val = _coerce_value(k, col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val.strip() == "":
                raise ValidationError(f"{k} cannot be blank", field=k)

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", field=k)

        patch[attr] = val

    return patch


def require_text(value: Any, name: str, max_length: int) -> str:
    """Non-blank string no longer than max_length; returned unchanged."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required", field=name)
    if len(value) > max_length:
        raise ValidationError(f"{name} exceeds max length {max_length}", field=name)
    return value
