# Overview: Service-layer operations for the transaction ledger; headers, lines and status transitions.

"""
Transaction Ledger Invariants (authoritative)

- Header first, lines afterwards; lines carry the header's organization_id.
- line_number is 1-based and unique per transaction. Unnumbered lines are
  numbered from max(existing) + 1, in the order given.
- total_amount is never recomputed from lines. Reconciliation is a domain
  job (see validate_line_total for an opt-in check).
- No deletes. Cancelling or voiding is a transaction_status transition.
- Validators run against the complete, numbered line set before anything
  is staged; a failing validator aborts the whole call.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, CoreError, DuplicateLineNumberError, ValidationError
from ..extensions import db
from ..models import CoreEntity, UniversalTransaction, UniversalTransactionLine, generate_id
from ..time_utils import utcnow
from ..validation import ModelValidationPolicy, require_text, validate_payload
from .concurrency import lock_for_update, translates_store_errors
from .pagination import paginate
from .smart_code_service import build_smart_code, validate_smart_code
from .tenant_service import (
    TenantContext,
    assert_row_scoped,
    require_context,
    require_row_in_org,
    scoped_query,
    stamp_write,
)

Validator = Callable[[UniversalTransaction, list], None]

TRANSACTION_POLICY = ModelValidationPolicy(
    writable_fields={
        "organization_id", "transaction_type", "transaction_code", "smart_code",
        "transaction_date", "source_entity_id", "target_entity_id", "total_amount",
        "transaction_status", "metadata",
    },
    required_on_create={"transaction_type", "smart_code"},
    aliases={"metadata": "metadata_"},
)

LINE_POLICY = ModelValidationPolicy(
    writable_fields={
        "organization_id", "line_number", "line_entity_id", "quantity",
        "unit_amount", "unit_price", "line_amount", "smart_code", "line_data",
    },
    required_on_create={"smart_code"},
    aliases={"unit_price": "unit_amount"},
)

AMOUNT_QUANTUM = Decimal("0.0001")
BALANCE_TOLERANCE = Decimal("0.01")

ENTITY_STATUS_CHANGE_TYPE = "entity_status_change"


@dataclass
class TransactionResult:
    """Outcome of one item of a bulk create."""
    index: int
    ok: bool
    transaction: UniversalTransaction | None = None
    error: CoreError | None = None

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "ok": self.ok,
            "transaction": self.transaction.to_dict() if self.transaction is not None else None,
            "error": self.error.to_dict() if self.error is not None else None,
        }


# =============================================================================
# LINE PREPARATION
# =============================================================================

def _prepare_lines(ctx: TenantContext, lines) -> list[dict]:
    """
    Validate raw line dicts and resolve their entities.

    Returns cleaned patches keyed by column attribute. line_number is kept
    only when the caller supplied one; numbering happens later, under lock.
    """
    if lines is None:
        return []
    if not isinstance(lines, (list, tuple)):
        raise ValidationError("lines must be a list", field="lines")

    prepared: list[dict] = []
    for index, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"lines[{index}] must be an object", field=f"lines[{index}]")
        if "unit_price" in raw and "unit_amount" in raw:
            raise ValidationError(
                f"lines[{index}] gives both unit_price and unit_amount",
                field=f"lines[{index}].unit_amount",
            )
        validate_smart_code(raw.get("smart_code"), field=f"lines[{index}].smart_code")

        patch = validate_payload(
            model=UniversalTransactionLine,
            payload=stamp_write(ctx, raw),
            policy=LINE_POLICY,
            partial=False,
        )

        number = patch.get("line_number")
        if number is not None and number < 1:
            raise ValidationError(
                f"lines[{index}].line_number must be >= 1",
                field=f"lines[{index}].line_number",
            )

        if patch.get("line_entity_id") is not None:
            require_row_in_org(CoreEntity, patch["line_entity_id"], ctx, label="Line entity")

        if patch.get("line_amount") is None:
            quantity, unit_amount = patch.get("quantity"), patch.get("unit_amount")
            if quantity is not None and unit_amount is not None:
                patch["line_amount"] = (quantity * unit_amount).quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)
            else:
                patch["line_amount"] = Decimal("0")

        if patch.get("line_data") is None:
            patch["line_data"] = {}

        prepared.append(patch)
    return prepared


def _number_lines(patches: list[dict], taken: set[int]) -> None:
    """Assign line numbers in place. Explicit numbers must not collide."""
    taken = set(taken)
    for patch in patches:
        number = patch.get("line_number")
        if number is None:
            number = max(taken, default=0) + 1
        elif number in taken:
            raise DuplicateLineNumberError(
                f"line_number {number} already exists on this transaction",
                field="line_number",
            )
        patch["line_number"] = number
        taken.add(number)


def _run_validators(validators: Iterable[Validator], txn: UniversalTransaction, lines: list) -> None:
    for validator in validators or ():
        validator(txn, lines)


# =============================================================================
# LEDGER OPERATIONS
# =============================================================================

def _build_transaction(
    ctx: TenantContext,
    header: dict,
    lines: list[dict] | None,
    validators: Iterable[Validator],
) -> tuple[UniversalTransaction, list[UniversalTransactionLine]]:
    """Validate a header and its lines and build transient rows. Nothing is staged."""
    if not isinstance(header, dict):
        raise ValidationError("Invalid header: expected an object", field="header")
    validate_smart_code(header.get("smart_code"))

    patch = validate_payload(
        model=UniversalTransaction,
        payload=stamp_write(ctx, header),
        policy=TRANSACTION_POLICY,
        partial=False,
    )
    for key in ("source_entity_id", "target_entity_id"):
        if patch.get(key) is not None:
            require_row_in_org(CoreEntity, patch[key], ctx, label="Entity")

    patch.setdefault("transaction_date", None)
    if patch["transaction_date"] is None:
        patch["transaction_date"] = utcnow()
    if patch.get("total_amount") is None:
        patch["total_amount"] = Decimal("0")
    if patch.get("transaction_status") is None:
        patch["transaction_status"] = "pending"
    if patch.get("metadata_") is None:
        patch["metadata_"] = {}

    line_patches = _prepare_lines(ctx, lines)
    _number_lines(line_patches, taken=set())

    txn = UniversalTransaction(id=generate_id(), **patch)
    line_rows = [
        UniversalTransactionLine(transaction_id=txn.id, **line_patch)
        for line_patch in line_patches
    ]
    _run_validators(validators, txn, line_rows)
    return txn, line_rows


@translates_store_errors
def create_transaction(
    ctx: TenantContext,
    header: dict,
    lines: list[dict] | None = None,
    validators: Iterable[Validator] = (),
) -> UniversalTransaction:
    """
    Create a transaction header, optionally with its first lines.

    Header keys: transaction_type, smart_code (required); transaction_code,
    transaction_date, source_entity_id, target_entity_id, total_amount,
    transaction_status, metadata (optional).

    Raises:
        ValidationError: malformed smart code, header or line
        TenantIsolationError: header or a line names another organization
        NotFoundError: source/target/line entity not in this organization
        DuplicateLineNumberError: two lines share a line_number
    """
    txn, line_rows = _build_transaction(ctx, header, lines, validators)

    db.session.add(txn)
    db.session.add_all(line_rows)
    db.session.commit()

    current_app.logger.info(
        "Created transaction %s type=%s lines=%d org=%s",
        txn.id, txn.transaction_type, len(line_rows), txn.organization_id,
    )
    return txn


@translates_store_errors
def bulk_create_transactions(
    ctx: TenantContext,
    items: list[dict],
    validators: Iterable[Validator] = (),
) -> list[TransactionResult]:
    """
    Best-effort bulk create. Each item is {"header": {...}, "lines": [...]};
    validators apply to every item.

    Each transaction is written in its own savepoint with its lines, so a
    failing item never leaves a header without its lines and never undoes
    the others.

    Returns:
        One TransactionResult per item, in input order.
    """
    if not isinstance(items, (list, tuple)):
        raise ValidationError("items must be a list", field="items")
    require_context(ctx)
    validators = tuple(validators or ())

    results: list[TransactionResult] = []
    for index, item in enumerate(items):
        # Entity lookups happen before the savepoint opens
        try:
            if not isinstance(item, dict):
                raise ValidationError(f"items[{index}] must be an object", field=f"items[{index}]")
            txn, line_rows = _build_transaction(ctx, item.get("header"), item.get("lines"), validators)
        except CoreError as exc:
            results.append(TransactionResult(index=index, ok=False, error=exc))
            continue

        nested = db.session.begin_nested()
        try:
            db.session.add(txn)
            db.session.add_all(line_rows)
            db.session.flush()
            nested.commit()
            results.append(TransactionResult(index=index, ok=True, transaction=txn))
        except IntegrityError as exc:
            nested.rollback()
            results.append(TransactionResult(index=index, ok=False, error=ConflictError(f"Conflicting write: {exc.orig}")))

    db.session.commit()
    created = sum(1 for r in results if r.ok)
    current_app.logger.info("Bulk created %d of %d transactions org=%s", created, len(results), ctx.organization_id)
    return results


@translates_store_errors
def append_lines(
    ctx: TenantContext,
    transaction_id: str,
    lines: list[dict],
    validators: Iterable[Validator] = (),
) -> list[UniversalTransactionLine]:
    """
    Append lines to an existing transaction.

    Numbering continues from the highest existing line_number. The header row
    is locked while numbers are assigned (ignored on SQLite).

    Raises:
        NotFoundError, ValidationError, TenantIsolationError,
        DuplicateLineNumberError
    """
    txn = require_row_in_org(UniversalTransaction, transaction_id, ctx, label="Transaction")
    line_patches = _prepare_lines(ctx, lines)
    if not line_patches:
        raise ValidationError("lines must not be empty", field="lines")

    txn = lock_for_update(
        scoped_query(UniversalTransaction, ctx).filter(UniversalTransaction.id == txn.id)
    ).one()
    existing = (
        db.session.query(UniversalTransactionLine)
        .filter(UniversalTransactionLine.transaction_id == txn.id)
        .order_by(UniversalTransactionLine.line_number.asc())
        .all()
    )
    for line in existing:
        assert_row_scoped(line, ctx)

    _number_lines(line_patches, taken={line.line_number for line in existing})

    new_rows = [
        UniversalTransactionLine(transaction_id=txn.id, **line_patch)
        for line_patch in line_patches
    ]
    _run_validators(validators, txn, existing + new_rows)

    db.session.add_all(new_rows)
    db.session.commit()
    return new_rows


@translates_store_errors
def update_status(
    ctx: TenantContext,
    transaction_id: str,
    new_status: str,
    metadata_patch: dict | None = None,
    expected_status: str | None = None,
) -> UniversalTransaction:
    """
    Pure status transition with a shallow metadata merge.

    total_amount and lines are left untouched. With expected_status, the
    transition only applies if the current status still matches.

    Raises:
        ConflictError: current status differs from expected_status
    """
    require_text(new_status, "transaction_status", max_length=50)
    if metadata_patch is not None and not isinstance(metadata_patch, dict):
        raise ValidationError("metadata_patch must be an object", field="metadata")

    txn = require_row_in_org(UniversalTransaction, transaction_id, ctx, label="Transaction")
    txn = lock_for_update(
        scoped_query(UniversalTransaction, ctx).filter(UniversalTransaction.id == txn.id)
    ).one()

    if expected_status is not None and txn.transaction_status != expected_status:
        raise ConflictError(
            f"Transaction status is {txn.transaction_status!r}, expected {expected_status!r}"
        )

    previous = txn.transaction_status
    txn.transaction_status = new_status
    if metadata_patch:
        merged = dict(txn.metadata_ or {})
        merged.update(metadata_patch)
        txn.metadata_ = merged

    db.session.commit()
    current_app.logger.info("Transaction %s status %s -> %s", txn.id, previous, new_status)
    return txn


@translates_store_errors
def read_with_lines(ctx: TenantContext, transaction_id: str) -> dict:
    """Header dict with its lines ordered by line_number under "lines"."""
    txn = require_row_in_org(UniversalTransaction, transaction_id, ctx, label="Transaction")
    for line in txn.lines:
        assert_row_scoped(line, ctx)
    return txn.to_dict(include_lines=True)


@translates_store_errors
def list_transactions(
    ctx: TenantContext,
    transaction_type: str | None = None,
    transaction_status: str | None = None,
    entity_id: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Tenant-scoped transaction listing, newest first.

    entity_id selects the entity's history: transactions where it is the
    source, the target, or the entity of any line.
    """
    q = scoped_query(UniversalTransaction, ctx)
    if transaction_type is not None:
        q = q.filter(UniversalTransaction.transaction_type == transaction_type)
    if transaction_status is not None:
        q = q.filter(UniversalTransaction.transaction_status == transaction_status)
    if entity_id is not None:
        line_txn_ids = db.session.query(UniversalTransactionLine.transaction_id).filter(
            UniversalTransactionLine.organization_id == ctx.organization_id,
            UniversalTransactionLine.line_entity_id == entity_id,
        )
        q = q.filter(db.or_(
            UniversalTransaction.source_entity_id == entity_id,
            UniversalTransaction.target_entity_id == entity_id,
            UniversalTransaction.id.in_(line_txn_ids),
        ))
    q = q.order_by(UniversalTransaction.transaction_date.desc(), UniversalTransaction.id.asc())
    return paginate(q, page=page, per_page=per_page)


def stage_entity_status_change(ctx: TenantContext, entity: CoreEntity, old_status: str, new_status: str) -> UniversalTransaction:
    """
    Stage (no commit) an "entity_status_change" transaction for an entity.

    Written inside the caller's DB transaction, so the event and the status
    change commit or roll back together.
    """
    require_context(ctx)
    namespace = current_app.config.get("SMART_CODE_NAMESPACE", "HERA")
    txn = UniversalTransaction(
        id=generate_id(),
        organization_id=ctx.organization_id,
        transaction_type=ENTITY_STATUS_CHANGE_TYPE,
        smart_code=build_smart_code(namespace, "UNIVERSAL", "ENTITY", "STATUS", "CHANGE"),
        transaction_date=utcnow(),
        source_entity_id=entity.id,
        total_amount=Decimal("0"),
        transaction_status="completed",
        metadata_={
            "entity_type": entity.entity_type,
            "old_status": old_status,
            "new_status": new_status,
            "actor_id": ctx.actor_id,
        },
    )
    db.session.add(txn)
    return txn


# =============================================================================
# DOMAIN VALIDATORS
# =============================================================================

def validate_gl_balance(txn: UniversalTransaction, lines: list) -> None:
    """
    GL lines (smart code contains ".GL.") must carry line_data.side "DR" or
    "CR" and debits must equal credits per currency within 0.01.

    Currency comes from line_data.currency, then the header's
    metadata.currency. Non-GL lines are ignored.
    """
    header_currency = (txn.metadata_ or {}).get("currency")
    balances: dict = {}
    for line in lines:
        if ".GL." not in (line.smart_code or ""):
            continue
        data = line.line_data or {}
        side = data.get("side")
        side = side.upper() if isinstance(side, str) else side
        if side not in ("DR", "CR"):
            raise ValidationError(
                f"GL line {line.line_number} needs line_data.side of DR or CR",
                field="line_data.side",
                expected="DR|CR",
            )
        currency = data.get("currency") or header_currency
        amount = Decimal(line.line_amount or 0)
        balances[currency] = balances.get(currency, Decimal("0")) + (amount if side == "DR" else -amount)

    for currency, balance in balances.items():
        if abs(balance) > BALANCE_TOLERANCE:
            label = currency or "unspecified currency"
            raise ValidationError(
                f"GL lines do not balance for {label}: debits minus credits is {balance}",
                field="lines",
            )


def validate_line_total(txn: UniversalTransaction, lines: list) -> None:
    """Header total_amount must equal the sum of line_amount within 0.01."""
    line_sum = sum((Decimal(line.line_amount or 0) for line in lines), Decimal("0"))
    total = Decimal(txn.total_amount or 0)
    if abs(total - line_sum) > BALANCE_TOLERANCE:
        raise ValidationError(
            f"total_amount {total} does not match line total {line_sum}",
            field="total_amount",
        )
