"""
Tenant Isolation Middleware: Context, Scoping and Write Stamping

WHY: Centralize tenant enforcement for every store component. Every read and
write against the tenant-scoped tables goes through these helpers, and the
stores re-check the rows they load (defense in depth).

SECURITY INVARIANTS:
1. Every operation receives an explicit TenantContext; there is no global
   "current organization" (no Flask g, no module state)
2. A context without an organization_id is a hard TenantIsolationError,
   never a silent empty result
3. Every read carries an organization_id equality filter
4. Every write is stamped with the context's organization_id; a payload
   naming a different organization is rejected
5. A record in another organization is reported exactly like a missing one
6. No bypass context exists; the platform organization is unreachable
   through ordinary contexts

USAGE:
    from tenantcore.services.tenant_service import TenantContext, scoped_query

    ctx = TenantContext(organization_id=org.id)
    customers = scoped_query(CoreEntity, ctx).filter_by(entity_type="customer").all()
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

from flask import current_app

from ..errors import NotFoundError, OperationCancelledError, TenantIsolationError
from ..extensions import db
from ..models import PLATFORM_ORGANIZATION_ID
from .permission_service import log_security_event


@dataclass(frozen=True)
class TenantContext:
    """
    Per-request authorization context.

    MULTI-TENANT: Built once per request (usually by membership_service) and
    passed explicitly as the first argument of every store operation.

    deadline is a time.monotonic() value; cancel() may be called from another
    thread. Either makes the next store call raise OperationCancelledError.
    """
    organization_id: str
    actor_id: str | None = None
    role: str | None = None
    permissions: frozenset[str] = frozenset()
    deadline: float | None = None
    _cancelled: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def has_permission(self, code: str) -> bool:
        return code in self.permissions

    def with_timeout(self, seconds: float) -> "TenantContext":
        """Copy of this context whose deadline is `seconds` from now (shares cancellation)."""
        return TenantContext(
            organization_id=self.organization_id,
            actor_id=self.actor_id,
            role=self.role,
            permissions=self.permissions,
            deadline=time.monotonic() + seconds,
            _cancelled=self._cancelled,
        )


def require_context(ctx: TenantContext | None) -> str:
    """
    Validate the context and return its organization_id.

    Raises:
        TenantIsolationError if ctx is missing, has no organization, or
        targets the platform organization
        OperationCancelledError if the caller cancelled or the deadline passed
    """
    if ctx is None or not isinstance(ctx, TenantContext):
        _log_missing_context("No tenant context supplied")
        raise TenantIsolationError("Tenant context not established")

    org_id = ctx.organization_id
    if not org_id or not isinstance(org_id, str):
        _log_missing_context("Tenant context has no organization_id", actor_id=ctx.actor_id)
        raise TenantIsolationError("Tenant context not established")

    if org_id == PLATFORM_ORGANIZATION_ID:
        _log_missing_context("Ordinary context targeted the platform organization", actor_id=ctx.actor_id)
        raise TenantIsolationError("Platform organization is not reachable from a tenant context")

    if ctx.cancelled:
        raise OperationCancelledError("Operation cancelled before reaching the backing store")

    return org_id


def scoped_query(model, ctx: TenantContext):
    """
    Base query with the tenant equality filter injected.

    Args:
        model: SQLAlchemy model class with an organization_id column
        ctx: Resolved tenant context

    Usage:
        rows = scoped_query(CoreRelationship, ctx).filter_by(is_active=True).all()
    """
    org_id = require_context(ctx)
    return db.session.query(model).filter(model.organization_id == org_id)


def stamp_write(ctx: TenantContext, payload: dict) -> dict:
    """
    Stamp organization_id onto a write payload, or validate the one supplied.

    Returns a new dict; the caller's payload is not mutated.

    Raises:
        TenantIsolationError if the payload names a different organization
    """
    org_id = require_context(ctx)
    supplied = payload.get("organization_id")
    if supplied is not None and supplied != org_id:
        _log_cross_tenant_attempt(
            f"Write payload organization_id {supplied} does not match context {org_id}",
            ctx=ctx,
            action="write",
        )
        raise TenantIsolationError("organization_id does not match the active tenant context")
    stamped = dict(payload)
    stamped["organization_id"] = org_id
    return stamped


def assert_row_scoped(row, ctx: TenantContext) -> None:
    """
    Defense in depth: re-check a loaded row against the context.

    Scoped queries already filter by organization; this guards code paths
    that loaded a row some other way.
    """
    if row is None:
        return
    if row.organization_id != ctx.organization_id:
        _log_cross_tenant_attempt(
            f"{row.__tablename__} {row.id} belongs to org {row.organization_id}, not {ctx.organization_id}",
            ctx=ctx,
            resource=f"{row.__tablename__}:{row.id}",
            action="load",
        )
        raise TenantIsolationError("Row does not belong to the active tenant context")


def require_row_in_org(model, row_id, ctx: TenantContext, label: str = "Record"):
    """
    Load a row by id within the context's organization.

    SECURITY: Core tenant isolation check. A row that exists in another
    organization raises the same NotFoundError, with the same message, as a
    row that does not exist. The cross-tenant case is logged.

    Raises:
        NotFoundError if absent or owned by a different organization
    """
    org_id = require_context(ctx)
    if not row_id:
        raise NotFoundError(f"{label} not found")

    row = db.session.query(model).filter(model.id == row_id, model.organization_id == org_id).first()
    if row is not None:
        assert_row_scoped(row, ctx)
        return row

    foreign_org = db.session.query(model.organization_id).filter(model.id == row_id).scalar()
    if foreign_org is not None:
        # CRITICAL: Cross-tenant access attempt
        _log_cross_tenant_attempt(
            f"{model.__tablename__} {row_id} belongs to org {foreign_org}, not {org_id}",
            ctx=ctx,
            resource=f"{model.__tablename__}:{row_id}",
            action="read",
        )
    raise NotFoundError(f"{label} not found")  # Don't reveal it exists in another org


def _log_missing_context(reason: str, actor_id: str | None = None) -> None:
    current_app.logger.warning("Tenant context missing: %s", reason)
    log_security_event(
        actor_id=actor_id,
        event_type="TENANT_CONTEXT_MISSING",
        success=False,
        reason=reason,
        organization_id=None,
    )


def _log_cross_tenant_attempt(
    reason: str,
    ctx: TenantContext,
    resource: str | None = None,
    action: str | None = None,
) -> None:
    """
    Log a cross-tenant access attempt as a security event.

    SECURITY: Critical audit trail for detecting unauthorized access attempts.
    These events should be monitored and alerted on.
    """
    current_app.logger.warning("Cross-tenant access denied: %s", reason)
    log_security_event(
        actor_id=ctx.actor_id,
        event_type="CROSS_TENANT_ACCESS_DENIED",
        success=False,
        resource=resource,
        action=action,
        reason=reason,
        organization_id=ctx.organization_id,
    )
