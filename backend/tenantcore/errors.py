# Overview: Error taxonomy shared by every store component, plus the Flask handlers that map it to HTTP.

"""
Core Error Taxonomy

Every error raised by the stores, the isolation middleware, the smart code
validator and the membership resolver derives from CoreError. Each kind
maps to exactly one HTTP status so consumers never collapse them into 500.

    ValidationError        400  caller fixes input and retries
    MembershipDeniedError  401  actor has no usable membership
    TenantIsolationError   403  missing or mismatched organization context
    PermissionDeniedError  403  role lacks a permission (kind differs)
    NotFoundError          404  absent, or present only in another tenant
    ConflictError          409  uniqueness / optimistic state conflicts
    BackingStoreError      503  timeout, connectivity, cancellation
"""

from __future__ import annotations


class CoreError(Exception):
    """Base for all errors raised by the core."""
    kind = "core_error"
    status_code = 500

    def to_dict(self) -> dict:
        return {"error": str(self), "kind": self.kind}


class ValidationError(CoreError, ValueError):
    """400-level input problem. Never partially applied."""
    kind = "validation_error"
    status_code = 400

    def __init__(self, message: str, *, field: str | None = None, expected: str | None = None):
        super().__init__(message)
        self.field = field
        self.expected = expected

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.field is not None:
            payload["field"] = self.field
        if self.expected is not None:
            payload["expected"] = self.expected
        return payload


class ConflictError(CoreError, ValueError):
    """409-level conflict (duplicate unique key, unexpected concurrent state)."""
    kind = "conflict"
    status_code = 409


class DuplicateLineNumberError(ValidationError, ConflictError):
    """A transaction line number is already taken within its transaction."""
    kind = "duplicate_line_number"
    status_code = 409


class TenantIsolationError(CoreError):
    """Raised when an operation has no resolved organization, or targets another one."""
    kind = "tenant_isolation"
    status_code = 403


class NotFoundError(CoreError, LookupError):
    """
    Referenced record does not exist within the caller's organization.

    SECURITY: A record that exists in a different organization raises this
    exact error with the exact same message.
    """
    kind = "not_found"
    status_code = 404


class BackingStoreError(CoreError):
    """Timeout, connectivity failure or transient unavailability. Retry with backoff."""
    kind = "backing_store_unavailable"
    status_code = 503


class OperationCancelledError(BackingStoreError):
    """The caller cancelled the request or its deadline passed before a store call."""
    kind = "operation_cancelled"


class AuthorizationError(CoreError):
    """Base for actor-level authorization failures."""
    kind = "authorization_error"
    status_code = 403


class MembershipDeniedError(AuthorizationError):
    """Actor has no active membership in the requested organization."""
    kind = "membership_denied"
    status_code = 401


class PermissionDeniedError(AuthorizationError):
    """Raised when the resolved role lacks a required permission."""
    kind = "permission_denied"
    status_code = 403


def register_error_handlers(app) -> None:
    """Render every CoreError as {"error", "kind"} JSON with its own status code."""

    @app.errorhandler(CoreError)
    def handle_core_error(exc: CoreError):
        if isinstance(exc, BackingStoreError):
            app.logger.warning("Backing store failure: %s", exc)
        return exc.to_dict(), exc.status_code
