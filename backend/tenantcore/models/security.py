from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class SecurityEvent(db.Model):
    """
    Security event audit log with tenant context.

    MULTI-TENANT: organization_id is the tenant the caller acted as (nullable
    for events raised before a context exists).

    WHY: Track cross-tenant access attempts and membership denials.
    Critical for detecting probing across tenants.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_org_occurred", "organization_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    organization_id = db.Column(db.String(36), nullable=True, index=True)
    actor_id = db.Column(db.String(36), nullable=True, index=True)

    # CROSS_TENANT_ACCESS_DENIED, TENANT_CONTEXT_MISSING, MEMBERSHIP_DENIED, PERMISSION_DENIED
    event_type = db.Column(db.String(64), nullable=False, index=True)
    resource = db.Column(db.String(128), nullable=True)  # e.g. "core_entities:<id>"
    action = db.Column(db.String(64), nullable=True)     # e.g. "read", "update"

    success = db.Column(db.Boolean, nullable=False, default=False)
    reason = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "actor_id": self.actor_id,
            "event_type": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }
