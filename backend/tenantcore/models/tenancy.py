from __future__ import annotations

import uuid
from decimal import Decimal

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


# Distinguished tenant holding cross-tenant actor identity records.
# Ordinary request contexts may never target it (see tenant_service).
PLATFORM_ORGANIZATION_ID = "00000000-0000-0000-0000-000000000000"


def generate_id() -> str:
    """Opaque identifier for every core row."""
    return str(uuid.uuid4())


def format_decimal(value: Decimal | None) -> str | None:
    """Plain (non-exponent) string form of a stored amount, trailing zeros dropped."""
    if value is None:
        return None
    return format(value.normalize(), "f")


class Organization(db.Model):
    """
    Multi-tenant root: Every tenant is an Organization.

    WHY: Enables shared-database multi-tenancy with strict isolation.
    Every entity, dynamic field, relationship and transaction belongs to
    exactly one organization. No data may cross organization boundaries,
    except the documented membership edges (see membership_service).

    DESIGN:
    - Organizations are the tenant boundary
    - organization_code is globally unique (short lookup code)
    - settings is an opaque JSON blob owned by the tenant
    """
    __tablename__ = "core_organizations"

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    organization_name = db.Column(db.String(255), nullable=False)
    organization_code = db.Column(db.String(64), nullable=False, unique=True, index=True)

    status = db.Column(db.String(32), nullable=False, default="active", index=True)
    settings = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def is_platform(self) -> bool:
        return self.id == PLATFORM_ORGANIZATION_ID

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.organization_name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_name": self.organization_name,
            "organization_code": self.organization_code,
            "status": self.status,
            "settings": dict(self.settings or {}),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
