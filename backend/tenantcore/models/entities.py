from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .tenancy import generate_id


# Soft-delete marker. Deleted rows stay in place and can be recovered.
ENTITY_STATUS_DELETED = "deleted"

# Actor identities live in the platform organization with this entity_type
ACTOR_ENTITY_TYPE = "USER"

# Per-organization role records targeted by HAS_ROLE edges (entity_code = role name)
ROLE_ENTITY_TYPE = "role"


class CoreEntity(db.Model):
    """
    Generic business "noun" (customer, product, gl_account, employee...).

    MULTI-TENANT: entity_type + organization_id define a logical collection.
    entity_code is unique within (organization_id, entity_type), not globally.
    NULL codes never collide.

    parent_entity_id is a plain self-reference with no cascade semantics;
    the service checks it resolves within the same organization.
    """
    __tablename__ = "core_entities"
    __table_args__ = (
        db.UniqueConstraint(
            "organization_id", "entity_type", "entity_code",
            name="uq_core_entities_org_type_code",
        ),
        db.Index("ix_core_entities_org_type", "organization_id", "entity_type"),
        db.Index("ix_core_entities_org_status", "organization_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    organization_id = db.Column(db.String(36), db.ForeignKey("core_organizations.id"), nullable=False, index=True)

    entity_type = db.Column(db.String(100), nullable=False)
    entity_name = db.Column(db.String(255), nullable=False)
    entity_code = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(50), nullable=False, default="active")
    smart_code = db.Column(db.String(255), nullable=False)
    parent_entity_id = db.Column(db.String(36), nullable=True, index=True)

    # "metadata" is reserved on declarative classes
    metadata_ = db.Column("metadata", db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_deleted(self) -> bool:
        return self.status == ENTITY_STATUS_DELETED

    def __repr__(self) -> str:
        return f"<CoreEntity id={self.id} type={self.entity_type!r} name={self.entity_name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "entity_type": self.entity_type,
            "entity_name": self.entity_name,
            "entity_code": self.entity_code,
            "status": self.status,
            "smart_code": self.smart_code,
            "parent_entity_id": self.parent_entity_id,
            "metadata": dict(self.metadata_ or {}),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
