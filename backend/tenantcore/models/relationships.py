from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .tenancy import generate_id


# Membership edges: the one documented exception to per-row tenant equality.
# USER_MEMBER_OF_ORG: platform actor -> the organization record itself, stored in that organization.
# HAS_ROLE: platform actor -> role entity of the organization, stored in that organization.
MEMBER_OF_ORG = "USER_MEMBER_OF_ORG"
HAS_ROLE = "HAS_ROLE"
MEMBERSHIP_RELATIONSHIP_TYPES = frozenset({MEMBER_OF_ORG, HAS_ROLE})


class CoreRelationship(db.Model):
    """
    Directed, typed edge between two entities (from_entity_id -> to_entity_id).

    Endpoints are not foreign keys: membership edges point at a platform
    identity on one side and at the organization record itself on the other
    (see membership_service). relationship_service validates endpoints.

    IMMUTABLE HISTORY: Edges are deactivated (is_active=False), never deleted.
    Duplicate edges of the same type between the same endpoints are allowed.
    """
    __tablename__ = "core_relationships"
    __table_args__ = (
        db.Index("ix_core_relationships_org_from", "organization_id", "from_entity_id", "relationship_type"),
        db.Index("ix_core_relationships_org_to", "organization_id", "to_entity_id", "relationship_type"),
    )

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    organization_id = db.Column(db.String(36), db.ForeignKey("core_organizations.id"), nullable=False, index=True)

    from_entity_id = db.Column(db.String(36), nullable=False)
    to_entity_id = db.Column(db.String(36), nullable=False)
    relationship_type = db.Column(db.String(100), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    relationship_data = db.Column(db.JSON, nullable=False, default=dict)
    smart_code = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<CoreRelationship id={self.id} {self.from_entity_id} "
            f"-[{self.relationship_type}]-> {self.to_entity_id}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "from_entity_id": self.from_entity_id,
            "to_entity_id": self.to_entity_id,
            "relationship_type": self.relationship_type,
            "is_active": self.is_active,
            "relationship_data": dict(self.relationship_data or {}),
            "smart_code": self.smart_code,
            "created_at": to_utc_z(self.created_at),
        }
