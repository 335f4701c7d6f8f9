from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .tenancy import format_decimal, generate_id


# field_type -> the one value column it may populate
FIELD_VALUE_SLOTS = {
    "text": "field_value_text",
    "number": "field_value_number",
    "boolean": "field_value_boolean",
    "date": "field_value_date",
    "datetime": "field_value_datetime",
    "json": "field_value_json",
}

# Decimal places kept by field_value_number; finer values are rejected, not rounded
NUMBER_SCALE = 8


def _slot_count_sql() -> str:
    return " + ".join(
        f"(CASE WHEN {slot} IS NOT NULL THEN 1 ELSE 0 END)" for slot in FIELD_VALUE_SLOTS.values()
    )


def _slot_matches_type_sql() -> str:
    return " OR ".join(
        f"(field_type = '{field_type}' AND {slot} IS NOT NULL)"
        for field_type, slot in FIELD_VALUE_SLOTS.items()
    )


class CoreDynamicData(db.Model):
    """
    One typed attribute value attached to exactly one entity.

    INVARIANTS (enforced by dynamic_data_service and by check constraints):
    - At most one row per (organization_id, entity_id, field_name): writes are upserts
    - Exactly one field_value_* slot is non-null, and it matches field_type
    """
    __tablename__ = "core_dynamic_data"
    __table_args__ = (
        db.UniqueConstraint(
            "organization_id", "entity_id", "field_name",
            name="uq_core_dynamic_data_org_entity_field",
        ),
        db.CheckConstraint(f"({_slot_count_sql()}) = 1", name="ck_core_dynamic_data_single_value"),
        db.CheckConstraint(_slot_matches_type_sql(), name="ck_core_dynamic_data_slot_matches_type"),
        db.Index("ix_core_dynamic_data_org_entity", "organization_id", "entity_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    organization_id = db.Column(db.String(36), db.ForeignKey("core_organizations.id"), nullable=False, index=True)
    entity_id = db.Column(db.String(36), db.ForeignKey("core_entities.id"), nullable=False)

    field_name = db.Column(db.String(100), nullable=False)
    field_type = db.Column(db.String(20), nullable=False)

    field_value_text = db.Column(db.Text, nullable=True)
    field_value_number = db.Column(db.Numeric(28, NUMBER_SCALE), nullable=True)
    field_value_boolean = db.Column(db.Boolean, nullable=True)
    field_value_date = db.Column(db.Date, nullable=True)
    field_value_datetime = db.Column(db.DateTime(timezone=True), nullable=True)
    field_value_json = db.Column(db.JSON(none_as_null=True), nullable=True)

    smart_code = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    entity = db.relationship("CoreEntity", backref=db.backref("dynamic_fields", lazy=True))

    @property
    def value(self):
        """The populated slot, in its Python type."""
        slot = FIELD_VALUE_SLOTS.get(self.field_type)
        return getattr(self, slot) if slot else None

    def _serialized_value(self):
        value = self.value
        if isinstance(value, Decimal):
            return format_decimal(value)
        if self.field_type == "datetime":
            return to_utc_z(value)
        if self.field_type == "date" and value is not None:
            return value.isoformat()
        return value

    def __repr__(self) -> str:
        return f"<CoreDynamicData entity_id={self.entity_id} field={self.field_name!r} type={self.field_type}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "entity_id": self.entity_id,
            "field_name": self.field_name,
            "field_type": self.field_type,
            "field_value_text": self.field_value_text,
            "field_value_number": format_decimal(self.field_value_number),
            "field_value_boolean": self.field_value_boolean,
            "field_value_date": self.field_value_date.isoformat() if self.field_value_date else None,
            "field_value_datetime": to_utc_z(self.field_value_datetime),
            "field_value_json": self.field_value_json,
            "value": self._serialized_value(),
            "smart_code": self.smart_code,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
