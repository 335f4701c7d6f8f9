from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .tenancy import format_decimal, generate_id


class UniversalTransaction(db.Model):
    """
    Business event header (sale, appointment, journal posting, case action...).

    LEDGER RULES:
    - Header is created first; lines are appended afterwards
    - total_amount is never recomputed from lines by the ledger
    - No deletes: cancellation/voiding is a transaction_status transition
    """
    __tablename__ = "universal_transactions"
    __table_args__ = (
        db.Index("ix_universal_transactions_org_type", "organization_id", "transaction_type"),
        db.Index("ix_universal_transactions_org_status", "organization_id", "transaction_status"),
        db.Index("ix_universal_transactions_org_date", "organization_id", "transaction_date"),
    )

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    organization_id = db.Column(db.String(36), db.ForeignKey("core_organizations.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(100), nullable=False)
    transaction_code = db.Column(db.String(100), nullable=True, index=True)
    smart_code = db.Column(db.String(255), nullable=False)
    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    source_entity_id = db.Column(db.String(36), db.ForeignKey("core_entities.id"), nullable=True, index=True)
    target_entity_id = db.Column(db.String(36), db.ForeignKey("core_entities.id"), nullable=True, index=True)

    total_amount = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    transaction_status = db.Column(db.String(50), nullable=False, default="pending")

    # "metadata" is reserved on declarative classes
    metadata_ = db.Column("metadata", db.JSON, nullable=False, default=dict)

    lines = db.relationship(
        "UniversalTransactionLine",
        backref="transaction",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="UniversalTransactionLine.line_number",
    )

    def __repr__(self) -> str:
        return f"<UniversalTransaction id={self.id} type={self.transaction_type!r} status={self.transaction_status}>"

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "organization_id": self.organization_id,
            "transaction_type": self.transaction_type,
            "transaction_code": self.transaction_code,
            "smart_code": self.smart_code,
            "transaction_date": to_utc_z(self.transaction_date),
            "source_entity_id": self.source_entity_id,
            "target_entity_id": self.target_entity_id,
            "total_amount": format_decimal(self.total_amount),
            "transaction_status": self.transaction_status,
            "metadata": dict(self.metadata_ or {}),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class UniversalTransactionLine(db.Model):
    """
    Itemized detail of a transaction. Exclusively owned by its header.

    MULTI-TENANT: organization_id is copied from the header, never supplied
    independently. line_number is 1-based and unique within the transaction.
    """
    __tablename__ = "universal_transaction_lines"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "line_number", name="uq_universal_transaction_lines_txn_line"),
        db.CheckConstraint("line_number >= 1", name="ck_universal_transaction_lines_line_number"),
        db.Index("ix_universal_transaction_lines_org_entity", "organization_id", "line_entity_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    transaction_id = db.Column(db.String(36), db.ForeignKey("universal_transactions.id"), nullable=False, index=True)
    organization_id = db.Column(db.String(36), db.ForeignKey("core_organizations.id"), nullable=False, index=True)

    line_number = db.Column(db.Integer, nullable=False)
    line_entity_id = db.Column(db.String(36), db.ForeignKey("core_entities.id"), nullable=True)

    quantity = db.Column(db.Numeric(18, 4), nullable=True)
    unit_amount = db.Column(db.Numeric(18, 4), nullable=True)
    line_amount = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    smart_code = db.Column(db.String(255), nullable=False)
    line_data = db.Column(db.JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<UniversalTransactionLine txn={self.transaction_id} line={self.line_number}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "organization_id": self.organization_id,
            "line_number": self.line_number,
            "line_entity_id": self.line_entity_id,
            "quantity": format_decimal(self.quantity),
            "unit_amount": format_decimal(self.unit_amount),
            "line_amount": format_decimal(self.line_amount),
            "smart_code": self.smart_code,
            "line_data": dict(self.line_data or {}),
        }
