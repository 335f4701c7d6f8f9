# Overview: End-to-end walk through the core: tenants, actors, entities, fields, edges and the ledger.

"""
End-to-End Scenario

Two organizations, one actor who owns the first, and the full path a request
takes: authorize -> entity -> dynamic fields -> relationships -> ledger.
"""

import pytest

from conftest import CUSTOMER_SC, EMAIL_SC, LINE_SC, PRODUCT_SC, REL_SC, TXN_SC
from tenantcore.errors import NotFoundError
from tenantcore.services import (
    dynamic_data_service,
    entity_service,
    membership_service,
    organization_service,
    relationship_service,
    transaction_service,
)


def test_cross_tenant_read_and_field_upsert(db_session, ctx_a, ctx_b):
    """Entity in A is invisible from B; re-upserting a field keeps one row."""
    acme = entity_service.create_entity(ctx_a, "customer", "Acme", CUSTOMER_SC)

    with pytest.raises(NotFoundError):
        entity_service.read_entity(ctx_b, acme.id)

    dynamic_data_service.upsert_field(ctx_a, acme.id, "email", "text", "a@x.com", EMAIL_SC)
    dynamic_data_service.upsert_field(ctx_a, acme.id, "email", "text", "b@y.com", EMAIL_SC)

    fields = dynamic_data_service.get_fields(ctx_a, acme.id)
    assert [(f.field_name, f.value) for f in fields] == [("email", "b@y.com")]


def test_actor_request_flow(db_session, actor):
    org = organization_service.create_organization("Acme Corp", "ACME", owner_actor_id=actor.id)
    ctx = membership_service.authorize(actor.id)
    assert ctx.organization_id == org.id
    assert ctx.role == "owner"

    customer = entity_service.create_entity(ctx, "customer", "Jo Bloggs", CUSTOMER_SC, entity_code="C-1")
    product = entity_service.create_entity(ctx, "product", "Anvil", PRODUCT_SC, entity_code="P-1")
    dynamic_data_service.batch_upsert(ctx, customer.id, [
        {"field_name": "email", "field_type": "text", "value": "jo@example.test", "smart_code": EMAIL_SC},
        {"field_name": "vip", "field_type": "boolean", "value": True, "smart_code": EMAIL_SC},
    ])
    relationship_service.create_relationship(ctx, customer.id, product.id, "FAVOURITE", REL_SC)

    sale = transaction_service.create_transaction(ctx, {
        "transaction_type": "sale",
        "smart_code": TXN_SC,
        "source_entity_id": customer.id,
        "total_amount": "25.00",
    }, [
        {"smart_code": LINE_SC, "line_entity_id": product.id, "quantity": 1, "unit_price": "20"},
        {"smart_code": LINE_SC, "line_amount": "5", "line_data": {"kind": "shipping"}},
    ], validators=[transaction_service.validate_line_total])
    transaction_service.update_status(ctx, sale.id, "completed", {"paid_by": "card"}, expected_status="pending")

    entity_service.update_entity(ctx, customer.id, {"status": "inactive"})

    history = transaction_service.list_transactions(ctx, entity_id=customer.id)
    assert {t["transaction_type"] for t in history["items"]} == {"sale", "entity_status_change"}

    product_history = transaction_service.list_transactions(ctx, entity_id=product.id)
    assert [t["id"] for t in product_history["items"]] == [sale.id]

    stored = transaction_service.read_with_lines(ctx, sale.id)
    assert stored["transaction_status"] == "completed"
    assert stored["metadata"] == {"paid_by": "card"}
    assert [line["line_amount"] for line in stored["lines"]] == ["20", "5"]

    favourites = relationship_service.find_by_endpoint(ctx, customer.id, relationship_type="FAVOURITE")
    assert [r.to_entity_id for r in favourites] == [product.id]
