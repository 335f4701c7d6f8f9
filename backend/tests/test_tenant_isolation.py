# Overview: Pytest coverage for tenant isolation behavior.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that cross-tenant access is denied for every store.

These tests create two organizations with their own entities, then verify
that:
1. An operation without a resolved organization fails loudly
2. A payload naming another organization is rejected
3. A record in another organization looks exactly like a missing record
4. Security events are logged for cross-tenant access attempts
5. Cancelled or expired contexts never reach the backing store
"""

import time

import pytest

from conftest import CUSTOMER_SC, EMAIL_SC, REL_SC
from tenantcore.errors import NotFoundError, OperationCancelledError, TenantIsolationError
from tenantcore.models import CoreEntity, PLATFORM_ORGANIZATION_ID, SecurityEvent
from tenantcore.services import (
    dynamic_data_service,
    entity_service,
    relationship_service,
    transaction_service,
)
from tenantcore.services.tenant_service import (
    TenantContext,
    assert_row_scoped,
    require_context,
    require_row_in_org,
    scoped_query,
    stamp_write,
)


class TestTenantServiceHelpers:
    """Test tenant_service helper functions."""

    def test_require_context_returns_org(self, db_session, ctx_a, org_a):
        assert require_context(ctx_a) == org_a.id

    @pytest.mark.parametrize("ctx", [None, "org-id", TenantContext(organization_id=""), TenantContext(organization_id=None)])
    def test_missing_context_rejected(self, db_session, ctx):
        with pytest.raises(TenantIsolationError):
            require_context(ctx)

        event = db_session.query(SecurityEvent).one()
        assert event.event_type == "TENANT_CONTEXT_MISSING"
        assert event.organization_id is None

    def test_platform_org_unreachable(self, db_session, platform_org):
        """No ordinary context may target the platform organization."""
        ctx = TenantContext(organization_id=PLATFORM_ORGANIZATION_ID, role="owner")
        with pytest.raises(TenantIsolationError):
            scoped_query(CoreEntity, ctx)
        with pytest.raises(TenantIsolationError):
            entity_service.list_entities(ctx, "USER")

    def test_scoped_query_filters_by_org(self, db_session, ctx_a, customer_a, customer_b):
        rows = scoped_query(CoreEntity, ctx_a).all()
        assert [r.id for r in rows] == [customer_a.id]

    def test_stamp_write(self, db_session, ctx_a, org_a, org_b):
        payload = {"entity_name": "X"}
        stamped = stamp_write(ctx_a, payload)
        assert stamped["organization_id"] == org_a.id
        assert "organization_id" not in payload

        assert stamp_write(ctx_a, {"organization_id": org_a.id})["organization_id"] == org_a.id
        with pytest.raises(TenantIsolationError):
            stamp_write(ctx_a, {"organization_id": org_b.id})

    def test_require_row_in_org_cross_tenant(self, db_session, ctx_a, customer_b):
        """Foreign row raises NotFoundError and is logged."""
        with pytest.raises(NotFoundError):
            require_row_in_org(CoreEntity, customer_b.id, ctx_a, label="Entity")

        event = db_session.query(SecurityEvent).filter_by(event_type="CROSS_TENANT_ACCESS_DENIED").one()
        assert event.resource == f"core_entities:{customer_b.id}"
        assert event.action == "read"

    def test_require_row_in_org_nonexistent_not_logged(self, db_session, ctx_a):
        with pytest.raises(NotFoundError):
            require_row_in_org(CoreEntity, "does-not-exist", ctx_a, label="Entity")
        assert db_session.query(SecurityEvent).count() == 0

    def test_assert_row_scoped(self, db_session, ctx_a, customer_a, customer_b):
        assert_row_scoped(customer_a, ctx_a)
        with pytest.raises(TenantIsolationError):
            assert_row_scoped(customer_b, ctx_a)


class TestCrossTenantIndistinguishable:
    """A foreign record and a missing record produce the same error."""

    def test_entity_read(self, db_session, ctx_a, customer_b):
        with pytest.raises(NotFoundError) as foreign:
            entity_service.read_entity(ctx_a, customer_b.id)
        with pytest.raises(NotFoundError) as missing:
            entity_service.read_entity(ctx_a, "11111111-2222-3333-4444-555555555555")

        assert str(foreign.value) == str(missing.value)
        assert foreign.value.to_dict() == missing.value.to_dict()

    def test_entity_by_code_in_other_org(self, db_session, ctx_a, customer_b):
        customer_b_code = customer_b.entity_code
        with pytest.raises(NotFoundError):
            entity_service.read_entity(ctx_a, entity_type="customer", entity_code=customer_b_code)

    def test_entity_update_and_delete(self, db_session, ctx_a, ctx_b, customer_b):
        with pytest.raises(NotFoundError):
            entity_service.update_entity(ctx_a, customer_b.id, {"entity_name": "Hijacked"})
        with pytest.raises(NotFoundError):
            entity_service.delete_entity(ctx_a, customer_b.id)

        assert entity_service.read_entity(ctx_b, customer_b.id).entity_name == "Beta Buyer"

    def test_dynamic_fields(self, db_session, ctx_a, ctx_b, customer_b):
        dynamic_data_service.upsert_field(ctx_b, customer_b.id, "email", "text", "b@beta.test", EMAIL_SC)
        with pytest.raises(NotFoundError):
            dynamic_data_service.get_fields(ctx_a, customer_b.id)
        with pytest.raises(NotFoundError):
            dynamic_data_service.delete_field(ctx_a, customer_b.id, "email")

    def test_relationship(self, db_session, ctx_a, ctx_b, customer_b):
        other = entity_service.create_entity(ctx_b, "customer", "Other", CUSTOMER_SC)
        rel = relationship_service.create_relationship(ctx_b, customer_b.id, other.id, "KNOWS", REL_SC)
        with pytest.raises(NotFoundError):
            relationship_service.reactivate_relationship(ctx_a, rel.id)

    def test_transaction(self, db_session, ctx_a, ctx_b, customer_b):
        txn = transaction_service.create_transaction(ctx_b, {
            "transaction_type": "sale", "smart_code": "HERA.POS.SALE.TXN.V1",
        })
        with pytest.raises(NotFoundError):
            transaction_service.read_with_lines(ctx_a, txn.id)
        with pytest.raises(NotFoundError):
            transaction_service.update_status(ctx_a, txn.id, "void")

    def test_listing_excludes_other_org(self, db_session, ctx_a, ctx_b, customer_a, customer_b):
        listed_a = entity_service.list_entities(ctx_a)
        listed_b = entity_service.list_entities(ctx_b)
        assert [e["id"] for e in listed_a["items"]] == [customer_a.id]
        assert [e["id"] for e in listed_b["items"]] == [customer_b.id]


class TestCancellation:
    """Cancelled or expired contexts fail before touching the store."""

    def test_cancelled_context(self, db_session, ctx_a):
        ctx_a.cancel()
        assert ctx_a.cancelled
        with pytest.raises(OperationCancelledError):
            entity_service.create_entity(ctx_a, "customer", "Late", CUSTOMER_SC)
        assert db_session.query(CoreEntity).count() == 0

    def test_expired_deadline(self, db_session, ctx_a):
        expired = ctx_a.with_timeout(0)
        time.sleep(0.001)
        assert expired.cancelled
        with pytest.raises(OperationCancelledError) as exc_info:
            entity_service.list_entities(expired)
        assert exc_info.value.status_code == 503

    def test_with_timeout_shares_cancellation(self, db_session, ctx_a):
        child = ctx_a.with_timeout(60)
        assert not child.cancelled
        ctx_a.cancel()
        assert child.cancelled

    def test_permissions(self, ctx_a):
        assert ctx_a.has_permission("MANAGE_MEMBERS")
        assert not TenantContext(organization_id="x").has_permission("MANAGE_MEMBERS")
