"""
Pytest fixtures for tenantcore tests.

Provides test database setup, tenant isolation fixtures, actor identities,
and test client.
"""

import pytest
from tenantcore import create_app
from tenantcore.extensions import db
from tenantcore.services import entity_service, membership_service, organization_service
from tenantcore.services.permission_service import permissions_for_roles
from tenantcore.services.tenant_service import TenantContext


CUSTOMER_SC = "HERA.CRM.CUSTOMER.ENTITY.V1"
PRODUCT_SC = "HERA.INV.PRODUCT.ENTITY.V1"
EMAIL_SC = "HERA.CRM.CUSTOMER.DYN.EMAIL.V1"
FIELD_SC = "HERA.CRM.CUSTOMER.DYN.FIELD.V1"
REL_SC = "HERA.CRM.REL.LINK.V1"
TXN_SC = "HERA.POS.SALE.TXN.V1"
LINE_SC = "HERA.POS.SALE.LINE.ITEM.V1"
ACTOR_SC = "HERA.PLATFORM.USER.IDENTITY.V1"
MEMBER_SC = "HERA.UNIVERSAL.MEMBERSHIP.GRANT.V1"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        app.config['ENTITY_STATUS_EVENTS'] = True

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def platform_org(db_session):
    """Ensure the platform organization exists."""
    org = organization_service.ensure_platform_organization()
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    return organization_service.create_organization("Org A - Acme Corp", "ACME")


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    return organization_service.create_organization("Org B - Beta Inc", "BETA")


def owner_context(org_id: str, actor_id: str | None = None) -> TenantContext:
    """Context with every permission, as an owner would have."""
    return TenantContext(
        organization_id=org_id,
        actor_id=actor_id,
        role="owner",
        permissions=permissions_for_roles(["owner"]),
    )


@pytest.fixture(scope='function')
def ctx_a(org_a):
    return owner_context(org_a.id)


@pytest.fixture(scope='function')
def ctx_b(org_b):
    return owner_context(org_b.id)


@pytest.fixture(scope='function')
def customer_a(ctx_a):
    """Customer entity "Acme" in Organization A."""
    return entity_service.create_entity(ctx_a, "customer", "Acme", CUSTOMER_SC, entity_code="CUST-001")


@pytest.fixture(scope='function')
def customer_b(ctx_b):
    """Customer entity in Organization B."""
    return entity_service.create_entity(ctx_b, "customer", "Beta Buyer", CUSTOMER_SC, entity_code="CUST-001")


@pytest.fixture(scope='function')
def actor(platform_org):
    """Platform actor identity (not yet a member of anything)."""
    return membership_service.create_actor_identity("Jane Doe", ACTOR_SC, entity_code="jane")


@pytest.fixture(scope='function')
def other_actor(platform_org):
    return membership_service.create_actor_identity("Sam Roe", ACTOR_SC, entity_code="sam")
