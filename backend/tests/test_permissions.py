# Overview: Pytest coverage for role-to-permission mapping and permission checks.

import pytest

from tenantcore.errors import PermissionDeniedError
from tenantcore.models import SecurityEvent
from tenantcore.permissions import DEFAULT_ROLE_PERMISSIONS, get_all_permission_codes
from tenantcore.services.permission_service import is_admin_role, permissions_for_roles, require_permission
from tenantcore.services.tenant_service import TenantContext


class TestRoleMapping:

    def test_owner_has_every_permission(self):
        assert permissions_for_roles(["owner"]) == frozenset(get_all_permission_codes())

    def test_roles_are_unioned_and_case_insensitive(self):
        combined = permissions_for_roles(["Viewer", "member"])
        assert combined == frozenset(DEFAULT_ROLE_PERMISSIONS["member"])

    def test_unknown_roles_grant_nothing(self):
        assert permissions_for_roles(["superuser", None]) == frozenset()

    def test_admin_roles(self):
        assert is_admin_role(["member", "ADMIN"])
        assert not is_admin_role(["manager"])


class TestRequirePermission:

    def test_granted_is_not_logged(self, db_session, ctx_a):
        require_permission(ctx_a, "MANAGE_ORGANIZATION")
        assert db_session.query(SecurityEvent).count() == 0

    def test_denied_is_logged(self, db_session, org_a):
        ctx = TenantContext(organization_id=org_a.id, actor_id="someone", role="viewer",
                            permissions=permissions_for_roles(["viewer"]))
        with pytest.raises(PermissionDeniedError):
            require_permission(ctx, "WRITE_ENTITIES", resource="entities")

        event = db_session.query(SecurityEvent).one()
        assert event.event_type == "PERMISSION_DENIED"
        assert event.organization_id == org_a.id
        assert event.resource == "entities"

    def test_unknown_permission_code_is_a_programming_error(self, db_session, ctx_a):
        with pytest.raises(ValueError):
            require_permission(ctx_a, "LAUNCH_ROCKETS")
