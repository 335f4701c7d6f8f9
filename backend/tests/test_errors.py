# Overview: Pytest coverage for the error taxonomy, its HTTP mapping and store error translation.

import pytest
from flask import Flask
from sqlalchemy.exc import IntegrityError, OperationalError

from tenantcore.errors import (
    BackingStoreError,
    ConflictError,
    CoreError,
    DuplicateLineNumberError,
    MembershipDeniedError,
    NotFoundError,
    OperationCancelledError,
    PermissionDeniedError,
    TenantIsolationError,
    ValidationError,
    register_error_handlers,
)
from tenantcore.services.concurrency import translates_store_errors


@pytest.fixture
def error_client():
    """Bare Flask app whose routes raise each core error."""
    app = Flask(__name__)
    register_error_handlers(app)

    errors = {
        "validation": ValidationError("bad input", field="smart_code", expected="^X$"),
        "membership": MembershipDeniedError("no membership"),
        "tenant": TenantIsolationError("no context"),
        "permission": PermissionDeniedError("Permission denied: MANAGE_MEMBERS"),
        "not-found": NotFoundError("Entity not found"),
        "conflict": ConflictError("duplicate"),
        "line-number": DuplicateLineNumberError("line_number 1 already exists", field="line_number"),
        "backing-store": BackingStoreError("timeout"),
        "cancelled": OperationCancelledError("cancelled"),
    }

    @app.route("/raise/<name>")
    def raise_error(name):
        raise errors[name]

    return app.test_client()


class TestHttpMapping:

    @pytest.mark.parametrize("name,status,kind", [
        ("validation", 400, "validation_error"),
        ("membership", 401, "membership_denied"),
        ("tenant", 403, "tenant_isolation"),
        ("permission", 403, "permission_denied"),
        ("not-found", 404, "not_found"),
        ("conflict", 409, "conflict"),
        ("line-number", 409, "duplicate_line_number"),
        ("backing-store", 503, "backing_store_unavailable"),
        ("cancelled", 503, "operation_cancelled"),
    ])
    def test_status_and_kind(self, error_client, name, status, kind):
        response = error_client.get(f"/raise/{name}")
        assert response.status_code == status
        assert response.get_json()["kind"] == kind

    def test_validation_payload_names_field(self, error_client):
        body = error_client.get("/raise/validation").get_json()
        assert body == {"error": "bad input", "kind": "validation_error", "field": "smart_code", "expected": "^X$"}

    def test_duplicate_line_number_is_both_kinds(self):
        exc = DuplicateLineNumberError("dup")
        assert isinstance(exc, ValidationError)
        assert isinstance(exc, ConflictError)


class TestStoreErrorTranslation:

    def test_integrity_error_becomes_conflict(self, db_session):
        @translates_store_errors
        def write():
            raise IntegrityError("INSERT ...", {}, Exception("UNIQUE constraint failed"))

        with pytest.raises(ConflictError) as exc_info:
            write()
        assert "UNIQUE constraint failed" in str(exc_info.value)

    def test_operational_error_becomes_backing_store_error(self, db_session):
        @translates_store_errors
        def read():
            raise OperationalError("SELECT ...", {}, Exception("database is locked"))

        with pytest.raises(BackingStoreError) as exc_info:
            read()
        assert exc_info.value.status_code == 503

    def test_core_errors_pass_through(self, db_session):
        @translates_store_errors
        def read():
            raise NotFoundError("Entity not found")

        with pytest.raises(NotFoundError):
            read()

    def test_other_exceptions_propagate(self, db_session):
        @translates_store_errors
        def broken():
            raise KeyError("boom")

        with pytest.raises(KeyError):
            broken()

    def test_all_core_errors_share_a_base(self):
        for cls in (ValidationError, ConflictError, TenantIsolationError, NotFoundError,
                    BackingStoreError, MembershipDeniedError, PermissionDeniedError):
            assert issubclass(cls, CoreError)
