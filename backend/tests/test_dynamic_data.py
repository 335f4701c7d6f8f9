# Overview: Pytest coverage for typed dynamic fields and their upsert semantics.

import threading
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import CUSTOMER_SC, EMAIL_SC, FIELD_SC, owner_context
from tenantcore import create_app
from tenantcore.errors import NotFoundError, ValidationError
from tenantcore.extensions import db
from tenantcore.models import CoreDynamicData
from tenantcore.services import dynamic_data_service, entity_service, organization_service


class TestUpsertField:

    def test_upsert_is_idempotent(self, db_session, ctx_a, customer_a):
        """Two upserts of the same field leave exactly one row with the last value."""
        first = dynamic_data_service.upsert_field(ctx_a, customer_a.id, "email", "text", "a@acme.test", EMAIL_SC)
        second = dynamic_data_service.upsert_field(ctx_a, customer_a.id, "email", "text", "b@acme.test", EMAIL_SC)

        assert first.id == second.id
        rows = db_session.query(CoreDynamicData).filter_by(entity_id=customer_a.id, field_name="email").all()
        assert len(rows) == 1
        assert rows[0].field_value_text == "b@acme.test"
        assert rows[0].organization_id == customer_a.organization_id

    def test_upsert_can_change_type(self, db_session, ctx_a, customer_a):
        dynamic_data_service.upsert_field(ctx_a, customer_a.id, "score", "text", "high", FIELD_SC)
        row = dynamic_data_service.upsert_field(ctx_a, customer_a.id, "score", "number", 42, FIELD_SC)

        assert row.field_type == "number"
        assert row.field_value_number == Decimal("42")
        assert row.field_value_text is None

        data = row.to_dict()
        assert data["value"] == "42"
        assert data["field_value_text"] is None

    @pytest.mark.parametrize("field_type,value,expected", [
        ("text", "gold", "gold"),
        ("number", Decimal("12.50"), Decimal("12.50")),
        ("number", 3, Decimal("3")),
        ("boolean", True, True),
        ("boolean", False, False),
        ("date", "2024-02-29", date(2024, 2, 29)),
        ("date", date(2023, 1, 1), date(2023, 1, 1)),
        ("json", {"tags": ["a", "b"]}, {"tags": ["a", "b"]}),
    ])
    def test_typed_slots(self, db_session, ctx_a, customer_a, field_type, value, expected):
        row = dynamic_data_service.upsert_field(ctx_a, customer_a.id, "attr", field_type, value, FIELD_SC)

        assert row.value == expected
        populated = [slot for slot in (
            "field_value_text", "field_value_number", "field_value_boolean",
            "field_value_date", "field_value_datetime", "field_value_json",
        ) if getattr(row, slot) is not None]
        assert populated == [f"field_value_{field_type}"]

    def test_datetime_stored_as_utc(self, db_session, ctx_a, customer_a):
        local = datetime(2024, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        row = dynamic_data_service.upsert_field(ctx_a, customer_a.id, "seen_at", "datetime", local, FIELD_SC)
        assert row.to_dict()["value"] == "2024-05-01T10:00:00Z"

    @pytest.mark.parametrize("value", [Decimal("0.12345678"), Decimal("1.100000000000"), Decimal("-99.5")])
    def test_number_within_scale_round_trips(self, db_session, ctx_a, customer_a, value):
        dynamic_data_service.upsert_field(ctx_a, customer_a.id, "ratio", "number", value, FIELD_SC)
        db_session.expire_all()

        stored = dynamic_data_service.get_field(ctx_a, customer_a.id, "ratio")
        assert stored.field_value_number == value

    @pytest.mark.parametrize("value", [Decimal("0.123456789"), 1e-9, Decimal("5E-12")])
    def test_number_beyond_scale_rejected(self, db_session, ctx_a, customer_a, value):
        """Values the column would round are refused instead of stored lossily."""
        with pytest.raises(ValidationError) as exc_info:
            dynamic_data_service.upsert_field(ctx_a, customer_a.id, "ratio", "number", value, FIELD_SC)

        assert exc_info.value.field == "ratio"
        assert exc_info.value.expected == "number"
        assert db_session.query(CoreDynamicData).count() == 0

    @pytest.mark.parametrize("field_type,value", [
        ("text", 5),
        ("number", "12"),
        ("number", True),
        ("number", float("nan")),
        ("boolean", "true"),
        ("boolean", 1),
        ("date", "not-a-date"),
        ("date", datetime(2024, 1, 1, 9, 30)),
        ("datetime", 1700000000),
        ("json", {1, 2}),
        ("text", None),
    ])
    def test_mismatched_values_rejected(self, db_session, ctx_a, customer_a, field_type, value):
        with pytest.raises(ValidationError):
            dynamic_data_service.upsert_field(ctx_a, customer_a.id, "attr", field_type, value, FIELD_SC)
        assert db_session.query(CoreDynamicData).count() == 0

    def test_unknown_field_type_rejected(self, db_session, ctx_a, customer_a):
        with pytest.raises(ValidationError) as exc_info:
            dynamic_data_service.upsert_field(ctx_a, customer_a.id, "attr", "money", 1, FIELD_SC)
        assert exc_info.value.field == "field_type"

    def test_invalid_smart_code_rejected(self, db_session, ctx_a, customer_a):
        with pytest.raises(ValidationError):
            dynamic_data_service.upsert_field(ctx_a, customer_a.id, "email", "text", "x@y.test", "HERA.bad")
        assert db_session.query(CoreDynamicData).count() == 0

    def test_foreign_entity_is_not_found(self, db_session, ctx_a, customer_b):
        with pytest.raises(NotFoundError):
            dynamic_data_service.upsert_field(ctx_a, customer_b.id, "email", "text", "x@y.test", EMAIL_SC)
        assert db_session.query(CoreDynamicData).count() == 0

    def test_deleted_entity_is_not_found(self, db_session, ctx_a, customer_a):
        entity_service.delete_entity(ctx_a, customer_a.id)
        with pytest.raises(NotFoundError):
            dynamic_data_service.upsert_field(ctx_a, customer_a.id, "email", "text", "x@y.test", EMAIL_SC)


class TestBatchUpsert:
    """Best-effort: each item is reported and committed on its own."""

    def test_partial_failure_keeps_good_items(self, db_session, ctx_a, customer_a):
        results = dynamic_data_service.batch_upsert(ctx_a, customer_a.id, [
            {"field_name": "email", "field_type": "text", "value": "a@acme.test", "smart_code": EMAIL_SC},
            {"field_name": "vip", "field_type": "boolean", "value": "yes", "smart_code": FIELD_SC},
            {"field_name": "credit", "field_type": "number", "field_value_number": 100, "smart_code": FIELD_SC},
            {"field_name": "notes", "field_type": "text", "value": "hi", "smart_code": "nope"},
        ])

        assert [r.ok for r in results] == [True, False, True, False]
        assert results[1].error.field == "vip"
        assert results[3].error.field == "smart_code"

        names = [f.field_name for f in dynamic_data_service.get_fields(ctx_a, customer_a.id)]
        assert names == ["credit", "email"]

    def test_slot_must_match_type(self, db_session, ctx_a, customer_a):
        results = dynamic_data_service.batch_upsert(ctx_a, customer_a.id, [
            {"field_name": "a", "field_type": "number", "field_value_text": "1", "smart_code": FIELD_SC},
            {"field_name": "b", "field_type": "text", "field_value_text": "x",
             "field_value_number": 2, "smart_code": FIELD_SC},
            {"field_name": "c", "field_type": "text", "value": "x", "field_value_text": "y", "smart_code": FIELD_SC},
            {"field_name": "d", "field_type": "text", "smart_code": FIELD_SC},
        ])
        assert not any(r.ok for r in results)
        assert db_session.query(CoreDynamicData).count() == 0

    def test_non_object_items_reported(self, db_session, ctx_a, customer_a):
        results = dynamic_data_service.batch_upsert(ctx_a, customer_a.id, [
            "email",
            {"field_name": "email", "field_type": "text", "value": "a@acme.test", "smart_code": EMAIL_SC},
        ])
        assert [r.ok for r in results] == [False, True]
        assert results[0].to_dict()["error"]["kind"] == "validation_error"

    def test_batch_is_idempotent_per_field(self, db_session, ctx_a, customer_a):
        item = {"field_name": "email", "field_type": "text", "value": "a@acme.test", "smart_code": EMAIL_SC}
        dynamic_data_service.batch_upsert(ctx_a, customer_a.id, [item])
        dynamic_data_service.batch_upsert(ctx_a, customer_a.id, [dict(item, value="b@acme.test")])

        assert db_session.query(CoreDynamicData).count() == 1
        assert dynamic_data_service.get_field(ctx_a, customer_a.id, "email").value == "b@acme.test"

    def test_missing_entity_fails_whole_batch(self, db_session, ctx_a, customer_b):
        with pytest.raises(NotFoundError):
            dynamic_data_service.batch_upsert(ctx_a, customer_b.id, [
                {"field_name": "email", "field_type": "text", "value": "a@b.test", "smart_code": EMAIL_SC},
            ])

    def test_fields_must_be_a_list(self, db_session, ctx_a, customer_a):
        with pytest.raises(ValidationError):
            dynamic_data_service.batch_upsert(ctx_a, customer_a.id, {"email": "a@b.test"})


class TestReadAndDelete:

    def test_get_fields_scoped_to_entity(self, db_session, ctx_a, ctx_b, customer_a, customer_b):
        dynamic_data_service.upsert_field(ctx_a, customer_a.id, "email", "text", "a@acme.test", EMAIL_SC)
        dynamic_data_service.upsert_field(ctx_b, customer_b.id, "email", "text", "b@beta.test", EMAIL_SC)

        fields = dynamic_data_service.get_fields(ctx_a, customer_a.id)
        assert [f.value for f in fields] == ["a@acme.test"]

    def test_get_missing_field(self, db_session, ctx_a, customer_a):
        with pytest.raises(NotFoundError):
            dynamic_data_service.get_field(ctx_a, customer_a.id, "email")

    def test_delete_field(self, db_session, ctx_a, customer_a):
        dynamic_data_service.upsert_field(ctx_a, customer_a.id, "email", "text", "a@acme.test", EMAIL_SC)
        dynamic_data_service.delete_field(ctx_a, customer_a.id, "email")

        assert dynamic_data_service.get_fields(ctx_a, customer_a.id) == []
        with pytest.raises(NotFoundError):
            dynamic_data_service.delete_field(ctx_a, customer_a.id, "email")


class TestConcurrentUpsert:
    """
    Two writers racing on the same (entity, field_name) against a real
    file-backed database, each with its own app context and session.
    """

    @pytest.fixture
    def file_app(self, tmp_path):
        app = create_app({
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'core.db'}",
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        })
        with app.app_context():
            db.create_all()
        yield app
        with app.app_context():
            db.session.remove()
            db.engine.dispose()

    def test_racing_upserts_leave_one_row(self, file_app):
        with file_app.app_context():
            org = organization_service.create_organization("Race Co", "RACE")
            ctx = owner_context(org.id)
            entity_id = entity_service.create_entity(ctx, "customer", "Racer", CUSTOMER_SC).id

        for round_number in range(3):
            values = (f"v1-{round_number}", f"v2-{round_number}")
            barrier = threading.Barrier(len(values))
            errors = []

            def write(value):
                try:
                    with file_app.app_context():
                        barrier.wait(timeout=10)
                        dynamic_data_service.upsert_field(ctx, entity_id, "tier", "text", value, FIELD_SC)
                except Exception as exc:  # surfaced by the assertion below
                    errors.append(exc)

            threads = [threading.Thread(target=write, args=(value,)) for value in values]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=30)

            assert errors == []
            with file_app.app_context():
                rows = db.session.query(CoreDynamicData).filter_by(entity_id=entity_id, field_name="tier").all()
                assert len(rows) == 1
                assert rows[0].field_value_text in values
