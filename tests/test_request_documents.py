"""
Tests: request details and supporting documents.

Urgency / shipping condition options, delivery term and its date estimate,
documents attached at submission or later, and the document-type and
field-option reference endpoints.
"""

from datetime import date, datetime, timezone

import pytest

from payflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from payflow.models import db as _db
from payflow.models.payment_request import PaymentRequest
from payflow.models.reference import FIELD_SHIPPING_CONDITIONS, FIELD_URGENCY
from payflow.services import payment_request_service, reference_service

API = "/api/v1"


def _hdr(user_id):
    return {"X-User-Id": str(user_id)}


@pytest.fixture()
def doc_type():
    t = reference_service.create_document_type({"name": "Invoice"})
    _db.session.commit()
    return t


@pytest.fixture()
def options():
    urgent = reference_service.create_field_option({"field_code": FIELD_URGENCY, "value": "Urgent"})
    normal = reference_service.create_field_option({"field_code": FIELD_URGENCY, "value": "Normal"})
    pickup = reference_service.create_field_option({"field_code": FIELD_SHIPPING_CONDITIONS, "value": "Pickup"})
    _db.session.commit()
    return {"urgent": urgent, "normal": normal, "pickup": pickup}


@pytest.fixture()
def author(make_user):
    user = make_user()
    _db.session.commit()
    return user


def _file(doc_type, name="invoice.pdf"):
    return {"document_type_id": doc_type.id, "file_name": name, "file_key": f"requests/{name}"}


class TestSubmitDetails:
    def test_details_are_stored(self, make_request, options):
        pr = make_request(
            urgency_id=options["urgent"].id,
            urgency_reason="  site stops on Monday ",
            shipping_condition_id=options["pickup"].id,
            delivery_days=10,
            delivery_days_type="calendar",
        )
        body = pr.to_dict()
        assert body["urgency_value"] == "Urgent"
        assert body["urgency_reason"] == "site stops on Monday"
        assert body["shipping_condition_value"] == "Pickup"
        assert (body["delivery_days"], body["delivery_days_type"]) == (10, "calendar")

    def test_defaults_without_details(self, make_request):
        pr = make_request()
        assert pr.urgency_id is None
        assert pr.delivery_days_type == "working"
        assert (pr.total_files, pr.uploaded_files) == (0, 0)

    def test_option_of_other_field_rejected(self, make_request, options):
        with pytest.raises(ValidationError) as exc:
            make_request(urgency_id=options["pickup"].id)
        assert exc.value.details["field"] == "urgency_id"
        assert PaymentRequest.query.count() == 0

    def test_inactive_option_rejected(self, make_request, options):
        reference_service.update_field_option(options["normal"].id, {"is_active": False})
        _db.session.commit()
        with pytest.raises(ValidationError):
            make_request(urgency_id=options["normal"].id)

    @pytest.mark.parametrize("details", [
        {"delivery_days": 0},
        {"delivery_days": "5"},
        {"delivery_days": True},
        {"delivery_days_type": "lunar"},
        {"total_files": -1},
        {"urgency_reason": ["x"]},
    ])
    def test_bad_details_rejected(self, make_request, details):
        with pytest.raises(ValidationError):
            make_request(**details)
        assert PaymentRequest.query.count() == 0


class TestDocuments:
    def test_files_at_submission(self, make_request, doc_type, author):
        pr = make_request(created_by=author.id, total_files=3,
                          files=[_file(doc_type, "a.pdf"), _file(doc_type, "b.pdf")])
        assert (pr.total_files, pr.uploaded_files) == (3, 2)
        files = payment_request_service.list_files(pr.id)
        assert [f.file_name for f in files] == ["a.pdf", "b.pdf"]
        assert files[0].document_type.name == "Invoice"
        assert files[0].created_by == author.id

    def test_total_grows_to_uploaded(self, make_request, doc_type):
        pr = make_request(files=[_file(doc_type, "a.pdf"), _file(doc_type, "b.pdf")])
        assert (pr.total_files, pr.uploaded_files) == (2, 2)

    def test_unknown_document_type_rolls_back_submit(self, make_request):
        with pytest.raises(ValidationError) as exc:
            make_request(files=[{"document_type_id": 999, "file_name": "a.pdf", "file_key": "k"}])
        assert exc.value.details["field"] == "document_type_id"
        assert PaymentRequest.query.count() == 0

    def test_add_file_later(self, make_request, doc_type, author):
        pr = make_request(total_files=1)
        row = payment_request_service.add_file(pr.id, _file(doc_type, "act.pdf"), author.id)
        payment_request_service.add_file(pr.id, _file(doc_type, "extra.pdf"), author.id)
        _db.session.commit()

        assert row.payment_request_id == pr.id
        pr = payment_request_service.get_request(pr.id)
        assert (pr.total_files, pr.uploaded_files) == (2, 2)
        actions = [entry.action for entry in payment_request_service.list_logs(pr.id)]
        assert actions == ["submit", "file_added", "file_added"]

    def test_add_file_to_trashed_request(self, make_request, doc_type, author):
        pr = make_request()
        payment_request_service.soft_delete(pr.id, author.id)
        _db.session.commit()
        with pytest.raises(NotFoundError):
            payment_request_service.add_file(pr.id, _file(doc_type), author.id)

    @pytest.mark.parametrize("payload", [
        "scan.pdf",
        {"file_name": "a.pdf", "file_key": "k"},
        {"file_name": "", "file_key": "k", "document_type_id": 1},
        {"file_name": "a.pdf", "file_key": "k", "document_type_id": 1, "file_size": -5},
    ])
    def test_invalid_file_payload(self, doc_type, payload):
        with pytest.raises(ValidationError):
            payment_request_service.validate_file(payload)


class TestDeliveryEstimate:
    def _pr(self, days, days_type="working"):
        # Friday
        created = datetime(2026, 10, 16, 15, 30, tzinfo=timezone.utc)
        return PaymentRequest(created_at=created, delivery_days=days, delivery_days_type=days_type)

    def test_working_days(self):
        # Sat start, +3 working → Wed 21 Oct, +14 → Wed 4 Nov, +5 working
        assert payment_request_service.estimate_delivery_date(self._pr(5)) == date(2026, 11, 11)

    def test_calendar_days(self):
        assert payment_request_service.estimate_delivery_date(self._pr(10, "calendar")) == date(2026, 11, 14)

    def test_no_term_no_estimate(self):
        assert payment_request_service.estimate_delivery_date(self._pr(None)) is None


class TestReferenceServices:
    def test_duplicate_document_type(self, doc_type):
        with pytest.raises(ConflictError):
            reference_service.create_document_type({"name": "Invoice"})

    def test_document_type_in_use_cannot_be_deleted(self, make_request, doc_type):
        make_request(files=[_file(doc_type)])
        with pytest.raises(ValidationError):
            reference_service.delete_document_type(doc_type.id)

    def test_unused_document_type_deleted(self, doc_type):
        reference_service.delete_document_type(doc_type.id)
        _db.session.commit()
        assert reference_service.list_document_types() == []

    def test_options_ordered_per_field(self, options):
        urgency = reference_service.list_field_options(field_code=FIELD_URGENCY)
        assert [(o.value, o.display_order) for o in urgency] == [("Urgent", 1), ("Normal", 2)]
        assert options["pickup"].display_order == 1

    def test_unknown_field_code(self):
        with pytest.raises(ValidationError):
            reference_service.create_field_option({"field_code": "colour", "value": "Red"})

    def test_duplicate_value_within_field(self, options):
        with pytest.raises(ConflictError):
            reference_service.create_field_option({"field_code": FIELD_URGENCY, "value": "Urgent"})

    def test_used_option_must_be_deactivated(self, make_request, options):
        make_request(urgency_id=options["urgent"].id)
        with pytest.raises(ValidationError, match="deactivate"):
            reference_service.delete_field_option(options["urgent"].id)

    def test_active_only_listing(self, options):
        reference_service.update_field_option(options["normal"].id, {"is_active": False})
        _db.session.commit()
        active = reference_service.list_field_options(field_code=FIELD_URGENCY, active_only=True)
        assert [o.value for o in active] == ["Urgent"]


class TestDocumentsApi:
    def test_submit_with_details_and_files(self, client, counterparty, doc_type, options, author):
        res = client.post(f"{API}/payment-requests", headers=_hdr(author.id), json={
            "counterparty_id": counterparty.id,
            "urgency_id": options["urgent"].id,
            "delivery_days": 5,
            "files": [_file(doc_type)],
        })
        assert res.status_code == 201
        body = res.get_json()
        assert body["uploaded_files"] == 1
        assert body["urgency_value"] == "Urgent"
        assert body["estimated_delivery_date"] is not None

        files = client.get(f"{API}/payment-requests/{body['id']}/files").get_json()
        assert files["total"] == 1
        assert files["items"][0]["document_type_name"] == "Invoice"

    def test_submit_bad_delivery_days_is_422(self, client, counterparty, author):
        res = client.post(f"{API}/payment-requests", headers=_hdr(author.id), json={
            "counterparty_id": counterparty.id, "delivery_days": -2,
        })
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_CONSTRAINT"

    def test_submit_non_object_body_is_400(self, client, author):
        res = client.post(f"{API}/payment-requests", headers=_hdr(author.id), json=[1, 2])
        assert res.status_code == 400

    def test_post_file(self, client, make_request, doc_type, author):
        pr = make_request()
        res = client.post(f"{API}/payment-requests/{pr.id}/files", headers=_hdr(author.id),
                          json={**_file(doc_type, "act.pdf"), "page_count": 3})
        assert res.status_code == 201
        assert res.get_json()["page_count"] == 3
        body = client.get(f"{API}/payment-requests/{pr.id}").get_json()
        assert (body["total_files"], body["uploaded_files"]) == (1, 1)

    def test_post_file_missing_key_is_400(self, client, make_request, doc_type, author):
        pr = make_request()
        res = client.post(f"{API}/payment-requests/{pr.id}/files", headers=_hdr(author.id),
                          json={"document_type_id": doc_type.id, "file_name": "a.pdf"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_document_type_endpoints(self, client):
        res = client.post(f"{API}/document-types", json={"name": "Act"})
        assert res.status_code == 201
        type_id = res.get_json()["id"]
        assert client.post(f"{API}/document-types", json={"name": "Act"}).status_code == 409
        assert client.put(f"{API}/document-types/{type_id}", json={"name": "Acceptance act"}).status_code == 200
        assert client.delete(f"{API}/document-types/{type_id}").status_code == 200
        assert client.get(f"{API}/document-types").get_json()["total"] == 0

    def test_field_option_endpoints(self, client):
        res = client.post(f"{API}/field-options", json={"field_code": "urgency", "value": "Urgent"})
        assert res.status_code == 201
        option_id = res.get_json()["id"]
        res = client.put(f"{API}/field-options/{option_id}", json={"is_active": False})
        assert res.get_json()["is_active"] is False
        listed = client.get(f"{API}/field-options?field_code=urgency&active=1").get_json()
        assert listed["total"] == 0
        assert client.get(f"{API}/field-options?field_code=colour").status_code == 422
        assert client.delete(f"{API}/field-options/{option_id}").status_code == 200
