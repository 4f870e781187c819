"""
Tests: request timing headers, JSON error shape, log formatting and the
small shared helpers.
"""

import json
import logging

import pytest
from flask import g

from payflow.middleware.logging_config import JSONFormatter, ReadableFormatter, RequestContextFilter
from payflow.middleware.rate_limiter import BLUEPRINT_LIMITS
from payflow.utils.errors import E, status_for
from payflow.utils.helpers import parse_int_list


def _record(**extra):
    base = {"name": "payflow.test", "levelno": logging.INFO, "levelname": "INFO",
            "msg": "stage advanced", "args": ()}
    base.update(extra)
    return logging.makeLogRecord(base)


class TestRequestTiming:
    def test_generated_request_id_and_duration(self, client):
        res = client.get("/api/v1/health")
        assert len(res.headers["X-Request-ID"]) == 12
        assert float(res.headers["X-Request-Duration-Ms"]) >= 0

    def test_incoming_request_id_is_echoed(self, client):
        res = client.get("/api/v1/statuses", headers={"X-Request-ID": "trace-42"})
        assert res.headers["X-Request-ID"] == "trace-42"


class TestAppLevelErrors:
    def test_unknown_route(self, client):
        res = client.get("/api/v1/does-not-exist")
        assert res.status_code == 404
        body = res.get_json()
        assert body["code"] == "ERR_NOT_FOUND"
        assert body["details"]["path"] == "/api/v1/does-not-exist"

    def test_wrong_method(self, client):
        res = client.delete("/api/v1/health")
        assert res.status_code == 405
        assert res.get_json()["code"] == "ERR_METHOD_NOT_ALLOWED"


class TestErrorCodes:
    @pytest.mark.parametrize("code,status", [
        (E.VALIDATION_REQUIRED, 400),
        (E.VALIDATION_CONSTRAINT, 422),
        (E.DECISION_NOT_FOUND, 404),
        (E.ALREADY_DECIDED, 409),
        (E.STAGE_CONFIG_MISSING, 422),
        (E.INTERNAL, 500),
    ])
    def test_registered_status(self, code, status):
        assert status_for(code) == status

    def test_unknown_code_is_client_error(self):
        assert status_for("SOMETHING_ELSE") == 400


class TestLogFormatting:
    def test_json_groups_approval_fields(self):
        rec = _record(payment_request_id=7, stage_order=2, request_id="abc", status=200)
        payload = json.loads(JSONFormatter().format(rec))
        assert payload["msg"] == "stage advanced"
        assert payload["approval"] == {"payment_request_id": 7, "stage_order": 2}
        assert payload["request_id"] == "abc"
        assert payload["status"] == 200

    def test_json_without_context(self):
        payload = json.loads(JSONFormatter().format(_record()))
        assert "approval" not in payload
        assert "request_id" not in payload

    def test_readable_compact_context(self):
        line = ReadableFormatter().format(_record(payment_request_id=7, cycle=2, department_id=4))
        assert "[pr=7 c=2 d=4]" in line

    def test_request_context_filter(self, app):
        rec = _record()
        with app.test_request_context("/", headers={"X-User-Id": "5"}):
            g.request_id = "req-1"
            assert RequestContextFilter().filter(rec) is True
        assert rec.request_id == "req-1"
        assert rec.user_id == "5"

    def test_filter_outside_request_leaves_record(self):
        rec = _record()
        RequestContextFilter().filter(rec)
        assert not hasattr(rec, "request_id")


class TestHelpers:
    def test_parse_int_list(self):
        assert parse_int_list(None) == []
        assert parse_int_list([1, "2"]) == [1, 2]

    @pytest.mark.parametrize("value", ["1,2", [True], ["x"], [None]])
    def test_parse_int_list_rejects(self, value):
        with pytest.raises(ValueError):
            parse_int_list(value, field="site_ids")

    def test_every_blueprint_has_a_limit_key(self, app):
        assert set(BLUEPRINT_LIMITS) == {"approvals", "payment_requests", "notifications", "reference"}
        for key in BLUEPRINT_LIMITS.values():
            assert app.config[key]
