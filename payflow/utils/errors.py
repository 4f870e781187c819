"""Standardised API error responses.

Every error body has the same shape::

    {"error": "<human message>", "code": "<E.* constant>", "details": {...}}

``details`` is omitted when empty.  Each code is registered together with
its default HTTP status, so a view only names the code:

    return api_error(E.VALIDATION_REQUIRED, "counterparty_id is required")
    return api_error(E.ALREADY_DECIDED, "Decision already recorded", details={"status": "approved"})
"""

from __future__ import annotations

from flask import jsonify

_STATUS_BY_CODE: dict[str, int] = {}


def _register(code: str, status: int) -> str:
    _STATUS_BY_CODE[code] = status
    return code


class E:
    """Machine-readable error codes.

    ``ERR_*`` codes are generic API failures; ``APPROVAL_*`` codes come from
    the approval chain and are what clients branch on after a decision call.
    """

    VALIDATION_REQUIRED = _register("ERR_VALIDATION_REQUIRED", 400)
    VALIDATION_INVALID = _register("ERR_VALIDATION_INVALID", 400)
    VALIDATION_CONSTRAINT = _register("ERR_VALIDATION_CONSTRAINT", 422)
    NOT_FOUND = _register("ERR_NOT_FOUND", 404)
    METHOD_NOT_ALLOWED = _register("ERR_METHOD_NOT_ALLOWED", 405)
    CONFLICT_DUPLICATE = _register("ERR_CONFLICT_DUPLICATE", 409)
    RATE_LIMITED = _register("ERR_RATE_LIMITED", 429)
    DATABASE = _register("ERR_DATABASE", 500)
    INTERNAL = _register("ERR_INTERNAL", 500)

    STAGE_CONFIG_INVALID = _register("APPROVAL_STAGE_CONFIG_INVALID", 422)
    STAGE_CONFIG_MISSING = _register("APPROVAL_STAGE_CONFIG_MISSING", 422)
    DECISION_NOT_FOUND = _register("APPROVAL_DECISION_NOT_FOUND", 404)
    ALREADY_DECIDED = _register("APPROVAL_ALREADY_DECIDED", 409)
    INVALID_STATE = _register("APPROVAL_INVALID_STATE", 409)


def status_for(code: str) -> int:
    """Default HTTP status of an error code; unknown codes are client errors."""
    return _STATUS_BY_CODE.get(code, 400)


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(jsonify(body), status)`` for a Flask view.

    ``status`` overrides the registered default for ``code``.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or status_for(code)
