"""
Payflow
Blueprint registry and shared request helpers.
"""

import logging

from flask import request

from payflow.core.exceptions import (
    AlreadyDecidedError,
    ConflictError,
    DecisionNotFoundError,
    InvalidStateError,
    NotFoundError,
    StageConfigMissingError,
    StageConfigurationError,
    ValidationError,
)
from payflow.models import db
from payflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def acting_user_id():
    """Acting user from the trusted ``X-User-Id`` header, or None."""
    raw = request.headers.get("X-User-Id")
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def require_acting_user():
    """Return (user_id, None) or (None, error_response) when the header is missing."""
    user_id = acting_user_id()
    if user_id is None:
        return None, api_error(E.VALIDATION_REQUIRED, "X-User-Id header is required")
    return user_id, None


# ── Domain error → HTTP mapping ──────────────────────────────────────────────

_ERROR_MAP = (
    (DecisionNotFoundError, E.DECISION_NOT_FOUND),
    (NotFoundError, E.NOT_FOUND),
    (AlreadyDecidedError, E.ALREADY_DECIDED),
    (InvalidStateError, E.INVALID_STATE),
    (ConflictError, E.CONFLICT_DUPLICATE),
    (StageConfigurationError, E.STAGE_CONFIG_INVALID),
    (StageConfigMissingError, E.STAGE_CONFIG_MISSING),
    (ValidationError, E.VALIDATION_CONSTRAINT),
)


def register_error_handlers(bp):
    """Attach the domain exception handlers to a blueprint.

    Each handler rolls back the session first; services may have flushed.
    """

    def _make_handler(code):
        def _handle(error):
            db.session.rollback()
            return api_error(code, str(error), details=getattr(error, "details", None))
        return _handle

    for exc_class, code in _ERROR_MAP:
        bp.register_error_handler(exc_class, _make_handler(code))

    @bp.errorhandler(Exception)
    def _handle_unexpected(error):
        from werkzeug.exceptions import HTTPException

        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
