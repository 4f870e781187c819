"""
Request timing middleware.

Every response carries X-Request-ID and X-Request-Duration-Ms. One access
line is logged per request; its level depends on outcome:

    5xx                      → ERROR
    slower than SLOW_REQUEST_MS → WARNING
    approval decision calls  → INFO  (approve / reject / withdraw / resubmit)
    anything else            → DEBUG
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

_QUIET_PATHS = frozenset({"/api/v1/health"})

# Endpoints whose access line is always kept at INFO for audit
_DECISION_ENDPOINTS = frozenset({
    "approvals.approve_request",
    "approvals.reject_request",
    "approvals.withdraw_request",
    "approvals.resubmit_request",
})


def _access_level(status: int, duration_ms: float, slow_ms: int) -> int:
    if status >= 500:
        return logging.ERROR
    if duration_ms > slow_ms:
        return logging.WARNING
    if request.endpoint in _DECISION_ENDPOINTS:
        return logging.INFO
    return logging.DEBUG


def init_request_timing(app: Flask):
    """Register the before/after request hooks."""
    slow_ms = app.config.get("SLOW_REQUEST_MS", 1000)

    @app.before_request
    def _stamp_request():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _log_access(response):
        started = getattr(g, "request_start", None)
        if started is None:
            return response

        elapsed = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed:.1f}"
        if request.path in _QUIET_PATHS:
            return response

        level = _access_level(response.status_code, elapsed, slow_ms)
        logger.log(
            level,
            "%s %s → %d (%.0fms)",
            request.method, request.path, response.status_code, elapsed,
            extra={
                "event_type": "http",
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": elapsed,
                "remote_addr": request.remote_addr,
                "payment_request_id": (request.view_args or {}).get("request_id"),
            },
        )
        return response
