"""
Structured logging configuration.

Two output shapes, chosen by LOG_FORMAT (default: readable in debug, json otherwise):

    json      one object per line for the log aggregator
    readable  coloured single line with a compact approval context,
              e.g. ``[pr=12 c=2 s=1 d=4]``

Approval services log with ``extra={"payment_request_id", "cycle",
"stage_order", "department_id"}``. Inside a request, RequestContextFilter
stamps every record with the request id and the X-User-Id header so
engine lines can be joined to the access line from timing.py.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

_HTTP_FIELDS = ("event_type", "method", "path", "status", "duration_ms", "remote_addr")

# (record attribute, short label for the readable format)
_APPROVAL_FIELDS = (
    ("payment_request_id", "pr"),
    ("cycle", "c"),
    ("stage_order", "s"),
    ("department_id", "d"),
)


class RequestContextFilter(logging.Filter):
    """Copy request id and acting user onto records emitted during a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = g.get("request_id")
            if getattr(record, "user_id", None) is None:
                record.user_id = request.headers.get("X-User-Id")
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        for key in ("request_id", "user_id", *_HTTP_FIELDS):
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        approval = {
            attr: getattr(record, attr)
            for attr, _ in _APPROVAL_FIELDS
            if getattr(record, attr, None) is not None
        }
        if approval:
            payload["approval"] = approval
        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured development output."""

    LEVEL_COLOURS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelno, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        parts = [f"{colour}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"]

        ctx = " ".join(
            f"{label}={getattr(record, attr)}"
            for attr, label in _APPROVAL_FIELDS
            if getattr(record, attr, None) is not None
        )
        if ctx:
            parts.append(f"[{ctx}]")
        rid = getattr(record, "request_id", None)
        if rid:
            parts.append(f"<{rid}>")

        line = " ".join(parts)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger.

    The root handlers are cleared first so the test suite, which builds an
    app per session, never stacks handlers.
    """
    debug = app.config.get("DEBUG", False)
    level_name = (app.config.get("LOG_LEVEL") or ("DEBUG" if debug else "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    fmt = (app.config.get("LOG_FORMAT") or ("readable" if debug else "json")).lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ReadableFormatter() if fmt == "readable" else JSONFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for chatty in ("werkzeug", "sqlalchemy.engine", "urllib3"):
        logging.getLogger(chatty).setLevel(max(level, logging.WARNING))
    app.logger.setLevel(level)

    logger = logging.getLogger(__name__)
    logger.info("Logging configured: level=%s format=%s", level_name, fmt)
