"""
Payflow
Flask Application Factory.

Usage:
    from payflow import create_app
    app = create_app()           # APP_ENV, else "development"
    app = create_app("testing")
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from payflow.config import config
from payflow.middleware.logging_config import configure_logging
from payflow.middleware.rate_limiter import init_rate_limits
from payflow.middleware.timing import init_request_timing
from payflow.models import db
from payflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(key_func=get_remote_address, default_limits=[])


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """SQLite ignores FOREIGN KEY clauses unless asked per connection."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: "development", "testing" or "production".
                     Defaults to the APP_ENV env var, then "development".
    """
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)

    configure_logging(app)
    _init_extensions(app)
    init_request_timing(app)
    _create_tables(app)
    _register_blueprints(app)
    _register_cli(app)
    _register_app_handlers(app)
    init_rate_limits(app, limiter)

    logger.info("Payflow app created (config=%s)", config_name)
    return app


# ── Factory steps ────────────────────────────────────────────────────────────

def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS") or ""
    if origins == "*":
        CORS(app)
    elif origins:
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])


def _create_tables(app):
    """Import every model module, then CREATE IF NOT EXISTS.

    Migrations remain the source of truth in production; this keeps dev and
    test databases usable without running ``flask db upgrade`` first.
    """
    from payflow.models import approval, notification, payment_request, reference  # noqa: F401

    with app.app_context():
        try:
            db.create_all()
        except Exception as exc:
            logger.warning("db.create_all() failed: %s", exc)


def _register_blueprints(app):
    from payflow.blueprints.approval_bp import approval_bp
    from payflow.blueprints.notification_bp import notification_bp
    from payflow.blueprints.payment_request_bp import payment_request_bp
    from payflow.blueprints.reference_bp import reference_bp

    for bp in (approval_bp, payment_request_bp, notification_bp, reference_bp):
        app.register_blueprint(bp)

    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Payflow"}


def _register_cli(app):
    @app.cli.command("seed-statuses")
    def seed_statuses_cmd():
        """Seed the default payment request statuses."""
        from payflow.services.status_service import seed_default_statuses

        count = seed_default_statuses()
        db.session.commit()
        click.echo(f"Seeded {count} new statuses.")

    @app.cli.command("reconcile-approvals")
    @click.option("--actor-id", type=int, default=None, help="User id recorded in the request log.")
    def reconcile_approvals_cmd(actor_id):
        """Advance or finalize requests whose current stage is fully decided."""
        from payflow.services.approval_engine import reconcile_stalled_requests

        summary = reconcile_stalled_requests(actor_user_id=actor_id)
        logger.info("Reconciliation finished: %s", summary)
        click.echo(
            f"checked={summary['checked']} advanced={summary['advanced']} "
            f"approved={summary['approved']} rejected={summary['rejected']} "
            f"reseeded={summary['reseeded']} skipped={len(summary['skipped'])} "
            f"failed={len(summary['failed'])}"
        )


def _register_app_handlers(app):
    """Errors raised outside any blueprint handler, in the same JSON shape."""

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.METHOD_NOT_ALLOWED, "Method not allowed",
                         details={"method": request.method, "path": request.path})

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"limit": e.description})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled server error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
