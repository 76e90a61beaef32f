"""
SheetFlow
Flask Application Factory.

Usage:
    from sheetflow import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from sheetflow.config import config
from sheetflow.models import db
from sheetflow.middleware.logging_config import configure_logging
from sheetflow.middleware.timing import init_request_timing
from sheetflow.middleware.jwt_auth import init_jwt_middleware
from sheetflow.middleware.rate_limiter import init_rate_limits

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit; applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_cls = config[config_name]
    # ProductionConfig validates its environment on instantiation
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing + identity ────────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── Import all models so Alembic and create_all see them ─────────────
    from sheetflow.models import base as _base_models              # noqa: F401
    from sheetflow.models import sheet as _sheet_models            # noqa: F401
    from sheetflow.models import revision as _revision_models      # noqa: F401
    from sheetflow.models import value_set as _value_set_models    # noqa: F401
    from sheetflow.models import ratings as _ratings_models        # noqa: F401
    from sheetflow.models import audit as _audit_models            # noqa: F401
    from sheetflow.models import notification as _notification_models  # noqa: F401
    from sheetflow.models import snapshot as _snapshot_models      # noqa: F401

    if config_name == "development" and app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from sheetflow.blueprints.health_bp import health_bp
    from sheetflow.blueprints.sheets_bp import sheets_bp
    from sheetflow.blueprints.revisions_bp import revisions_bp
    from sheetflow.blueprints.value_sets_bp import value_sets_bp
    from sheetflow.blueprints.ratings_bp import ratings_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(sheets_bp)
    app.register_blueprint(revisions_bp)
    app.register_blueprint(value_sets_bp)
    app.register_blueprint(ratings_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("drain-snapshots")
    @click.option("--max-items", default=50, show_default=True, help="Jobs to claim in this run.")
    def drain_snapshots_cmd(max_items):
        """Rebuild queued sheet snapshot caches synchronously."""
        from sheetflow.services.snapshot_worker import drain_queue
        processed = drain_queue(max_items)
        logger.info("Drained %s snapshot rebuild job(s).", processed)
        click.echo(f"{processed} job(s) processed")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Snapshot rebuild worker ──────────────────────────────────────────
    from sheetflow.services.snapshot_worker import SnapshotWorker
    SnapshotWorker.init_app(app)

    return app
