"""
Document Approval Workflow Engine: Flask Application Factory.

Usage:
    from docflow import create_app
    app = create_app()          # uses APP_ENV or 'development'
    app = create_app("testing") # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from docflow.config import config
from docflow.middleware.logging_config import configure_logging
from docflow.middleware.rate_limiter import init_rate_limits
from docflow.models import db

logger = logging.getLogger(__name__)


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
    default_limits=[],                                 # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),   # Redis in production, memory for dev
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

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

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── Models (import so metadata knows every table) ────────────────────
    from docflow.models import audit as _audit_models              # noqa: F401
    from docflow.models import directory as _directory_models      # noqa: F401
    from docflow.models import document as _document_models        # noqa: F401
    from docflow.models import fund as _fund_models                # noqa: F401
    from docflow.models import notification as _notification_models  # noqa: F401
    from docflow.models import scheduling as _scheduling_models    # noqa: F401

    with app.app_context():
        if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and ":memory:" not in \
                app.config["SQLALCHEMY_DATABASE_URI"]:
            os.makedirs(app.instance_path, exist_ok=True)
        try:
            db.create_all()
            logger.info("db.create_all() completed successfully")
        except Exception as e:
            logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from docflow.blueprints.admin_bp import admin_bp
    from docflow.blueprints.document_bp import document_bp
    from docflow.blueprints.fund_bp import fund_bp
    from docflow.blueprints.health_bp import health_bp
    from docflow.blueprints.notification_bp import notification_bp

    app.register_blueprint(document_bp)
    app.register_blueprint(fund_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(health_bp)

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

    # ── Scheduler ────────────────────────────────────────────────────────
    from docflow.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)
    SchedulerService.ensure_jobs_registered()
    if app.config.get("SCHEDULER_ENABLED"):
        SchedulerService.start()

    return app
