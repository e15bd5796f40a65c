"""
Task Tracking Engine
Flask Application Factory.

Usage:
    from taskhub import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from taskhub.auth import ROLES, init_auth
from taskhub.config import config
from taskhub.middleware.jwt_auth import init_jwt_middleware
from taskhub.middleware.logging_config import configure_logging
from taskhub.middleware.rate_limiter import init_rate_limits
from taskhub.middleware.timing import init_request_timing
from taskhub.models import db
from taskhub.utils.errors import E, api_error

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
    default_limits=[],                     # no global limit — apply per-blueprint
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
    app.config.from_object(config[config_name]())
    os.makedirs(app.instance_path, exist_ok=True)

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

    # ── Request timing + correlation id (first before_request) ───────────
    init_request_timing(app)

    # ── Identity: JWT → g.current_user_id / g.current_user_role ──────────
    init_jwt_middleware(app)

    # ── Authorization guard & Content-Type check ─────────────────────────
    init_auth(app)

    # ── Request guard (input length) ─────────────────────────────────────
    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413, description="Request body too large")

    # ── Import all models so Alembic / create_all see them ───────────────
    from taskhub.models import notification as _notification_models  # noqa: F401
    from taskhub.models import task as _task_models                  # noqa: F401
    from taskhub.models import workflow as _workflow_models          # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        db.create_all()
        app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from taskhub.blueprints.health_bp import health_bp
    from taskhub.blueprints.notification_bp import notification_bp
    from taskhub.blueprints.task_bp import task_bp
    from taskhub.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(task_bp)
    app.register_blueprint(workflow_bp)
    app.register_blueprint(notification_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-workflows")
    def seed_workflows_cmd():
        """Install the default workflows and task templates."""
        from taskhub.services.workflow_service import seed_catalog
        count = seed_catalog()
        click.echo(f"Seeded {count} new workflows.")

    @app.cli.command("issue-token")
    @click.option("--user-id", type=int, required=True)
    @click.option("--role", type=click.Choice(sorted(ROLES)), default="member")
    @click.option("--expires", type=int, default=None, help="Lifetime in seconds")
    def issue_token_cmd(user_id, role, expires):
        """Mint an access token for local use."""
        from taskhub.services.jwt_service import generate_access_token
        click.echo(generate_access_token(user_id, role, expires_in=expires))

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.BAD_REQUEST, "Method not allowed", status=405)

    @app.errorhandler(413)
    def too_large(e):
        return api_error(E.BODY_TOO_LARGE, "Request body too large")

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, f"Too many requests: {e.description}")

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
