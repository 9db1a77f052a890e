"""
Casework Review Platform
Flask Application Factory.

Usage:
    from app import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from app.config import config
from app.models import db
from app.middleware.logging_config import configure_logging
from app.middleware.timing import init_request_timing
from app.middleware.security_headers import init_security_headers
from app.middleware.rate_limiter import init_rate_limits
from app.middleware.jwt_auth import init_jwt_middleware
from app.utils.errors import register_error_handlers

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
    default_limits=[],                     # no global limit, applied per blueprint
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

    # ── Middleware ───────────────────────────────────────────────────────
    init_security_headers(app)
    init_request_timing(app)
    init_jwt_middleware(app)
    register_error_handlers(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    @app.before_request
    def _guard_request():
        from flask import abort
        # Payment callbacks are verified against the raw body
        if request.path.startswith("/api/v1/billing/webhook"):
            return None
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from app.models import auth as _auth_models                   # noqa: F401
    from app.models import record as _record_models               # noqa: F401
    from app.models import verification as _verification_models   # noqa: F401
    from app.models import proposed_change as _proposed_models    # noqa: F401
    from app.models import credits as _credits_models             # noqa: F401
    from app.models import audit as _audit_models                 # noqa: F401
    from app.models import edit_suggestion as _suggestion_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ──
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from app.blueprints.auth_bp import auth_bp
    from app.blueprints.health_bp import health_bp
    from app.blueprints.project_bp import project_bp
    from app.blueprints.incident_bp import incident_bp
    from app.blueprints.record_bp import record_bp
    from app.blueprints.proposed_change_bp import proposed_change_bp
    from app.blueprints.verifier_bp import verifier_bp
    from app.blueprints.credits_bp import credits_bp
    from app.blueprints.billing_bp import billing_bp
    from app.blueprints.edit_suggestion_bp import edit_suggestion_bp
    from app.blueprints.admin_bp import admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(project_bp)
    app.register_blueprint(incident_bp)
    app.register_blueprint(record_bp)
    app.register_blueprint(proposed_change_bp)
    app.register_blueprint(verifier_bp)
    app.register_blueprint(credits_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(edit_suggestion_bp)
    app.register_blueprint(admin_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("create-admin")
    @click.argument("email")
    @click.argument("password")
    @click.option("--name", default=None, help="Display name")
    def create_admin_cmd(email, password, name):
        """Create (or promote) a global admin account."""
        from app.models.auth import User
        from app.utils.crypto import hash_password

        email = email.strip().lower()
        user = User.query.filter_by(email=email).first()
        if user is None:
            user = User(email=email, full_name=name or email.split("@")[0])
            db.session.add(user)
        user.password_hash = hash_password(password)
        user.role = "admin"
        user.status = "active"
        db.session.commit()
        logger.info("Admin account ready: %s", email, extra={"user_id": user.id})

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
