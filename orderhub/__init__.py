"""
OrderHub
Flask Application Factory.

Usage:
    from orderhub import create_app
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

from orderhub.config import config
from orderhub.models import db
from orderhub.auth import init_auth
from orderhub.middleware.logging_config import configure_logging
from orderhub.middleware.timing import init_request_timing
from orderhub.middleware.security_headers import init_security_headers
from orderhub.middleware.rate_limiter import init_rate_limits
from orderhub.middleware.jwt_auth import init_jwt_middleware
from orderhub.utils.errors import register_error_handlers

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
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
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
    # Instantiated so ProductionConfig can refuse to start without its env vars
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") \
            and ":memory:" not in app.config["SQLALCHEMY_DATABASE_URI"]:
        os.makedirs(app.instance_path, exist_ok=True)
    db.init_app(app)
    migrate.init_app(app, db)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware (first, so rejected requests are timed) ─
    init_request_timing(app)

    # ── JWT parsing, then caller resolution (order matters) ──────────────
    init_jwt_middleware(app)
    init_auth(app)

    # Limiter hooks run after the caller is known so limits key per user
    limiter.init_app(app)

    # ── Security headers (CSP, HSTS, X-Frame-Options, etc.) ─────────────
    init_security_headers(app)

    # ── Error handlers ───────────────────────────────────────────────────
    register_error_handlers(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from orderhub.models import auth as _auth_models        # noqa: F401
    from orderhub.models import team as _team_models        # noqa: F401
    from orderhub.models import catalog as _catalog_models  # noqa: F401
    from orderhub.models import order as _order_models      # noqa: F401
    from orderhub.models import audit as _audit_models      # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        db.create_all()
        app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from orderhub.blueprints.health_bp import health_bp
    from orderhub.blueprints.auth_bp import auth_bp
    from orderhub.blueprints.order_bp import order_bp
    from orderhub.blueprints.task_bp import task_bp
    from orderhub.blueprints.asking_task_bp import asking_task_bp
    from orderhub.blueprints.admin_bp import admin_bp
    from orderhub.blueprints.audit_bp import audit_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(order_bp)
    app.register_blueprint(task_bp)
    app.register_blueprint(asking_task_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(audit_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-demo")
    def seed_demo_cmd():
        """Seed demo users, teams, services and one order type."""
        from orderhub.services.seed_service import seed_demo
        result = seed_demo()
        if result["created"]:
            click.echo(f"Demo data seeded. Admin: {result['admin_email']}")
        else:
            click.echo("Demo data already present; nothing to do.")

    @app.cli.command("issue-token")
    @click.argument("email")
    @click.option("--expires-in", type=int, default=None, help="Lifetime in seconds.")
    def issue_token_cmd(email, expires_in):
        """Print a bearer token for an active user (local development)."""
        from sqlalchemy import select
        from orderhub.models.auth import User
        from orderhub.services.jwt_service import generate_access_token

        user = db.session.execute(
            select(User).where(User.email == email.strip().lower())
        ).scalar_one_or_none()
        if user is None or not user.is_active:
            raise click.ClickException(f"No active user with email {email}")
        click.echo(generate_access_token(user.id, user.role, expires_in=expires_in))

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
