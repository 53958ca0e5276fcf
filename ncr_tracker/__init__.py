"""
NCR Tracker application factory.

    from ncr_tracker import create_app
    app = create_app()            # APP_ENV, else "development"
    app = create_app("testing")

CLI (``flask --app wsgi ...``):
    seed-users          one demo user per workflow role
    issue-token EMAIL   print a bearer token for an existing user
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

from ncr_tracker.config import config
from ncr_tracker.middleware.jwt_auth import init_jwt_middleware
from ncr_tracker.middleware.logging_config import configure_logging
from ncr_tracker.middleware.rate_limiter import init_rate_limits
from ncr_tracker.models import db
from ncr_tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    # SQLite only: enforce foreign keys
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
# Limits are attached per blueprint in init_rate_limits
limiter = Limiter(key_func=get_remote_address, default_limits=[])


def _register_cli(app):
    @app.cli.command("seed-users")
    def seed_users_cmd():
        """Create one demo user per workflow role."""
        from ncr_tracker.services.user_service import seed_users
        created = seed_users()
        click.echo(f"Seeded {len(created)} new users.")

    @app.cli.command("issue-token")
    @click.argument("email")
    def issue_token_cmd(email):
        """Print a bearer token for EMAIL (development only)."""
        from ncr_tracker.services.jwt_service import generate_access_token
        from ncr_tracker.services.user_service import get_user_by_email
        user = get_user_by_email(email)
        if user is None:
            raise click.ClickException(f"No user with email {email}")
        click.echo(generate_access_token(user.id, user.role))


def _register_error_handlers(app):
    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"limit": str(e.description)})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def create_app(config_name=None):
    """Build the NCR Tracker app for *config_name* ("development", "testing", "production")."""
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    cfg = config[config_name]
    # ProductionConfig() raises when DATABASE_URL / SECRET_KEY are missing
    app.config.from_object(cfg() if config_name == "production" else cfg)

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    origins = app.config.get("CORS_ORIGINS") or []
    CORS(app, origins=origins if origins and origins != ["*"] else "*")

    init_jwt_middleware(app)

    # Model modules must be imported before create_all / Alembic autogenerate
    from ncr_tracker.models import auth as _auth_models  # noqa: F401
    from ncr_tracker.models import ncr as _ncr_models    # noqa: F401

    if config_name != "testing":
        if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///"):
            os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            db.create_all()
        app.logger.info("NCR tables ready (%s)", config_name)

    from ncr_tracker.blueprints.health_bp import health_bp
    from ncr_tracker.blueprints.ncr_bp import ncr_bp
    from ncr_tracker.blueprints.user_bp import user_bp

    for bp in (health_bp, ncr_bp, user_bp):
        app.register_blueprint(bp)

    _register_cli(app)
    _register_error_handlers(app)

    # Needs the blueprints registered
    init_rate_limits(app, limiter)

    return app
