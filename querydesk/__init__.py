"""
Loan Query Desk
Flask Application Factory.

Usage:
    from querydesk import create_app
    app = create_app()           # defaults to APP_ENV or "development"
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

from querydesk.config import config
from querydesk.middleware.logging_config import configure_logging
from querydesk.middleware.rate_limiter import init_rate_limits
from querydesk.middleware.timing import init_request_timing
from querydesk.models import db
from querydesk.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # per-route limits only, see middleware/rate_limiter.py
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

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from querydesk.models import approval as _approval_models  # noqa: F401
    from querydesk.models import branch as _branch_models      # noqa: F401
    from querydesk.models import chat as _chat_models          # noqa: F401
    from querydesk.models import query as _query_models        # noqa: F401
    from querydesk.models import user as _user_models          # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    if db_uri.startswith("sqlite:///") and ":memory:" not in db_uri:
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from querydesk.blueprints import register_blueprints
    register_blueprints(app)

    # ── Error handlers ───────────────────────────────────────────────────
    register_error_handlers(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-demo")
    @click.option("--reset", is_flag=True, help="Drop and recreate all tables first.")
    def seed_demo_cmd(reset):
        """Seed demo users, branch assignments and queries for GGN001..GGN005."""
        from querydesk.services.demo_seed import seed_demo

        if reset:
            db.drop_all()
            db.create_all()
        counts = seed_demo()
        logger.info("Seeded demo data: %s", counts)
        click.echo(f"Seeded demo data: {counts}")

    return app
