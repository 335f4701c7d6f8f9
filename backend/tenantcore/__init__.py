# backend/tenantcore/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def _engine_options(app: Flask) -> dict:
    """Bound every backing-store call by STORE_TIMEOUT_SECONDS."""
    timeout = app.config.get("STORE_TIMEOUT_SECONDS")
    options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    if not timeout:
        return options

    uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    if uri.startswith("sqlite"):
        # Busy timeout; SQLite has no pool checkout timeout to speak of
        connect_args = dict(options.get("connect_args") or {})
        connect_args.setdefault("timeout", timeout)
        options["connect_args"] = connect_args
        return options

    options.setdefault("pool_timeout", timeout)
    options.setdefault("pool_pre_ping", True)
    if uri.startswith("postgresql"):
        connect_args = dict(options.get("connect_args") or {})
        connect_args.setdefault("options", f"-c statement_timeout={int(timeout * 1000)}")
        options["connect_args"] = connect_args
    return options


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Engine options must be settled before db.init_app builds the engine
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .errors import register_error_handlers
    register_error_handlers(app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
