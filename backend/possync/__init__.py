# backend/possync/__init__.py
from pathlib import Path

from flask import Flask, request

from .config import Config
from .extensions import db, migrate

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


def create_app(config_overrides: dict | None = None, *, ledger=None, connectivity=None) -> Flask:
    """
    Build the terminal app.

    ledger / connectivity may be injected (tests, drills); otherwise they are
    built from config.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db, directory=str(MIGRATIONS_DIR), render_as_batch=True)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.ledger_client import build_ledger_client
    from .services.connectivity import ConnectivityMonitor
    from .services.sync_service import SyncManager

    if ledger is None:
        ledger = build_ledger_client(app.config)
    if connectivity is None:
        connectivity = ConnectivityMonitor(
            ledger,
            probe_timeout=app.config["CONNECTIVITY_PROBE_TIMEOUT_SECONDS"],
            force_offline=app.config["FORCE_OFFLINE"],
        )
    app.extensions["ledger_client"] = ledger
    app.extensions["connectivity"] = connectivity
    app.extensions["sync_manager"] = SyncManager()

    # Register blueprints
    from .routes.system import system_bp
    from .routes.sales import sales_bp
    from .routes.sync import sync_bp
    from .routes.purchases import purchases_bp
    from .routes.products import products_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(sync_bp)
    app.register_blueprint(purchases_bp)
    app.register_blueprint(products_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
