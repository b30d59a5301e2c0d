# backend/app/__init__.py
import click
from flask import Flask, request

from .config import Config
from .extensions import db, migrate



def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before db.init_app: engines are built from config there
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Event bus, outbox dispatcher and sync pipeline: one set per app
    from .services.event_bus import EventBus
    from .services.outbox_dispatcher import OutboxDispatcher
    from .services.cash_event_handlers import register_cash_handlers
    from .services.sync_service import OfflineSyncService

    bus = EventBus()
    register_cash_handlers(bus)
    dispatcher = OutboxDispatcher(
        app,
        bus,
        interval_ms=app.config["OUTBOX_POLL_INTERVAL_MS"],
        batch_size=app.config["OUTBOX_BATCH_SIZE"],
    )
    app.extensions["event_bus"] = bus
    app.extensions["outbox_dispatcher"] = dispatcher
    app.extensions["offline_sync"] = OfflineSyncService()

    # Register blueprints
    from .routes.system import system_bp
    from .routes.sync import sync_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(sync_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    # CLI commands (flask db upgrade, outbox run, ...) manage their own dispatching
    if app.config.get("OUTBOX_DISPATCHER_AUTOSTART") and click.get_current_context(silent=True) is None:
        dispatcher.start()

    return app
