# backend/stockroom/__init__.py
from __future__ import annotations

import logging
from decimal import Decimal

from flask import Flask
from flask.json.provider import DefaultJSONProvider
from werkzeug.exceptions import HTTPException

from .config import Config
from .extensions import cache, db, events, migrate
from .validation import StockroomError


class StockroomJSONProvider(DefaultJSONProvider):
    """Parse JSON numbers with a fraction as Decimal so prices never pass through float."""

    def loads(self, s, **kwargs):
        kwargs.setdefault("parse_float", Decimal)
        return super().loads(s, **kwargs)


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.json_provider_class = StockroomJSONProvider
    app.json = StockroomJSONProvider(app)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # SQLite busy timeout bounds how long a writer waits on BEGIN IMMEDIATE
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        engine_options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
        connect_args = dict(engine_options.get("connect_args") or {})
        connect_args.setdefault("timeout", app.config["STOCKROOM_TX_TIMEOUT_SECONDS"])
        connect_args.setdefault("check_same_thread", False)
        engine_options["connect_args"] = connect_args
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))
    logging.getLogger("stockroom").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    cache.init_app(app)
    events.init_app(app)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.products import products_bp
    from .routes.sales import sales_bp
    from .routes.counts import counts_bp
    from .routes.ledger import ledger_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(counts_bp)
    app.register_blueprint(ledger_bp)

    @app.errorhandler(StockroomError)
    def handle_stockroom_error(exc: StockroomError):
        return exc.to_dict(), exc.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        if isinstance(exc, HTTPException):
            return {"error": exc.description}, exc.code
        app.logger.exception("Unhandled error")
        return {"error": "Internal server error"}, 500

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
