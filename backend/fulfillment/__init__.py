# backend/fulfillment/__init__.py
from datetime import timedelta

from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None, payment_gateway=None) -> Flask:
    """
    Build the fulfillment API.

    `config_overrides` is applied on top of Config before any extension reads
    it. `payment_gateway` replaces the configured processor (tests pass a fake).
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    db.init_app(app)
    migrate.init_app(app, db)

    # Models must be imported before Alembic inspects the metadata
    from . import models  # noqa: F401

    from .services.payment_gateway import build_gateway
    from .services.order_service import OrderLifecycleManager

    gateway = payment_gateway or build_gateway(app.config)
    app.extensions["payment_gateway"] = gateway
    app.extensions["order_manager"] = OrderLifecycleManager(
        gateway,
        app.config["PAYMENT_GATEWAY_KEY_SECRET"],
        currency=app.config["PAYMENT_CURRENCY"],
        pending_timeout=timedelta(minutes=app.config["PENDING_ORDER_TIMEOUT_MINUTES"]),
    )

    from .routes.system import system_bp
    from .routes.orders import orders_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)

    allowed_origins = set(app.config["CORS_ALLOWED_ORIGINS"])

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        return response

    from .cli import register_commands
    register_commands(app)

    return app
