# backend/storefront/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, gateway, migrate


def create_app(config_overrides: dict | None = None, gateway_transport=None) -> Flask:
    """
    Application factory.

    config_overrides are applied before extensions initialise (tests swap in
    in-memory SQLite here); gateway_transport replaces the HTTP transport of
    the gateway client (tests pass an httpx.MockTransport).
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    gateway.init_app(app, transport=gateway_transport)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.payments import payments_bp
    from .routes.orders import orders_bp
    from .routes.wallet import wallet_bp
    from .routes.loyalty import loyalty_bp
    from .routes.installments import installments_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(wallet_bp)
    app.register_blueprint(loyalty_bp)
    app.register_blueprint(installments_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            app.config.get("FRONTEND_BASE_URL", "").rstrip("/"),
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        }
        if origin and origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, X-User-Id, X-Cart-Token"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
