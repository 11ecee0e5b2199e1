# backend/storecore/__init__.py
from flask import Flask, jsonify, request

from .config import Config
from .errors import StoreError, error_response
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Collaborators (clock, payment gateway, notifier)
    from .time_utils import install_clock
    from .services.payment_gateway import install_gateway
    from .services.notification_service import install_notifier

    install_clock(app, app.config.get("CLOCK"))
    install_gateway(app, app.config.get("PAYMENT_GATEWAY"))
    install_notifier(app, app.config.get("NOTIFIER"))

    # Register blueprints
    from .routes.system import system_bp
    from .routes.orders import orders_bp
    from .routes.payments import payments_bp
    from .routes.coupons import coupons_bp
    from .routes.returns import returns_bp
    from .routes.wallets import wallets_bp
    from .routes.payouts import payouts_bp
    from .routes.referrals import referrals_bp
    from .routes.policy import policy_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(coupons_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(wallets_bp)
    app.register_blueprint(payouts_bp)
    app.register_blueprint(referrals_bp)
    app.register_blueprint(policy_bp)

    @app.errorhandler(StoreError)
    def handle_store_error(exc):
        return error_response(exc)

    @app.errorhandler(404)
    def handle_not_found(exc):
        if request.path.startswith("/api/"):
            return jsonify({"error": "Not found", "code": "NOT_FOUND"}), 404
        return exc

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in set(app.config.get("CORS_ORIGINS") or ()):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, Idempotency-Key"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
