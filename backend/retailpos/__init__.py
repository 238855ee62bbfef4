from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic (and create_all for both binds) sees every table
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.products import products_bp
    from .routes.customers import customers_bp
    from .routes.offers import offers_bp
    from .routes.pos import pos_bp
    from .routes.invoices import invoices_bp
    from .routes.exchanges import exchanges_bp
    from .routes.inventory import inventory_bp
    from .routes.offline import offline_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(offers_bp)
    app.register_blueprint(pos_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(exchanges_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(offline_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config.get("CORS_ALLOWED_ORIGINS", ()):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-Cashier-Id"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    if app.config.get("OFFLINE_POLLER_ENABLED"):
        from .services.offline_queue import QueuePoller
        poller = QueuePoller(app)
        app.extensions["offline_poller"] = poller
        poller.start()

    return app
