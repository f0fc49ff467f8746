# backend/stockflow/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        # Applied before extensions bind so the engine sees the final URI
        app.config.update(config_overrides)

    logging.getLogger("stockflow").setLevel(app.config["STOCKFLOW_LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.products import products_bp
    from .routes.sales import sales_bp
    from .routes.movements import movements_bp
    from .routes.sales_audit import sales_audit_bp

    app.register_blueprint(products_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(movements_bp)
    app.register_blueprint(sales_audit_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
