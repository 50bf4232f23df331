# backend/erp/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))
    logging.getLogger("erp").setLevel(app.logger.level)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.auth import auth_bp
    from .routes.customers import customers_bp
    from .routes.sales_orders import sales_orders_bp
    from .routes.purchase_orders import purchase_orders_bp
    from .routes.audit import audit_bp
    from .routes.settings import settings_bp
    from .routes.users import users_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(sales_orders_bp)
    app.register_blueprint(purchase_orders_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(users_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
