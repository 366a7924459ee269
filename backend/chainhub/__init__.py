# backend/chainhub/__init__.py
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .config import Config
from .extensions import db, migrate, configure_sqlite_transactions


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    with app.app_context():
        if db.engine.dialect.name == "sqlite":
            configure_sqlite_transactions(db.engine)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.transactions import transactions_bp
    from .routes.inventory import inventory_bp
    from .routes.sync import sync_bp
    from .routes.hub import hub_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(sync_bp)
    app.register_blueprint(hub_bp)

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        if isinstance(e, HTTPException):
            return jsonify({"code": e.name.upper().replace(" ", "_"), "error": e.description, "details": {}}), e.code
        db.session.rollback()
        app.logger.exception("Unhandled error")
        return jsonify({"code": "INTERNAL_ERROR", "error": "Internal server error", "details": {}}), 500

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
