# backend/co2ledger/__init__.py
from flask import Flask, jsonify

from .config import Config
from .errors import LedgerError
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before the engine is bound in db.init_app
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.cylinders import cylinders_bp
    from .routes.fillings import fillings_bp
    from .routes.transfers import transfers_bp
    from .routes.tank import tank_bp
    from .routes.adjustments import adjustments_bp
    from .routes.reversals import reversals_bp
    from .routes.records import records_bp
    from .routes.reports import reports_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(cylinders_bp)
    app.register_blueprint(fillings_bp)
    app.register_blueprint(transfers_bp)
    app.register_blueprint(tank_bp)
    app.register_blueprint(adjustments_bp)
    app.register_blueprint(reversals_bp)
    app.register_blueprint(records_bp)
    app.register_blueprint(reports_bp)

    @app.errorhandler(LedgerError)
    def handle_ledger_error(exc: LedgerError):
        return jsonify(exc.to_dict()), exc.status_code

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
