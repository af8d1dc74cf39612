# backend/tradein/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        # Applied before extensions read the config
        app.config.update(test_config)

    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .routes.system import system_bp
    from .routes.intake import intake_bp
    from .routes.inventory import inventory_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(intake_bp)
    app.register_blueprint(inventory_bp)

    from .cli import register_commands
    register_commands(app)

    return app
