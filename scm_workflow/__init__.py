"""
Supply-chain document workflow engine.

Flask is used as the host for configuration, the database session and
migrations; there are no HTTP routes.  Services run inside an app context:

    from scm_workflow import create_app
    from scm_workflow.services.job_order_service import JobOrderService

    app = create_app("testing")
    with app.app_context():
        jo = JobOrderService().create({"jo_type": "transport", "total_amount": 5000})
"""

import logging
import os

from flask import Flask
from flask_migrate import Migrate
from sqlalchemy import event as _sa_event, engine as _sa_engine

from scm_workflow.config import config
from scm_workflow.middleware.logging_config import configure_logging
from scm_workflow.models import db

logger = logging.getLogger(__name__)

migrate = Migrate()


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """SQLite ignores FOREIGN KEY clauses unless asked per connection."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _register_models():
    # Imported for their side effect on db.metadata (create_all / Alembic autogenerate)
    from scm_workflow.models import inventory, job_order, material_requisition, scrap, shipment, workflow  # noqa: F401


def create_app(config_name=None):
    """
    Build the Flask application.

    Args:
        config_name: "development", "testing" or "production".
                     Defaults to the APP_ENV env var, then "development".

    Raises:
        RuntimeError: production without DATABASE_URL.
    """
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])
    if not app.config.get("SQLALCHEMY_DATABASE_URI"):
        raise RuntimeError(f"DATABASE_URL environment variable is required for config '{config_name}'")

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    _register_models()

    # Outside production the schema is created from the models directly;
    # production goes through `flask db upgrade`.
    if config_name != "production":
        uri = app.config["SQLALCHEMY_DATABASE_URI"]
        if uri.startswith("sqlite:///") and ":memory:" not in uri:
            os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            db.create_all()

    logger.debug("Workflow app created with config=%s", config_name)
    return app
