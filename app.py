# app.py

import logging
import os

from dotenv import load_dotenv
from flask import Flask
from sqlalchemy import event

# Load environment variables from .env file first
load_dotenv()

# Module imports after load_dotenv() - E402 is intentional
from config import DevelopmentConfig, ProductionConfig, TestingConfig  # noqa: E402
from config.monitoring import (  # noqa: E402
    DevelopmentMonitoringConfig,
    ProductionMonitoringConfig,
    TestingMonitoringConfig,
)
from config.validation import validate_and_exit  # noqa: E402
from smart_import.importer import init_importer  # noqa: E402
from smart_import.models import db  # noqa: E402
from smart_import.utils.logging_config import setup_logging  # noqa: E402

logger = logging.getLogger(__name__)

CONFIG_BY_ENV = {
    "production": (ProductionConfig, ProductionMonitoringConfig),
    "testing": (TestingConfig, TestingMonitoringConfig),
    "development": (DevelopmentConfig, DevelopmentMonitoringConfig),
}

flask_env = os.environ.get("FLASK_ENV", "development")
validate_and_exit(flask_env)

app = Flask(__name__)
for config_object in CONFIG_BY_ENV.get(flask_env, CONFIG_BY_ENV["development"]):
    app.config.from_object(config_object)

db.init_app(app)
setup_logging(app)


def _sqlite_connect_hook(file_backed: bool):
    """
    Build a ``connect`` listener for SQLite engines.

    The driver is put in autocommit mode so that ``_sqlite_begin`` controls
    transaction start; nested savepoints around each executed row rely on it.
    """

    def on_connect(dbapi_connection, connection_record):  # pragma: no cover - instrumentation
        dbapi_connection.isolation_level = None
        pragmas = ["PRAGMA busy_timeout=5000", "PRAGMA foreign_keys=ON"]
        if file_backed:
            pragmas[:0] = ["PRAGMA journal_mode=WAL", "PRAGMA synchronous=NORMAL"]
        cursor = dbapi_connection.cursor()
        try:
            for statement in pragmas:
                cursor.execute(statement)
        except Exception as exc:
            logger.warning("Could not apply SQLite pragma: %s", exc)
        finally:
            cursor.close()

    return on_connect


def _sqlite_begin(conn):  # pragma: no cover - instrumentation
    conn.exec_driver_sql("BEGIN")


with app.app_context():
    engine = db.engine
    if engine.url.get_backend_name() == "sqlite" and not getattr(engine, "_import_hooks_installed", False):
        event.listen(engine, "connect", _sqlite_connect_hook(engine.url.database not in (None, "", ":memory:")))
        event.listen(engine, "begin", _sqlite_begin)
        engine._import_hooks_installed = True  # type: ignore[attr-defined]
    # Tests create and drop their own schema
    if not app.config.get("TESTING", False):
        db.create_all()

init_importer(app)
