# conftest.py

import os

import pytest

# FLASK_ENV must be set before app.py is imported so it loads TestingConfig
os.environ["FLASK_ENV"] = "testing"

from app import app as flask_app  # noqa: E402
from smart_import.models import db  # noqa: E402

# Reapplied before every test; some tests change these values
IMPORTER_TEST_SETTINGS = {
    "TESTING": True,
    "IMPORTER_ENABLED": True,
    "IMPORTER_WORKER_ENABLED": False,
    "IMPORTER_AUTO_APPROVE_THRESHOLD": 95.0,
    "IMPORTER_DOMAIN_DETECTION_THRESHOLD": 30.0,
    "IMPORTER_SAMPLE_ROWS": 5,
    "IMPORTER_PAGE_SIZE_DEFAULT": 20,
    "IMPORTER_PAGE_SIZE_MAX": 100,
}


@pytest.fixture(scope="function")
def app():
    """The module-level app, reset to test settings, on an empty in-memory schema."""
    flask_app.config.update(IMPORTER_TEST_SETTINGS)

    with flask_app.app_context():
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    with app.app_context():
        yield


@pytest.fixture
def runner(app):
    return app.test_cli_runner()
