# config/base.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default, *, minimum=None):
    try:
        number = int(value) if value not in (None, "") else default
    except ValueError:
        number = default
    if minimum is not None and number < minimum:
        return default
    return number


def _coerce_float(value, default, *, minimum=0.0, maximum=100.0):
    try:
        number = float(value) if value not in (None, "") else default
    except ValueError:
        return default
    if number < minimum or number > maximum:
        return default
    return number


def _parse_list(value):
    """
    Parse a comma-separated list while keeping order and removing duplicates.

    Returns:
        tuple[str, ...]: Normalized lowercase identifiers.
    """
    if not value:
        return ()

    seen = set()
    items = []
    for raw_item in value.split(","):
        item = raw_item.strip().lower().lstrip(".")
        if not item or item in seen:
            continue
        seen.add(item)
        items.append(item)
    return tuple(items)


_CONFIG_DIR = os.path.dirname(os.path.abspath(__file__))
_PROJECT_ROOT = os.path.dirname(_CONFIG_DIR)


class Config:
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")
    if not SECRET_KEY and _is_production:
        raise ValueError("SECRET_KEY environment variable is required in production.")
    if not SECRET_KEY:
        SECRET_KEY = "dev-secret-key-change-in-production"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Importer feature flags
    IMPORTER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_ENABLED"), default=True)
    IMPORTER_WORKER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_WORKER_ENABLED"), default=False)

    # Pipeline thresholds (percentages)
    IMPORTER_AUTO_APPROVE_THRESHOLD = _coerce_float(os.environ.get("IMPORTER_AUTO_APPROVE_THRESHOLD"), 95.0)
    IMPORTER_DOMAIN_DETECTION_THRESHOLD = _coerce_float(os.environ.get("IMPORTER_DOMAIN_DETECTION_THRESHOLD"), 30.0)
    IMPORTER_SAMPLE_ROWS = _coerce_int(os.environ.get("IMPORTER_SAMPLE_ROWS"), 5, minimum=1)

    # Uploads
    IMPORTER_ALLOWED_FILE_TYPES = _parse_list(os.environ.get("IMPORTER_ALLOWED_FILE_TYPES")) or ("csv", "xlsx", "json")
    IMPORTER_MAX_UPLOAD_MB = _coerce_int(os.environ.get("IMPORTER_MAX_UPLOAD_MB"), 25, minimum=1)

    # Listings
    IMPORTER_PAGE_SIZE_MAX = _coerce_int(os.environ.get("IMPORTER_PAGE_SIZE_MAX"), 100, minimum=1)
    IMPORTER_PAGE_SIZE_DEFAULT = min(
        _coerce_int(os.environ.get("IMPORTER_PAGE_SIZE_DEFAULT"), 20, minimum=1), IMPORTER_PAGE_SIZE_MAX
    )

    IMPORTER_CATALOG_DIR = os.environ.get("IMPORTER_CATALOG_DIR", os.path.join(_CONFIG_DIR, "catalog"))

    # Worker
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")
    IMPORTER_TASK_TIME_LIMIT = _coerce_int(os.environ.get("IMPORTER_TASK_TIME_LIMIT"), 15 * 60, minimum=1)
    IMPORTER_TASK_SOFT_TIME_LIMIT = _coerce_int(os.environ.get("IMPORTER_TASK_SOFT_TIME_LIMIT"), 12 * 60, minimum=1)


class DevelopmentConfig(Config):
    DEBUG = True
    instance_path = os.path.join(_PROJECT_ROOT, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URIs need forward slashes even on Windows
    db_path_normalized = os.path.join(instance_path, "smart_import_dev.db").replace("\\", "/")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", f"sqlite:///{db_path_normalized}")
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key-for-testing-only"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    IMPORTER_ENABLED = True
    IMPORTER_WORKER_ENABLED = False
    IMPORTER_AUTO_APPROVE_THRESHOLD = 95.0
    IMPORTER_DOMAIN_DETECTION_THRESHOLD = 30.0
    IMPORTER_SAMPLE_ROWS = 5
    IMPORTER_PAGE_SIZE_DEFAULT = 20
    IMPORTER_PAGE_SIZE_MAX = 100
    CELERY_BROKER_URL = "memory://"
    CELERY_RESULT_BACKEND = "cache+memory://"
    CELERY_CONFIG = {"task_always_eager": True, "task_eager_propagates": True}


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
