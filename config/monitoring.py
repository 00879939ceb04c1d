# config/monitoring.py

import os


def _env_flag(name, default="true"):
    return os.environ.get(name, default).lower() == "true"


class MonitoringConfig:
    """Log output settings consumed by ``setup_logging``."""

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")  # 'json' or 'text'
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_NAME = os.environ.get("LOG_FILE_NAME", "smart_import.log")
    LOG_FILE_MAX_BYTES = int(os.environ.get("LOG_FILE_MAX_BYTES", 10 * 1024 * 1024))
    LOG_FILE_BACKUP_COUNT = int(os.environ.get("LOG_FILE_BACKUP_COUNT", 10))

    ENABLE_FILE_LOGGING = _env_flag("ENABLE_FILE_LOGGING")
    ENABLE_CONSOLE_LOGGING = _env_flag("ENABLE_CONSOLE_LOGGING")

    APP_NAME = os.environ.get("APP_NAME", "smart-import")
    APP_VERSION = os.environ.get("APP_VERSION", "0.1.0")


class DevelopmentMonitoringConfig(MonitoringConfig):
    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "text"


class ProductionMonitoringConfig(MonitoringConfig):
    LOG_FORMAT = "json"
    # stdout is collected by the container runtime
    ENABLE_CONSOLE_LOGGING = False


class TestingMonitoringConfig(MonitoringConfig):
    """Quiet logging for the test suite; caplog still sees records."""

    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False
