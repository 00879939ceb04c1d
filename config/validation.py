# config/validation.py

"""
Startup checks for the environment a production deployment must provide.
"""

import os
import sys
from typing import List, Tuple

REQUIRED_IN_PRODUCTION = {
    "SECRET_KEY": "SECRET_KEY is required in production.",
    "DATABASE_URL": "DATABASE_URL is required in production. Set it to your PostgreSQL connection string.",
}

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(name: str) -> bool:
    return os.environ.get(name, "false").strip().lower() in _TRUTHY


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Check the process environment for settings production cannot run without.

    Returns ``(is_valid, errors)``. Non-production environments always pass.
    """
    flask_env = flask_env or os.environ.get("FLASK_ENV", "development")
    if flask_env != "production":
        return True, []

    errors = [message for name, message in REQUIRED_IN_PRODUCTION.items() if not os.environ.get(name)]

    if _flag("IMPORTER_WORKER_ENABLED") and not os.environ.get("CELERY_BROKER_URL"):
        errors.append("CELERY_BROKER_URL is required when IMPORTER_WORKER_ENABLED=true in production")

    catalog_dir = os.environ.get("IMPORTER_CATALOG_DIR")
    if catalog_dir and not os.path.isdir(catalog_dir):
        errors.append(f"IMPORTER_CATALOG_DIR points to a missing directory: {catalog_dir}")

    return not errors, errors


def validate_and_exit(flask_env: str = None) -> None:
    """Print every validation error to stderr and exit with status 1 if any were found."""
    is_valid, errors = validate_environment(flask_env)
    if is_valid:
        return

    banner = "=" * 80
    lines = [banner, "ENVIRONMENT VALIDATION FAILED", banner]
    lines.extend(f"{index}. {error}" for index, error in enumerate(errors, 1))
    lines.append(banner)
    print("\n".join(lines), file=sys.stderr)
    sys.exit(1)
