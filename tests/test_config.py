import pytest

from config.base import _coerce_bool, _coerce_float, _coerce_int, _parse_list
from config.validation import validate_and_exit, validate_environment


def test_coercion_helpers():
    assert _coerce_bool("YES") is True
    assert _coerce_bool("off", default=True) is False
    assert _coerce_bool("maybe", default=True) is True
    assert _coerce_int("12", 5) == 12
    assert _coerce_int("-3", 5, minimum=1) == 5
    assert _coerce_int("abc", 5) == 5
    assert _coerce_float("97.5", 95.0) == 97.5
    assert _coerce_float("150", 95.0) == 95.0
    assert _parse_list(" CSV,.xlsx, csv ,json") == ("csv", "xlsx", "json")


def test_validate_environment_is_noop_outside_production():
    assert validate_environment("testing") == (True, [])


def test_validate_environment_reports_missing_production_settings(monkeypatch, tmp_path):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("CELERY_BROKER_URL", raising=False)
    monkeypatch.setenv("IMPORTER_WORKER_ENABLED", "true")
    monkeypatch.setenv("IMPORTER_CATALOG_DIR", str(tmp_path / "missing"))

    is_valid, errors = validate_environment("production")

    assert is_valid is False
    assert len(errors) == 4
    assert any("CELERY_BROKER_URL" in error for error in errors)

    with pytest.raises(SystemExit):
        validate_and_exit("production")


def test_validate_environment_accepts_complete_production_settings(monkeypatch, tmp_path):
    monkeypatch.setenv("SECRET_KEY", "s3cret")
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/imports")
    monkeypatch.setenv("IMPORTER_WORKER_ENABLED", "false")
    monkeypatch.setenv("IMPORTER_CATALOG_DIR", str(tmp_path))

    assert validate_environment("production") == (True, [])
