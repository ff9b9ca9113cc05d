"""Tests for configuration validation."""

from datetime import date

import pytest

from taskgate.core.config import Settings, constants


def test_require_credential_with_valid_value() -> None:
    """Test require_credential returns value when credential is set."""
    settings = Settings(secret_key="s3cret")

    assert settings.require_credential("secret_key", "Principal token signing") == "s3cret"


def test_require_credential_with_empty_string_raises_error() -> None:
    """Test require_credential raises ValueError naming the env var."""
    settings = Settings(secret_key="")

    with pytest.raises(ValueError, match="SECRET_KEY"):
        settings.require_credential("secret_key", "Principal token signing")


def test_is_production() -> None:
    assert Settings(environment="Production").is_production
    assert not Settings(environment="development").is_production


def test_audit_limit_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("AUDIT_LOG_LIST_LIMIT", "25")

    assert Settings().audit_log_list_limit == 25


def test_due_date_horizon_is_one_calendar_year() -> None:
    assert date(2024, 2, 29) + constants.DUE_DATE_HORIZON == date(2025, 2, 28)
