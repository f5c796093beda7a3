"""Tests for configuration management."""

import pytest
from pydantic import ValidationError

from labpulse.config import Settings

REQUIRED = {
    "FHIR_CLIENT_ID": "client-123",
    "FHIR_GROUP_ID": "grp1",
    "PRIVATE_KEY_PATH": "/tmp/key.pem",
}


@pytest.fixture
def env(monkeypatch, tmp_path):
    """Required env vars set, cwd moved away from any real .env."""
    monkeypatch.chdir(tmp_path)
    for key, value in REQUIRED.items():
        monkeypatch.setenv(key, value)
    return monkeypatch


def test_settings_loads_from_env(env):
    """Settings should load FHIR credentials from environment variables."""
    settings = Settings()

    assert settings.fhir_client_id == "client-123"
    assert settings.fhir_group_id == "grp1"
    assert settings.private_key_path == "/tmp/key.pem"


def test_settings_has_defaults(env):
    """Optional fields fall back to sensible defaults."""
    settings = Settings()

    assert settings.log_level == "INFO"
    assert settings.jwt_algorithm == "RS384"
    assert settings.assertion_lifetime_seconds == 240
    assert settings.poll_interval_seconds == 30.0
    assert settings.export_type_filter == "Observation?category=laboratory"
    assert settings.smtp_host is None
    assert settings.max_poll_attempts is None


def test_settings_requires_fhir_fields(monkeypatch, tmp_path):
    """Settings should fail if required fields are missing."""
    for key in REQUIRED:
        monkeypatch.delenv(key, raising=False)
    (tmp_path / ".env").write_text("")
    monkeypatch.chdir(tmp_path)

    with pytest.raises(ValidationError) as exc_info:
        Settings()

    assert "fhir_client_id" in str(exc_info.value).lower()


def test_settings_reads_dotenv_file(monkeypatch, tmp_path):
    """Values in .env are picked up."""
    for key in REQUIRED:
        monkeypatch.delenv(key, raising=False)
    (tmp_path / ".env").write_text(
        "FHIR_CLIENT_ID=from-file\nFHIR_GROUP_ID=g\nPRIVATE_KEY_PATH=k.pem\n"
    )
    monkeypatch.chdir(tmp_path)

    assert Settings().fhir_client_id == "from-file"


def test_settings_validates_log_level(env):
    env.setenv("LOG_LEVEL", "INVALID")

    with pytest.raises(ValidationError) as exc_info:
        Settings()

    assert "log_level must be one of" in str(exc_info.value)


def test_settings_normalizes_log_level(env):
    env.setenv("LOG_LEVEL", "debug")
    assert Settings().log_level == "DEBUG"


def test_settings_rejects_symmetric_jwt_algorithm(env):
    """HS256 cannot be used for backend client assertions."""
    env.setenv("JWT_ALGORITHM", "HS256")

    with pytest.raises(ValidationError):
        Settings()


def test_settings_rejects_long_assertion_lifetime(env):
    env.setenv("ASSERTION_LIFETIME_SECONDS", "600")

    with pytest.raises(ValidationError):
        Settings()


def test_resource_types_and_recipients(env):
    env.setenv("EXPORT_TYPES", "Patient, Observation ,")
    env.setenv("EMAIL_TO", "a@example.com, b@example.com")

    settings = Settings()

    assert settings.resource_types == ["Patient", "Observation"]
    assert settings.recipients == ["a@example.com", "b@example.com"]
