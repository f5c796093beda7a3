"""Shared fixtures: signing keys, settings and credentials."""

from datetime import datetime, timedelta, timezone

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from labpulse.clients.auth import Credential
from labpulse.config import Settings

TOKEN_URL = "https://auth.example.com/oauth2/token"
FHIR_BASE = "https://fhir.example.com/R4"


@pytest.fixture(scope="session")
def rsa_key():
    """RSA key pair used to sign client assertions."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_pem(rsa_key) -> str:
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture
def key_file(tmp_path, private_pem):
    path = tmp_path / "private_key.pem"
    path.write_text(private_pem)
    return path


@pytest.fixture
def settings(key_file) -> Settings:
    """Settings pointing at the example hosts with fast polling."""
    return Settings(
        _env_file=None,
        fhir_client_id="client-123",
        fhir_group_id="grp1",
        private_key_path=str(key_file),
        token_url=TOKEN_URL,
        fhir_base_url=FHIR_BASE,
        poll_interval_seconds=0,
        export_timeout_seconds=5,
        run_timeout_seconds=10,
        rate_limit=100,
        smtp_host=None,
    )


@pytest.fixture
def credential() -> Credential:
    return Credential(
        access_token="test-token",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )
