"""SMART Backend Services authentication.

Exchanges a signed JWT client assertion for a short-lived bearer token
(client_credentials grant with a jwt-bearer client assertion).

Usage:
    from labpulse.clients.auth import TokenProvider

    async with TokenProvider.from_settings(settings) as provider:
        credential = await provider.acquire_token()
"""

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import jwt

from labpulse.clients.base import BaseAsyncClient
from labpulse.config import Settings
from labpulse.errors import AuthError

logger = logging.getLogger(__name__)

CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"
_DEFAULT_EXPIRES_IN = 300  # seconds, when the token response omits expires_in


@dataclass(frozen=True)
class Credential:
    """Bearer token held in memory for one pipeline run."""

    access_token: str
    expires_at: datetime
    token_type: str = "Bearer"
    scope: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        """Whether the token is past its expiry instant."""
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    def authorization_header(self) -> dict[str, str]:
        """Authorization header for this credential.

        Raises:
            AuthError: If the credential has expired
        """
        if self.is_expired():
            raise AuthError(f"Access token expired at {self.expires_at.isoformat()}")
        return {"Authorization": f"Bearer {self.access_token}"}


class TokenProvider(BaseAsyncClient):
    """Obtains bearer credentials from an OAuth2 token endpoint.

    No retries: a failed token request is fatal for the run.

    Args:
        client_id: Backend app client id (iss and sub claims)
        token_url: Token endpoint (aud claim and POST target)
        private_key: PEM-encoded signing key
        key_id: Optional kid header
        algorithm: Signing algorithm (default: RS384)
        assertion_lifetime: Seconds until the assertion expires (default: 240)
        scope: Optional scope requested with the token
        timeout: HTTP timeout in seconds
    """

    def __init__(
        self,
        client_id: str,
        token_url: str,
        private_key: str,
        key_id: str | None = None,
        algorithm: str = "RS384",
        assertion_lifetime: int = 240,
        scope: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(
            base_url=token_url,
            headers={"Accept": "application/json"},
            timeout=timeout,
            max_retries=0,
        )
        self.client_id = client_id
        self.token_url = token_url
        self.key_id = key_id
        self.algorithm = algorithm
        self.assertion_lifetime = assertion_lifetime
        self.scope = scope
        self._private_key = private_key

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenProvider":
        """Build a provider, reading the private key from settings.private_key_path.

        Raises:
            AuthError: If the key file cannot be read
        """
        try:
            private_key = Path(settings.private_key_path).read_text(encoding="utf-8")
        except OSError as e:
            raise AuthError(f"Cannot read private key {settings.private_key_path}: {e}") from e

        return cls(
            client_id=settings.fhir_client_id,
            token_url=settings.token_url,
            private_key=private_key,
            key_id=settings.jwt_key_id,
            algorithm=settings.jwt_algorithm,
            assertion_lifetime=settings.assertion_lifetime_seconds,
            scope=settings.token_scope,
            timeout=settings.http_timeout,
        )

    def create_client_assertion(self) -> str:
        """Sign a client assertion JWT.

        Raises:
            AuthError: If the key is invalid or signing fails
        """
        now = int(time.time())
        claims = {
            "iss": self.client_id,
            "sub": self.client_id,
            "aud": self.token_url,
            "jti": str(uuid.uuid4()),
            "iat": now,
            "exp": now + self.assertion_lifetime,
        }
        headers = {"typ": "JWT"}
        if self.key_id:
            headers["kid"] = self.key_id

        try:
            return jwt.encode(
                payload=claims,
                key=self._private_key,
                algorithm=self.algorithm,
                headers=headers,
            )
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise AuthError(f"Failed to sign client assertion: {e}") from e

    async def acquire_token(self) -> Credential:
        """Exchange a fresh client assertion for an access token.

        Returns:
            Credential valid for the duration reported by the server

        Raises:
            AuthError: On signing failure, rejected request or network error
        """
        form = {
            "grant_type": "client_credentials",
            "client_assertion_type": CLIENT_ASSERTION_TYPE,
            "client_assertion": self.create_client_assertion(),
        }
        if self.scope:
            form["scope"] = self.scope

        try:
            response = await self._send(
                "POST", self.token_url, data=form, error_cls=AuthError
            )
        except AuthError as e:
            logger.error("Token request failed: %s %s", e, e.response_body or "")
            raise

        try:
            body = response.json()
        except ValueError as e:
            raise AuthError(
                f"Invalid JSON from token endpoint: {e}",
                status_code=response.status_code,
                response_body=response.text[:500],
            ) from e

        access_token = body.get("access_token") if isinstance(body, dict) else None
        if not access_token:
            raise AuthError(
                "Token response has no access_token",
                status_code=response.status_code,
                response_body=response.text[:500],
            )

        expires_in = body.get("expires_in") or _DEFAULT_EXPIRES_IN
        try:
            expires_in = int(expires_in)
        except (TypeError, ValueError):
            expires_in = _DEFAULT_EXPIRES_IN

        credential = Credential(
            access_token=access_token,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            token_type=body.get("token_type", "Bearer"),
            scope=body.get("scope"),
        )
        logger.info(
            "Access token acquired (expires %s)", credential.expires_at.isoformat()
        )
        return credential
