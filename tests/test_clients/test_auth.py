"""Tests for TokenProvider and Credential."""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import jwt
import pytest

from labpulse.clients.auth import CLIENT_ASSERTION_TYPE, Credential, TokenProvider
from labpulse.errors import AuthError

TOKEN_URL = "https://auth.example.com/oauth2/token"


def make_provider(private_pem: str, **kwargs) -> TokenProvider:
    return TokenProvider(
        client_id="client-123",
        token_url=TOKEN_URL,
        private_key=private_pem,
        **kwargs,
    )


class TestClientAssertion:
    """Signed JWT assertion contents."""

    def test_claims(self, private_pem, rsa_key):
        provider = make_provider(private_pem)

        assertion = provider.create_client_assertion()
        claims = jwt.decode(
            assertion,
            rsa_key.public_key(),
            algorithms=["RS384"],
            audience=TOKEN_URL,
        )

        assert claims["iss"] == "client-123"
        assert claims["sub"] == "client-123"
        assert claims["aud"] == TOKEN_URL
        assert claims["exp"] - claims["iat"] == 240
        assert claims["jti"]

    def test_unique_jti(self, private_pem, rsa_key):
        provider = make_provider(private_pem)

        first = jwt.decode(
            provider.create_client_assertion(), rsa_key.public_key(),
            algorithms=["RS384"], audience=TOKEN_URL,
        )
        second = jwt.decode(
            provider.create_client_assertion(), rsa_key.public_key(),
            algorithms=["RS384"], audience=TOKEN_URL,
        )

        assert first["jti"] != second["jti"]

    def test_header_kid_and_alg(self, private_pem):
        provider = make_provider(private_pem, key_id="my-key")

        header = jwt.get_unverified_header(provider.create_client_assertion())

        assert header["alg"] == "RS384"
        assert header["kid"] == "my-key"
        assert header["typ"] == "JWT"

    def test_invalid_key_raises_auth_error(self):
        provider = make_provider("not a pem key")

        with pytest.raises(AuthError, match="sign"):
            provider.create_client_assertion()


class TestAcquireToken:
    """Token endpoint exchange."""

    @pytest.mark.asyncio
    async def test_success(self, respx_mock, private_pem):
        route = respx_mock.post(TOKEN_URL).mock(
            return_value=httpx.Response(
                200,
                json={"access_token": "abc", "token_type": "bearer", "expires_in": 3600},
            )
        )

        async with make_provider(private_pem) as provider:
            credential = await provider.acquire_token()

        assert credential.access_token == "abc"
        assert not credential.is_expired()
        assert credential.expires_at > datetime.now(timezone.utc) + timedelta(minutes=59)

        form = parse_qs(route.calls.last.request.content.decode())
        assert form["grant_type"] == ["client_credentials"]
        assert form["client_assertion_type"] == [CLIENT_ASSERTION_TYPE]
        assert form["client_assertion"][0].count(".") == 2
        assert "scope" not in form

    @pytest.mark.asyncio
    async def test_scope_sent_when_configured(self, respx_mock, private_pem):
        route = respx_mock.post(TOKEN_URL).mock(
            return_value=httpx.Response(200, json={"access_token": "abc"})
        )

        async with make_provider(private_pem, scope="system/Observation.read") as provider:
            await provider.acquire_token()

        form = parse_qs(route.calls.last.request.content.decode())
        assert form["scope"] == ["system/Observation.read"]

    @pytest.mark.asyncio
    async def test_rejected_is_not_retried(self, respx_mock, private_pem):
        route = respx_mock.post(TOKEN_URL).mock(
            return_value=httpx.Response(503, text="unavailable")
        )

        async with make_provider(private_pem) as provider:
            with pytest.raises(AuthError) as exc_info:
                await provider.acquire_token()

        assert exc_info.value.status_code == 503
        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_invalid_client(self, respx_mock, private_pem):
        respx_mock.post(TOKEN_URL).mock(
            return_value=httpx.Response(400, json={"error": "invalid_client"})
        )

        async with make_provider(private_pem) as provider:
            with pytest.raises(AuthError) as exc_info:
                await provider.acquire_token()

        assert "invalid_client" in exc_info.value.response_body

    @pytest.mark.asyncio
    async def test_missing_access_token(self, respx_mock, private_pem):
        respx_mock.post(TOKEN_URL).mock(
            return_value=httpx.Response(200, json={"token_type": "bearer"})
        )

        async with make_provider(private_pem) as provider:
            with pytest.raises(AuthError, match="no access_token"):
                await provider.acquire_token()

    @pytest.mark.asyncio
    async def test_network_error(self, respx_mock, private_pem):
        respx_mock.post(TOKEN_URL).mock(side_effect=httpx.ConnectError("refused"))

        async with make_provider(private_pem) as provider:
            with pytest.raises(AuthError, match="Network error"):
                await provider.acquire_token()


class TestFromSettings:

    def test_reads_key_file(self, settings, private_pem):
        provider = TokenProvider.from_settings(settings)

        assert provider.client_id == "client-123"
        assert provider.token_url == TOKEN_URL
        assert provider.algorithm == "RS384"

    def test_missing_key_file(self, settings, tmp_path):
        broken = settings.model_copy(update={"private_key_path": str(tmp_path / "nope.pem")})

        with pytest.raises(AuthError, match="Cannot read private key"):
            TokenProvider.from_settings(broken)


class TestCredential:

    def test_authorization_header(self, credential):
        assert credential.authorization_header() == {"Authorization": "Bearer test-token"}

    def test_expired_credential_is_refused(self):
        expired = Credential(
            access_token="old",
            expires_at=datetime.now(timezone.utc) - timedelta(seconds=1),
        )

        assert expired.is_expired()
        with pytest.raises(AuthError, match="expired"):
            expired.authorization_header()
