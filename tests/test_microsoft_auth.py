"""
Tests for the Microsoft OAuth exchange client (auth/microsoft.py).

The token endpoint is the FakeMicrosoft transport from conftest.
"""

from urllib.parse import parse_qsl, urlsplit

import httpx
import pytest

from auth.errors import ConfigurationError, ExternalAuthError
from auth.microsoft import (
    MicrosoftAuthService,
    account_email_from_claims,
    decode_id_token_claims,
    get_microsoft_oauth_settings,
    token_response_to_storage_format,
)
from conftest import TEST_REDIRECT_URI, make_id_token


@pytest.fixture
def clear_settings_cache():
    get_microsoft_oauth_settings.cache_clear()
    yield
    get_microsoft_oauth_settings.cache_clear()


@pytest.fixture
def oauth_env(monkeypatch, clear_settings_cache):
    monkeypatch.setenv("MICROSOFT_CLIENT_ID", "env-client")
    monkeypatch.setenv("MICROSOFT_CLIENT_SECRET", "env-secret")
    monkeypatch.setenv("MICROSOFT_REDIRECT_URI", "https://env.example.com/cb")
    for name in ("MICROSOFT_TENANT_ID", "MICROSOFT_IDENTITY_METADATA", "MICROSOFT_SCOPES", "MICROSOFT_HTTP_TIMEOUT_SECONDS"):
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    def test_defaults(self, oauth_env):
        settings = get_microsoft_oauth_settings()
        assert settings.tenant_id == "common"
        assert settings.token_endpoint == "https://login.microsoftonline.com/common/oauth2/v2.0/token"
        assert "offline_access" in settings.scopes
        assert settings.timeout_seconds == 10.0

    def test_tenant_from_identity_metadata(self, oauth_env, monkeypatch):
        monkeypatch.setenv(
            "MICROSOFT_IDENTITY_METADATA",
            "https://login.microsoftonline.com/contoso.onmicrosoft.com/v2.0/.well-known/openid-configuration",
        )
        assert get_microsoft_oauth_settings().tenant_id == "contoso.onmicrosoft.com"

    def test_scopes_override(self, oauth_env, monkeypatch):
        monkeypatch.setenv("MICROSOFT_SCOPES", "openid offline_access User.Read")
        assert get_microsoft_oauth_settings().scope == "openid offline_access User.Read"

    def test_missing_values_are_all_listed(self, monkeypatch, clear_settings_cache):
        for name in ("MICROSOFT_CLIENT_ID", "MICROSOFT_CLIENT_SECRET", "MICROSOFT_REDIRECT_URI"):
            monkeypatch.delenv(name, raising=False)
        with pytest.raises(ConfigurationError) as exc_info:
            get_microsoft_oauth_settings()
        message = str(exc_info.value)
        assert "MICROSOFT_CLIENT_ID" in message and "MICROSOFT_REDIRECT_URI" in message

    def test_bad_timeout(self, oauth_env, monkeypatch):
        monkeypatch.setenv("MICROSOFT_HTTP_TIMEOUT_SECONDS", "soon")
        with pytest.raises(ConfigurationError):
            get_microsoft_oauth_settings()


class TestAuthorizationUrl:
    def test_exact_query(self, auth_service, oauth_settings):
        url = auth_service.build_authorization_url()
        parts = urlsplit(url)
        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == oauth_settings.authorize_endpoint
        assert parse_qsl(parts.query) == [
            ("client_id", "client-id"),
            ("response_type", "code"),
            ("redirect_uri", TEST_REDIRECT_URI),
            ("response_mode", "query"),
            ("scope", oauth_settings.scope),
        ]

    def test_redirect_override(self, auth_service):
        query = dict(parse_qsl(urlsplit(auth_service.build_authorization_url("https://addin.example/cb")).query))
        assert query["redirect_uri"] == "https://addin.example/cb"

    def test_no_network_access(self, auth_service, microsoft):
        auth_service.build_authorization_url()
        assert microsoft.token_requests == []


class TestCodeExchange:
    @pytest.mark.asyncio
    async def test_form_fields(self, auth_service, microsoft, oauth_settings):
        tokens = await auth_service.exchange_code_for_token("the-code")

        assert microsoft.token_requests == [
            {
                "client_id": "client-id",
                "client_secret": "client-secret",
                "scope": oauth_settings.scope,
                "grant_type": "authorization_code",
                "code": "the-code",
                "redirect_uri": TEST_REDIRECT_URI,
            }
        ]
        assert tokens.access_token == "access-1"
        assert tokens.refresh_token == "refresh-1"
        assert tokens.id_token

    @pytest.mark.asyncio
    async def test_provider_error_detail(self, auth_service, microsoft):
        microsoft.script_token_response(
            400,
            {
                "error": "invalid_grant",
                "error_description": "AADSTS70008: The provided authorization code has expired.",
                "error_codes": [70008],
                "trace_id": "trace-1",
                "correlation_id": "corr-1",
            },
        )
        with pytest.raises(ExternalAuthError) as exc_info:
            await auth_service.exchange_code_for_token("stale-code")

        detail = exc_info.value.detail
        assert detail["error"] == "invalid_grant"
        assert detail["error_codes"] == [70008]
        assert detail["trace_id"] == "trace-1"
        assert detail["status_code"] == 400
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_provider_outage_is_gateway_error(self, auth_service, microsoft):
        microsoft.script_token_response(503, {"error": "temporarily_unavailable"})
        with pytest.raises(ExternalAuthError) as exc_info:
            await auth_service.exchange_code_for_token("code")
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_incomplete_token_set_is_rejected(self, auth_service, microsoft):
        microsoft.script_token_response(200, microsoft.issue_tokens(include_id=False))
        with pytest.raises(ExternalAuthError):
            await auth_service.exchange_code_for_token("code")

    @pytest.mark.asyncio
    async def test_timeout_is_external_error(self, auth_service, microsoft):
        microsoft.raise_on_token = httpx.ConnectTimeout("timed out")
        with pytest.raises(ExternalAuthError):
            await auth_service.exchange_code_for_token("code")

    @pytest.mark.asyncio
    async def test_empty_code(self, auth_service, microsoft):
        with pytest.raises(ExternalAuthError):
            await auth_service.exchange_code_for_token("")
        assert microsoft.token_requests == []


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_form_fields(self, auth_service, microsoft):
        tokens = await auth_service.refresh_token("refresh-0")
        form = microsoft.token_requests[0]
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "refresh-0"
        assert form["client_secret"] == "client-secret"
        assert tokens.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_refresh_without_rotation(self, auth_service, microsoft):
        microsoft.script_token_response(200, microsoft.issue_tokens(rotate_refresh=False))
        tokens = await auth_service.refresh_token("refresh-0")
        assert tokens.refresh_token is None

    @pytest.mark.asyncio
    async def test_revoked_refresh_token(self, auth_service, microsoft):
        microsoft.script_token_response(400, {"error": "invalid_grant", "error_description": "revoked"})
        with pytest.raises(ExternalAuthError) as exc_info:
            await auth_service.refresh_token("refresh-0")
        assert exc_info.value.status_code == 502


class TestTokenParsing:
    def test_missing_access_token(self):
        with pytest.raises(ExternalAuthError):
            token_response_to_storage_format({"refresh_token": "r"})

    def test_id_token_claims(self):
        claims = decode_id_token_claims(make_id_token("Carol@Contoso.com"))
        assert account_email_from_claims(claims) == "Carol@Contoso.com"

    def test_claim_fallbacks(self):
        assert account_email_from_claims({"upn": "u@contoso.com"}) == "u@contoso.com"
        assert account_email_from_claims({"preferred_username": "no-at", "email": "e@contoso.com"}) == "e@contoso.com"
        assert account_email_from_claims({}) is None

    def test_malformed_id_token(self):
        with pytest.raises(ExternalAuthError):
            decode_id_token_claims("not-a-jwt")


def test_service_uses_injected_settings(oauth_settings):
    assert MicrosoftAuthService(oauth_settings).settings is oauth_settings
