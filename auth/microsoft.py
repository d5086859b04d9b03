"""
Microsoft OAuth configuration and token-endpoint exchanges.

Contains:
- MicrosoftOAuthSettings: OAuth configuration from environment
- MicrosoftAuthService: builds the authorize URL and performs the two
  token-endpoint exchanges (authorization code, refresh token)
- TokenSet / token_response_to_storage_format: parsed token-endpoint response
- decode_id_token_claims: reads the account claims out of an ID token
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any
from urllib.parse import urlencode

import httpx
import jwt
from dotenv import load_dotenv

from auth.errors import ConfigurationError, ExternalAuthError

load_dotenv()

logger = logging.getLogger(__name__)

AUTHORITY_HOST = "https://login.microsoftonline.com"
METADATA_SUFFIX = "/v2.0/.well-known/openid-configuration"
DEFAULT_SCOPES = (
    "openid",
    "profile",
    "email",
    "offline_access",
    "User.Read",
    "Files.ReadWrite.All",
    "Mail.Read",
)
DEFAULT_TIMEOUT_SECONDS = 10.0


# =============================================================================
# SETTINGS
# =============================================================================

@dataclass(frozen=True)
class MicrosoftOAuthSettings:
    """Configuration for Microsoft OAuth."""

    client_id: str
    client_secret: str
    tenant_id: str
    redirect_uri: str
    scopes: tuple[str, ...] = DEFAULT_SCOPES
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @property
    def authority(self) -> str:
        """Microsoft login authority URL."""
        return f"{AUTHORITY_HOST}/{self.tenant_id}"

    @property
    def authorize_endpoint(self) -> str:
        return f"{self.authority}/oauth2/v2.0/authorize"

    @property
    def token_endpoint(self) -> str:
        return f"{self.authority}/oauth2/v2.0/token"

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)


def _tenant_from_metadata(metadata_url: str) -> str | None:
    """Extract the tenant segment from an identity metadata URL."""
    trimmed = metadata_url.strip()
    if not trimmed.startswith(AUTHORITY_HOST + "/"):
        return None
    path = trimmed[len(AUTHORITY_HOST) + 1:]
    if path.endswith(METADATA_SUFFIX):
        path = path[: -len(METADATA_SUFFIX)]
    tenant = path.split("/", 1)[0]
    return tenant or None


@lru_cache(maxsize=1)
def get_microsoft_oauth_settings() -> MicrosoftOAuthSettings:
    """Load Microsoft OAuth settings from environment variables."""
    client_id = os.getenv("MICROSOFT_CLIENT_ID")
    client_secret = os.getenv("MICROSOFT_CLIENT_SECRET")
    redirect_uri = os.getenv("MICROSOFT_REDIRECT_URI")
    metadata_url = os.getenv("MICROSOFT_IDENTITY_METADATA")
    tenant_id = os.getenv("MICROSOFT_TENANT_ID") or "common"
    scopes_raw = os.getenv("MICROSOFT_SCOPES", "")
    timeout_raw = os.getenv("MICROSOFT_HTTP_TIMEOUT_SECONDS")

    if not client_id or not client_secret or not redirect_uri:
        missing = [
            name
            for name, value in (
                ("MICROSOFT_CLIENT_ID", client_id),
                ("MICROSOFT_CLIENT_SECRET", client_secret),
                ("MICROSOFT_REDIRECT_URI", redirect_uri),
            )
            if not value
        ]
        raise ConfigurationError(f"Missing Microsoft OAuth env vars: {', '.join(missing)}")

    if metadata_url:
        tenant_from_metadata = _tenant_from_metadata(metadata_url)
        if tenant_from_metadata is None:
            raise ConfigurationError(
                f"MICROSOFT_IDENTITY_METADATA is not a {AUTHORITY_HOST} metadata URL"
            )
        tenant_id = tenant_from_metadata

    # Parse space-separated scopes
    scopes = tuple(s.strip() for s in scopes_raw.split() if s.strip()) or DEFAULT_SCOPES

    try:
        timeout = float(timeout_raw) if timeout_raw else DEFAULT_TIMEOUT_SECONDS
    except ValueError as exc:
        raise ConfigurationError("MICROSOFT_HTTP_TIMEOUT_SECONDS must be a number") from exc

    return MicrosoftOAuthSettings(
        client_id=client_id,
        client_secret=client_secret,
        tenant_id=tenant_id,
        redirect_uri=redirect_uri,
        scopes=scopes,
        timeout_seconds=timeout,
    )


# =============================================================================
# TOKEN CONVERSION
# =============================================================================

@dataclass(frozen=True)
class TokenSet:
    """Tokens returned by the Microsoft token endpoint."""

    access_token: str
    refresh_token: str | None
    id_token: str | None
    token_type: str = "Bearer"
    scope: str | None = None
    expires_in: int | None = None
    ext_expires_in: int | None = None


def token_response_to_storage_format(token_result: dict[str, Any]) -> TokenSet:
    """
    Convert a token-endpoint JSON response into a TokenSet.

    Args:
        token_result: Raw token endpoint response

    Returns:
        Parsed tokens ready for encryption and storage

    Raises:
        ExternalAuthError: If the response carries no access token
    """
    access_token = token_result.get("access_token")
    if not access_token:
        raise ExternalAuthError(
            "Microsoft token response did not include an access token",
            detail={"keys": sorted(token_result)},
        )
    return TokenSet(
        access_token=access_token,
        refresh_token=token_result.get("refresh_token"),
        id_token=token_result.get("id_token"),
        token_type=token_result.get("token_type", "Bearer"),
        scope=token_result.get("scope"),
        expires_in=token_result.get("expires_in"),
        ext_expires_in=token_result.get("ext_expires_in"),
    )


def decode_id_token_claims(id_token: str) -> dict[str, Any]:
    """
    Read the claims of an ID token without verifying its signature.

    The token is only ever taken straight from the token endpoint response,
    so it is used to learn which account consented, never to authenticate.
    """
    try:
        return jwt.decode(id_token, options={"verify_signature": False})
    except jwt.PyJWTError as exc:
        raise ExternalAuthError("Microsoft returned a malformed ID token") from exc


def account_email_from_claims(claims: dict[str, Any]) -> str | None:
    """Pick the account address out of ID token claims."""
    for claim in ("preferred_username", "upn", "email"):
        value = claims.get(claim)
        if value and "@" in value:
            return value
    return None


# =============================================================================
# AUTH SERVICE
# =============================================================================

class MicrosoftAuthService:
    """Talks to the Microsoft identity platform authorize and token endpoints."""

    def __init__(
        self,
        settings: MicrosoftOAuthSettings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_microsoft_oauth_settings()
        self._transport = transport

    @property
    def settings(self) -> MicrosoftOAuthSettings:
        return self._settings

    def build_authorization_url(self, redirect_override: str | None = None) -> str:
        """
        Generate the Microsoft authorization URL.

        Args:
            redirect_override: Redirect URI to use instead of the configured one

        Returns:
            Authorization URL to send the user to
        """
        query = {
            "client_id": self._settings.client_id,
            "response_type": "code",
            "redirect_uri": redirect_override or self._settings.redirect_uri,
            "response_mode": "query",
            "scope": self._settings.scope,
        }
        return f"{self._settings.authorize_endpoint}?{urlencode(query)}"

    async def exchange_code_for_token(
        self, code: str, redirect_uri: str | None = None
    ) -> TokenSet:
        """
        Exchange an authorization code for tokens.

        Raises:
            ExternalAuthError: If the provider rejects the code or the response
                is missing any of the three tokens
        """
        if not code:
            raise ExternalAuthError("Authorization code is required")

        tokens = await self._post_token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri or self._settings.redirect_uri,
            }
        )
        if not tokens.refresh_token or not tokens.id_token:
            raise ExternalAuthError(
                "Microsoft token response is missing refresh or ID token; "
                "check that offline_access and openid are requested"
            )
        return tokens

    async def refresh_token(self, refresh_token: str) -> TokenSet:
        """
        Redeem a refresh token for new tokens.

        The returned refresh token may differ from the one sent and must
        replace it in storage.
        """
        if not refresh_token:
            raise ExternalAuthError("Refresh token is required")

        return await self._post_token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "redirect_uri": self._settings.redirect_uri,
            }
        )

    async def _post_token_request(self, grant: dict[str, str]) -> TokenSet:
        form = {
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
            "scope": self._settings.scope,
            **grant,
        }
        grant_type = grant["grant_type"]

        try:
            async with httpx.AsyncClient(
                timeout=self._settings.timeout_seconds,
                transport=self._transport,
            ) as client:
                resp = await client.post(self._settings.token_endpoint, data=form)
        except httpx.HTTPError as exc:
            logger.error("Microsoft token endpoint unreachable (%s): %s", grant_type, exc)
            raise ExternalAuthError(
                f"Microsoft token endpoint unreachable: {exc.__class__.__name__}"
            ) from exc

        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if resp.status_code != 200 or "error" in payload:
            detail = {
                key: payload[key]
                for key in ("error", "error_description", "error_codes", "trace_id", "correlation_id")
                if key in payload
            }
            detail["status_code"] = resp.status_code
            error_desc = payload.get("error_description") or payload.get("error") or resp.text[:200]
            logger.error("Microsoft %s exchange failed: %s", grant_type, error_desc)
            # A rejected authorization code is the caller's error, not an outage
            client_error = grant_type == "authorization_code" and 400 <= resp.status_code < 500
            raise ExternalAuthError(
                f"Microsoft Auth Error: {error_desc}",
                detail=detail,
                status_code=400 if client_error else None,
            )

        return token_response_to_storage_format(payload)


__all__ = [
    "MicrosoftOAuthSettings",
    "MicrosoftAuthService",
    "TokenSet",
    "get_microsoft_oauth_settings",
    "token_response_to_storage_format",
    "decode_id_token_claims",
    "account_email_from_claims",
]
