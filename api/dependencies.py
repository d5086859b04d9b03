"""
Shared FastAPI dependencies.

Services are created lazily on first use and reused for the life of the
process; the credential service in particular must be a single instance so
its per-principal refresh locks are shared by all requests.
"""

import logging

from fastapi import Depends, Request

from auth.credentials import MicrosoftCredentialService
from auth.errors import InvalidTokenError
from auth.graph import MicrosoftGraphClient
from auth.principal import ByEmail, ByUserId
from auth.session import SessionClaims, SessionTokenIssuer, TokenClass

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "access"
REFRESH_COOKIE = "refresh"

_credential_service: MicrosoftCredentialService | None = None
_graph_client: MicrosoftGraphClient | None = None
_session_issuer: SessionTokenIssuer | None = None


def get_credential_service() -> MicrosoftCredentialService:
    """Get or create the Microsoft credential service."""
    global _credential_service
    if _credential_service is None:
        _credential_service = MicrosoftCredentialService()
    return _credential_service


def get_graph_client(
    credentials: MicrosoftCredentialService = Depends(get_credential_service),
) -> MicrosoftGraphClient:
    """Get or create the Graph client bound to the shared credential service."""
    global _graph_client
    if _graph_client is None:
        _graph_client = MicrosoftGraphClient(credentials)
    return _graph_client


def get_session_issuer() -> SessionTokenIssuer:
    """Get or create the session token issuer."""
    global _session_issuer
    if _session_issuer is None:
        _session_issuer = SessionTokenIssuer()
    return _session_issuer


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


def _token_from_request(request: Request) -> str | None:
    # An explicit header wins over a possibly stale cookie
    return _bearer_token(request) or request.cookies.get(ACCESS_COOKIE) or None


async def get_current_session(
    request: Request,
    issuer: SessionTokenIssuer = Depends(get_session_issuer),
) -> SessionClaims:
    """
    Verify the caller's access token.

    Reads ``Authorization: Bearer`` first, then the ``access`` cookie.

    Raises:
        InvalidTokenError: No token, or the token does not verify as access
    """
    token = _token_from_request(request)
    if not token:
        raise InvalidTokenError("No access token on request")
    return issuer.verify(token, TokenClass.ACCESS)


async def get_current_principal(session: SessionClaims = Depends(get_current_session)) -> ByUserId:
    return ByUserId(session.user_id)


async def get_plugin_principal(
    request: Request,
    issuer: SessionTokenIssuer = Depends(get_session_issuer),
) -> ByEmail:
    """
    Resolve the Microsoft account an Outlook add-in request acts for.

    Only a plugin token from ``Authorization: Bearer`` is accepted; session
    cookies are never read here.

    Raises:
        InvalidTokenError: No token, or the token does not verify as plugin
    """
    token = _bearer_token(request)
    if not token:
        raise InvalidTokenError("No plugin token on request")
    claims = issuer.verify(token, TokenClass.PLUGIN)
    try:
        return ByEmail(claims.email or claims.user_id)
    except ValueError as exc:
        raise InvalidTokenError("Plugin token carries no account address") from exc


def reset_dependencies() -> None:
    """Drop cached services (tests and settings reloads)."""
    global _credential_service, _graph_client, _session_issuer
    _credential_service = None
    _graph_client = None
    _session_issuer = None


__all__ = [
    "ACCESS_COOKIE",
    "REFRESH_COOKIE",
    "get_credential_service",
    "get_graph_client",
    "get_session_issuer",
    "get_current_session",
    "get_current_principal",
    "get_plugin_principal",
    "reset_dependencies",
]
