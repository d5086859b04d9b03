"""Session token routes for the application's own users."""

from __future__ import annotations

import logging
import os

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse

from api.dependencies import ACCESS_COOKIE, REFRESH_COOKIE, get_session_issuer
from api.models import RefreshSessionRequest
from api.responses import api_response
from auth.errors import InvalidTokenError
from auth.session import SessionTokenIssuer, SessionTokenPair

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Session"])


def _cookie_secure() -> bool:
    return os.getenv("COOKIE_SECURE", "true").lower() in ("true", "1", "yes")


def _set_session_cookies(response: JSONResponse, pair: SessionTokenPair, issuer: SessionTokenIssuer) -> None:
    secure = _cookie_secure()
    response.set_cookie(
        ACCESS_COOKIE,
        pair.access_token,
        max_age=int(issuer.settings.access_ttl.total_seconds()),
        httponly=True,
        secure=secure,
        samesite="lax",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        pair.refresh_token,
        max_age=int(issuer.settings.refresh_ttl.total_seconds()),
        httponly=True,
        secure=secure,
        samesite="lax",
    )


@router.post("/refresh")
async def refresh_session(
    request: Request,
    payload: RefreshSessionRequest | None = Body(None),
    issuer: SessionTokenIssuer = Depends(get_session_issuer),
) -> JSONResponse:
    """
    Exchange a refresh token for a new access/refresh pair.

    The token comes from the body, or the ``refresh`` cookie when the body
    has none. Both tokens are returned and set as cookies.
    """
    token = (payload.token if payload else None) or request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise InvalidTokenError("No refresh token on request")

    pair = await issuer.refresh(token)
    response = api_response(
        data={"accessToken": pair.access_token, "refreshToken": pair.refresh_token},
        message="Tokens refreshed",
    )
    _set_session_cookies(response, pair, issuer)
    return response


@router.delete("/sign-out")
async def sign_out() -> JSONResponse:
    """Clear the session cookies. Issued tokens stay valid until they expire."""
    response = api_response(message="Signed out")
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)
    return response
