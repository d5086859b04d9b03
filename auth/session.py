"""
Session tokens for the application's own users.

HS256 JWT classes:
- access: short lived (15 minutes by default), sent on every request
- refresh: long lived (7 days by default), only redeemable at /auth/refresh
- plugin: issued to the Outlook add-in for the Microsoft account it connected
  (60 minutes by default); proves that account on email uploads

Access and refresh tokens use distinct secrets. Plugin tokens use their own
secret when OUTLOOK_PLUGIN_TOKEN_SECRET is set, the access secret otherwise.

Tokens are stateless; there is no revocation list. A token of one class never
verifies as another because the ``token_type`` claim is always checked.
"""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Mapping

import jwt
from dotenv import load_dotenv

from auth.errors import ConfigurationError, InvalidTokenError, PrincipalNotFound

load_dotenv()

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
DEFAULT_ACCESS_MINUTES = 15
DEFAULT_REFRESH_DAYS = 7
DEFAULT_PLUGIN_MINUTES = 60


class TokenClass(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"
    PLUGIN = "plugin"


@dataclass(frozen=True)
class SessionTokenSettings:
    access_secret: str
    refresh_secret: str
    access_ttl: timedelta = timedelta(minutes=DEFAULT_ACCESS_MINUTES)
    refresh_ttl: timedelta = timedelta(days=DEFAULT_REFRESH_DAYS)
    plugin_secret: str | None = None
    plugin_ttl: timedelta = timedelta(minutes=DEFAULT_PLUGIN_MINUTES)
    algorithm: str = ALGORITHM

    def secret_for(self, token_class: TokenClass) -> str:
        if token_class is TokenClass.ACCESS:
            return self.access_secret
        if token_class is TokenClass.PLUGIN:
            # Shares the access secret unless configured; token_type still separates them
            return self.plugin_secret or self.access_secret
        return self.refresh_secret

    def ttl_for(self, token_class: TokenClass) -> timedelta:
        if token_class is TokenClass.ACCESS:
            return self.access_ttl
        if token_class is TokenClass.PLUGIN:
            return self.plugin_ttl
        return self.refresh_ttl


def _positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


@lru_cache(maxsize=1)
def get_session_token_settings() -> SessionTokenSettings:
    """Load session token settings from environment variables."""
    access_secret = os.getenv("ACCESS_TOKEN_SECRET")
    refresh_secret = os.getenv("REFRESH_TOKEN_SECRET")

    missing = [
        name
        for name, value in (
            ("ACCESS_TOKEN_SECRET", access_secret),
            ("REFRESH_TOKEN_SECRET", refresh_secret),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError(f"Missing session token env vars: {', '.join(missing)}")
    if access_secret == refresh_secret:
        raise ConfigurationError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ")

    return SessionTokenSettings(
        access_secret=access_secret,  # type: ignore[arg-type]
        refresh_secret=refresh_secret,  # type: ignore[arg-type]
        access_ttl=timedelta(minutes=_positive_int("ACCESS_TOKEN_EXPIRES_MINUTES", DEFAULT_ACCESS_MINUTES)),
        refresh_ttl=timedelta(days=_positive_int("REFRESH_TOKEN_EXPIRES_DAYS", DEFAULT_REFRESH_DAYS)),
        plugin_secret=os.getenv("OUTLOOK_PLUGIN_TOKEN_SECRET") or None,
        plugin_ttl=timedelta(
            minutes=_positive_int("OUTLOOK_PLUGIN_TOKEN_EXPIRES_MINUTES", DEFAULT_PLUGIN_MINUTES)
        ),
    )


@dataclass(frozen=True)
class SessionClaims:
    """Verified claims of a session token."""

    user_id: str
    email: str | None
    role: str | None
    token_class: TokenClass
    expires_at: datetime


@dataclass(frozen=True)
class SessionTokenPair:
    access_token: str
    refresh_token: str

    def __repr__(self) -> str:
        return "SessionTokenPair(<redacted>)"


class SessionTokenIssuer:
    """Issues, verifies and refreshes session token pairs."""

    def __init__(self, settings: SessionTokenSettings | None = None, users: Any = None) -> None:
        self._settings = settings or get_session_token_settings()
        self._users = users

    @property
    def settings(self) -> SessionTokenSettings:
        return self._settings

    def _get_users(self):
        if self._users is None:
            from db.storage.users import UserStorage
            self._users = UserStorage()
        return self._users

    def _encode(self, user: Mapping[str, Any], token_class: TokenClass, now: datetime) -> str:
        payload = {
            "id": str(user["id"]),
            "email": user.get("email"),
            "role": user.get("role"),
            "token_type": token_class.value,
            "iat": now,
            "exp": now + self._settings.ttl_for(token_class),
        }
        return jwt.encode(payload, self._settings.secret_for(token_class), algorithm=self._settings.algorithm)

    def issue(self, user: Mapping[str, Any]) -> SessionTokenPair:
        """
        Issue an access/refresh pair for a user record.

        Args:
            user: Mapping with ``id`` and optionally ``email`` and ``role``
        """
        if not user.get("id"):
            raise ValueError("User record has no id")
        now = datetime.now(timezone.utc)
        return SessionTokenPair(
            access_token=self._encode(user, TokenClass.ACCESS, now),
            refresh_token=self._encode(user, TokenClass.REFRESH, now),
        )

    def issue_plugin_token(self, email: str) -> str:
        """
        Issue a plugin token for a Microsoft account connected through the
        Outlook add-in. ``email`` is the normalized principal key.
        """
        if not email:
            raise ValueError("Plugin token needs an account address")
        now = datetime.now(timezone.utc)
        return self._encode({"id": email, "email": email}, TokenClass.PLUGIN, now)

    def verify(self, token: str, token_class: TokenClass) -> SessionClaims:
        """
        Verify a token as the given class.

        Raises:
            InvalidTokenError: Bad signature, malformed, expired or wrong class.
                The specific reason is only logged.
        """
        if not token:
            raise InvalidTokenError("Session token is missing")
        try:
            payload = jwt.decode(
                token,
                self._settings.secret_for(token_class),
                algorithms=[self._settings.algorithm],
                options={"require": ["exp", "id", "token_type"]},
            )
        except jwt.ExpiredSignatureError as exc:
            logger.debug("Rejected %s token: expired", token_class.value)
            raise InvalidTokenError("Session token expired") from exc
        except jwt.PyJWTError as exc:
            logger.debug("Rejected %s token: %s", token_class.value, exc)
            raise InvalidTokenError("Session token is invalid") from exc

        if payload.get("token_type") != token_class.value:
            logger.debug(
                "Rejected %s token: carries token_type=%r", token_class.value, payload.get("token_type")
            )
            raise InvalidTokenError("Session token has the wrong class")

        return SessionClaims(
            user_id=str(payload["id"]),
            email=payload.get("email"),
            role=payload.get("role"),
            token_class=token_class,
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )

    async def refresh(self, refresh_token: str) -> SessionTokenPair:
        """
        Re-issue both tokens from a valid refresh token.

        The user is looked up again so the new tokens carry the current email
        and role.

        Raises:
            InvalidTokenError: The refresh token does not verify
            PrincipalNotFound: The user no longer exists
        """
        claims = self.verify(refresh_token, TokenClass.REFRESH)
        user = await self._get_users().get_user_by_id(claims.user_id)
        if not user:
            raise PrincipalNotFound(f"User {claims.user_id} no longer exists")
        logger.info("Refreshed session tokens for user %s", claims.user_id)
        return self.issue(user)


__all__ = [
    "TokenClass",
    "SessionTokenSettings",
    "SessionClaims",
    "SessionTokenPair",
    "SessionTokenIssuer",
    "get_session_token_settings",
]
