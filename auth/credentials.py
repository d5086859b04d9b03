"""Custody of Microsoft OAuth credentials.

Sits between the token-endpoint client and credential storage: every token
that reaches storage passes through the cipher here, and every refresh for a
principal is serialized through one lock per principal in this process.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from typing import Any, Protocol

from auth.crypto import TokenCipher, get_token_cipher
from auth.errors import ExternalAuthError, NoCredentials
from auth.microsoft import (
    MicrosoftAuthService,
    TokenSet,
    account_email_from_claims,
    decode_id_token_claims,
)
from auth.principal import ByEmail, PrincipalKey

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    async def upsert(
        self, principal: PrincipalKey, encrypted_access: str, encrypted_refresh: str, encrypted_id: str
    ) -> Any: ...

    async def get(self, principal: PrincipalKey) -> Any: ...

    async def delete(self, principal: PrincipalKey) -> bool: ...


@dataclass(frozen=True)
class DecryptedCredentials:
    access_token: str
    refresh_token: str
    id_token: str

    def __repr__(self) -> str:
        return "DecryptedCredentials(<redacted>)"


class MicrosoftCredentialService:
    """Connects, refreshes, loads and disconnects Microsoft grants."""

    def __init__(
        self,
        storage: CredentialStore | None = None,
        *,
        cipher: TokenCipher | None = None,
        auth_service: MicrosoftAuthService | None = None,
    ) -> None:
        if storage is None:
            from db.storage.credentials import MicrosoftCredentialStorage
            storage = MicrosoftCredentialStorage()
        self._storage = storage
        self._cipher = cipher or get_token_cipher()
        self._auth_service = auth_service or MicrosoftAuthService()
        # Entries live only while some refresh holds or awaits the lock
        self._refresh_locks: weakref.WeakValueDictionary[PrincipalKey, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def auth_service(self) -> MicrosoftAuthService:
        return self._auth_service

    # =========================================================================
    # Connect / disconnect
    # =========================================================================

    async def connect(
        self, principal: PrincipalKey, code: str, redirect_uri: str | None = None
    ) -> Any:
        """Exchange an authorization code and store the grant for ``principal``."""
        tokens = await self._auth_service.exchange_code_for_token(code, redirect_uri)
        record = await self._store(principal, tokens)
        logger.info("Connected Microsoft account for %s", principal)
        return record

    async def connect_by_email(self, code: str, redirect_uri: str | None = None) -> Any:
        """
        Exchange an authorization code and store the grant under the consenting
        account's own address (plugin flow, no local user account).
        """
        tokens = await self._auth_service.exchange_code_for_token(code, redirect_uri)
        claims = decode_id_token_claims(tokens.id_token or "")
        email = account_email_from_claims(claims)
        if not email:
            raise ExternalAuthError(
                "Microsoft ID token carries no account address",
                detail={"claims": sorted(claims)},
            )
        principal = ByEmail(email)
        record = await self._store(principal, tokens)
        logger.info("Connected Microsoft account for %s", principal)
        return record

    async def disconnect(self, principal: PrincipalKey) -> bool:
        """Delete the principal's grant. Returns False if none was stored."""
        return await self._storage.delete(principal)

    # =========================================================================
    # Load / refresh
    # =========================================================================

    async def load(self, principal: PrincipalKey) -> tuple[Any, DecryptedCredentials]:
        """
        Load and decrypt the principal's grant.

        Raises:
            NoCredentials: If nothing is stored for the principal
            IntegrityError: If a stored token fails authentication
        """
        record = await self._storage.get(principal)
        if record is None:
            raise NoCredentials(principal)
        return record, self._decrypt(record)

    async def refresh(
        self, principal: PrincipalKey, stale_access_blob: str | None = None
    ) -> DecryptedCredentials:
        """
        Redeem the stored refresh token and persist the new triple.

        When ``stale_access_blob`` is given and another caller has already
        replaced it while this one waited for the lock, the stored tokens are
        returned without another provider round trip.

        Raises:
            NoCredentials: If nothing is stored for the principal
            ExternalAuthError: If the provider rejects the refresh token
        """
        lock = self._refresh_locks.get(principal)
        if lock is None:
            lock = asyncio.Lock()
            self._refresh_locks[principal] = lock
        async with lock:
            record, current = await self.load(principal)
            if stale_access_blob is not None and record.access_token != stale_access_blob:
                logger.debug("Tokens for %s were refreshed concurrently; reusing them", principal)
                return current

            tokens = await self._auth_service.refresh_token(current.refresh_token)
            # The provider may omit tokens it did not rotate
            merged = TokenSet(
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token or current.refresh_token,
                id_token=tokens.id_token or current.id_token,
                token_type=tokens.token_type,
                scope=tokens.scope,
                expires_in=tokens.expires_in,
                ext_expires_in=tokens.ext_expires_in,
            )
            await self._store(principal, merged)
            logger.info(
                "Refreshed Microsoft tokens for %s (refresh token rotated=%s)",
                principal,
                merged.refresh_token != current.refresh_token,
            )
            return DecryptedCredentials(
                access_token=merged.access_token,
                refresh_token=merged.refresh_token,  # type: ignore[arg-type]
                id_token=merged.id_token,  # type: ignore[arg-type]
            )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _store(self, principal: PrincipalKey, tokens: TokenSet) -> Any:
        if not tokens.refresh_token or not tokens.id_token:
            raise ExternalAuthError("Microsoft did not return a complete token set")
        return await self._storage.upsert(
            principal,
            self._cipher.encrypt(tokens.access_token),
            self._cipher.encrypt(tokens.refresh_token),
            self._cipher.encrypt(tokens.id_token),
        )

    def _decrypt(self, record: Any) -> DecryptedCredentials:
        return DecryptedCredentials(
            access_token=self._cipher.decrypt(record.access_token),
            refresh_token=self._cipher.decrypt(record.refresh_token),
            id_token=self._cipher.decrypt(record.id_token),
        )


__all__ = ["MicrosoftCredentialService", "DecryptedCredentials", "CredentialStore"]
