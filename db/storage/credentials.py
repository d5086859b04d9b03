"""Storage for encrypted Microsoft OAuth credentials.

One row per principal in ``microsoft_credentials``, keyed by
``(principal_kind, principal_key)``. The three token columns only ever hold
ciphertext produced by ``auth.crypto.TokenCipher``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from psycopg2.extras import RealDictCursor

from auth.principal import PrincipalKey, principal_from_storage
from db.connection_pool import get_db_connection
from db.db_config import get_db_config, get_db_schema

logger = logging.getLogger(__name__)

TABLE_NAME = "microsoft_credentials"


@dataclass(frozen=True)
class CredentialRecord:
    """A principal's stored (encrypted) Microsoft grant."""

    principal: PrincipalKey
    access_token: str
    refresh_token: str
    id_token: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "CredentialRecord":
        return cls(
            principal=principal_from_storage(row["principal_kind"], row["principal_key"]),
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            id_token=row["id_token"],
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


class MicrosoftCredentialStorage:
    """Provides upsert/read/delete of credential records."""

    def __init__(self, db_config: dict | None = None, schema: str | None = None) -> None:
        self.db_config = db_config or get_db_config()
        self.table = f"{schema or get_db_schema()}.{TABLE_NAME}"

    def _get_connection(self):
        return get_db_connection(self.db_config)

    # =========================================================================
    # Write
    # =========================================================================

    async def upsert(
        self,
        principal: PrincipalKey,
        encrypted_access: str,
        encrypted_refresh: str,
        encrypted_id: str,
    ) -> CredentialRecord:
        """Insert or replace all three tokens for a principal in one statement."""
        if not (encrypted_access and encrypted_refresh and encrypted_id):
            raise ValueError("All three encrypted tokens are required")
        return await asyncio.to_thread(
            self._upsert_sync, principal, encrypted_access, encrypted_refresh, encrypted_id
        )

    def _upsert_sync(
        self,
        principal: PrincipalKey,
        encrypted_access: str,
        encrypted_refresh: str,
        encrypted_id: str,
    ) -> CredentialRecord:
        try:
            with self._get_connection() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(
                        f"""INSERT INTO {self.table}
                               (principal_kind, principal_key, access_token, refresh_token,
                                id_token, created_at, updated_at)
                           VALUES (%s, %s, %s, %s, %s, NOW(), NOW())
                           ON CONFLICT (principal_kind, principal_key) DO UPDATE SET
                               access_token = EXCLUDED.access_token,
                               refresh_token = EXCLUDED.refresh_token,
                               id_token = EXCLUDED.id_token,
                               updated_at = NOW()
                           RETURNING principal_kind, principal_key, access_token,
                                     refresh_token, id_token, created_at, updated_at""",
                        (principal.kind, principal.key, encrypted_access, encrypted_refresh, encrypted_id),
                    )
                    row = cur.fetchone()
            logger.info("Stored Microsoft credentials for %s", principal)
            return CredentialRecord.from_row(dict(row))
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to persist Microsoft credentials for %s: %s", principal, exc, exc_info=True)
            raise

    async def delete(self, principal: PrincipalKey) -> bool:
        """
        Remove the principal's credentials.

        Idempotent: returns False instead of raising when nothing was stored.
        """
        return await asyncio.to_thread(self._delete_sync, principal)

    def _delete_sync(self, principal: PrincipalKey) -> bool:
        try:
            with self._get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"DELETE FROM {self.table} WHERE principal_kind = %s AND principal_key = %s",
                        (principal.kind, principal.key),
                    )
                    deleted = cur.rowcount > 0
            logger.info("Cleared Microsoft credentials for %s (existed=%s)", principal, deleted)
            return deleted
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to clear Microsoft credentials for %s: %s", principal, exc, exc_info=True)
            raise

    # =========================================================================
    # Read
    # =========================================================================

    async def get(self, principal: PrincipalKey) -> Optional[CredentialRecord]:
        """Get the principal's credential record, or None if not connected."""
        return await asyncio.to_thread(self._get_sync, principal)

    def _get_sync(self, principal: PrincipalKey) -> Optional[CredentialRecord]:
        try:
            with self._get_connection() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(
                        f"""SELECT principal_kind, principal_key, access_token, refresh_token,
                                  id_token, created_at, updated_at
                           FROM {self.table}
                           WHERE principal_kind = %s AND principal_key = %s""",
                        (principal.kind, principal.key),
                    )
                    row = cur.fetchone()
            return CredentialRecord.from_row(dict(row)) if row else None
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to fetch Microsoft credentials for %s: %s", principal, exc, exc_info=True)
            raise


__all__ = ["CredentialRecord", "MicrosoftCredentialStorage", "TABLE_NAME"]
