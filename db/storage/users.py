"""Read-only access to the application's users table.

User CRUD belongs to another service; session refresh only needs to confirm
that the principal still exists and pick up its current email and role.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from psycopg2.extras import RealDictCursor

from db.connection_pool import get_db_connection
from db.db_config import get_db_config, get_db_schema

logger = logging.getLogger(__name__)


class UserStorage:
    """Looks up user records by primary key."""

    def __init__(self, db_config: dict | None = None, schema: str | None = None) -> None:
        self.db_config = db_config or get_db_config()
        self.table = f"{schema or get_db_schema()}.users"

    def _get_connection(self):
        return get_db_connection(self.db_config)

    async def get_user_by_id(self, user_id: str) -> Optional[dict[str, Any]]:
        """Get ``{id, email, role}`` for a user, or None."""
        if not user_id:
            return None
        return await asyncio.to_thread(self._get_user_by_id_sync, user_id)

    def _get_user_by_id_sync(self, user_id: str) -> Optional[dict[str, Any]]:
        try:
            with self._get_connection() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(
                        f"SELECT id, email, role FROM {self.table} WHERE id = %s",
                        (user_id,),
                    )
                    row = cur.fetchone()
            if not row:
                return None
            record = dict(row)
            record["id"] = str(record["id"])
            return record
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to fetch user %s: %s", user_id, exc, exc_info=True)
            raise


__all__ = ["UserStorage"]
