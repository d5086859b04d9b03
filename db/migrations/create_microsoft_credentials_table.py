"""
Database Migration: Create microsoft_credentials Table

Creates the table holding one encrypted Microsoft grant per principal. A
principal is either a local user (principal_kind='user', key = user id) or a
Microsoft account address (principal_kind='email', key = normalized address).

Usage:
    python db/migrations/create_microsoft_credentials_table.py

Safety:
    - CREATE TABLE / INDEX IF NOT EXISTS, CREATE OR REPLACE FUNCTION,
      DROP TRIGGER IF EXISTS before CREATE TRIGGER: safe to re-run
    - Runs in one transaction; rolled back on error
"""

import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from dotenv import load_dotenv

load_dotenv()

from db.connection_pool import get_db_connection
from db.db_config import get_db_config, get_db_schema
from db.storage.credentials import TABLE_NAME

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_statements(schema: str) -> list[str]:
    """DDL for the credentials table, in execution order."""
    table = f"{schema}.{TABLE_NAME}"
    return [
        f"""
        CREATE TABLE IF NOT EXISTS {table} (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            principal_kind VARCHAR(16) NOT NULL,
            principal_key VARCHAR(320) NOT NULL,
            access_token TEXT NOT NULL,
            refresh_token TEXT NOT NULL,
            id_token TEXT NOT NULL,
            created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
            CONSTRAINT {TABLE_NAME}_principal_kind_check
                CHECK (principal_kind IN ('user', 'email')),
            CONSTRAINT {TABLE_NAME}_principal_unique
                UNIQUE (principal_kind, principal_key)
        )
        """,
        f"""
        CREATE OR REPLACE FUNCTION {schema}.update_{TABLE_NAME}_updated_at()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = NOW();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
        """,
        f"DROP TRIGGER IF EXISTS {TABLE_NAME}_updated_at ON {table}",
        f"""
        CREATE TRIGGER {TABLE_NAME}_updated_at
            BEFORE UPDATE ON {table}
            FOR EACH ROW
            EXECUTE FUNCTION {schema}.update_{TABLE_NAME}_updated_at()
        """,
    ]


def create_microsoft_credentials_table() -> bool:
    """Create the table, its constraints and its updated_at trigger."""
    schema = get_db_schema()
    logger.info("Creating %s in schema: %s", TABLE_NAME, schema)
    try:
        with get_db_connection(get_db_config()) as conn:
            with conn.cursor() as cur:
                for statement in build_statements(schema):
                    cur.execute(statement)
                cur.execute(
                    """SELECT COUNT(*) FROM information_schema.tables
                       WHERE table_schema = %s AND table_name = %s""",
                    (schema, TABLE_NAME),
                )
                count = cur.fetchone()[0]
    except Exception as exc:  # noqa: BLE001
        logger.error("✗ Migration failed: %s", exc, exc_info=True)
        return False

    if count != 1:
        logger.error("✗ Table %s.%s not found after migration", schema, TABLE_NAME)
        return False

    logger.info("✓ Migration completed successfully!")
    logger.info("  Table: %s.%s", schema, TABLE_NAME)
    logger.info("  Unique: (principal_kind, principal_key)")
    logger.info("  Trigger: auto-updates updated_at on row modification")
    return True


if __name__ == "__main__":
    sys.exit(0 if create_microsoft_credentials_table() else 1)
