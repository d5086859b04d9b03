"""
Database module.

Contains:
- db_config: Database configuration (local/prod toggle)
- connection_pool: Connection pool manager
- storage/: Storage classes for DB operations
"""

from db.db_config import get_db_config, get_db_schema, is_local_db
from db.connection_pool import (
    get_db_connection,
    close_all_connections,
    DatabaseConnection,
)

__all__ = [
    # Config
    "get_db_config",
    "get_db_schema",
    "is_local_db",
    # Pool
    "get_db_connection",
    "close_all_connections",
    "DatabaseConnection",
]
