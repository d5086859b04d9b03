"""
Database Configuration Module
=============================

Centralized database configuration with support for local/prod environments.

Environment Variables:
    USE_LOCAL_DB: Set to 'true' to use local database (default: false)

    Production DB (when USE_LOCAL_DB=false):
        DB_HOST, DB_PORT, DB_NAME, DB_USER, DB_PASSWORD

    Local DB (when USE_LOCAL_DB=true):
        LOCAL_DB_HOST, LOCAL_DB_PORT, LOCAL_DB_NAME, LOCAL_DB_USER, LOCAL_DB_PASSWORD
        (Falls back to localhost:5432/graph_credentials_local if not set)

    DB_SCHEMA: Schema holding the credential and user tables (default: public)
"""

import logging
import os
import re
from typing import Dict

from dotenv import load_dotenv

from auth.errors import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)

_SCHEMA_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_local_db() -> bool:
    """Check if local database should be used."""
    return os.getenv("USE_LOCAL_DB", "false").lower() in ("true", "1", "yes")


def _get_prod_db_config() -> Dict[str, str | int | None]:
    return {
        "host": os.getenv("DB_HOST"),
        "port": int(os.getenv("DB_PORT", "5432")),
        "database": os.getenv("DB_NAME"),
        "user": os.getenv("DB_USER"),
        "password": os.getenv("DB_PASSWORD"),
    }


def _get_local_db_config() -> Dict[str, str | int | None]:
    return {
        "host": os.getenv("LOCAL_DB_HOST", "localhost"),
        "port": int(os.getenv("LOCAL_DB_PORT", "5432")),
        "database": os.getenv("LOCAL_DB_NAME", "graph_credentials_local"),
        "user": os.getenv("LOCAL_DB_USER", "postgres"),
        "password": os.getenv("LOCAL_DB_PASSWORD", "postgres"),
    }


def get_db_config() -> Dict[str, str | int | None]:
    """
    Get the active database configuration based on USE_LOCAL_DB.

    Raises:
        ConfigurationError: If a required production setting is missing
    """
    if is_local_db():
        config = _get_local_db_config()
        logger.debug("Using LOCAL database: %s:%s/%s", config["host"], config["port"], config["database"])
        return config

    config = _get_prod_db_config()
    required = {"host": "DB_HOST", "database": "DB_NAME", "user": "DB_USER", "password": "DB_PASSWORD"}
    missing = [env for key, env in required.items() if not config.get(key)]
    if missing:
        raise ConfigurationError(f"Missing database env vars: {', '.join(missing)}")
    return config


def get_db_schema() -> str:
    """Schema name for the service tables, validated for safe interpolation."""
    schema = os.getenv("DB_SCHEMA", "public").strip() or "public"
    if not _SCHEMA_PATTERN.match(schema):
        raise ConfigurationError(f"DB_SCHEMA is not a valid identifier: {schema!r}")
    return schema
