"""
Database storage submodule.

Contains the runtime storage classes for database operations.
"""

from db.storage.credentials import CredentialRecord, MicrosoftCredentialStorage
from db.storage.users import UserStorage

__all__ = [
    "CredentialRecord",
    "MicrosoftCredentialStorage",
    "UserStorage",
]
