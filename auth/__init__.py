"""
Authentication module.

Contains:
- Token encryption at rest (crypto.py)
- Microsoft OAuth exchanges (microsoft.py)
- Credential custody (credentials.py)
- Authenticated Graph calls (graph.py)
- Session tokens for the app's own users (session.py)
"""

from auth.errors import (
    CredentialServiceError,
    ConfigurationError,
    NoCredentials,
    ExternalAuthError,
    IntegrityError,
    UnauthorizedError,
    InvalidTokenError,
    PrincipalNotFound,
)

from auth.principal import ByEmail, ByUserId, PrincipalKey, normalize_email

from auth.crypto import TokenCipher, get_token_cipher

from auth.microsoft import (
    MicrosoftOAuthSettings,
    MicrosoftAuthService,
    TokenSet,
    get_microsoft_oauth_settings,
    token_response_to_storage_format,
)

from auth.credentials import MicrosoftCredentialService, DecryptedCredentials

from auth.graph import MicrosoftGraphClient, OutlookEmail, EmailAttachment

from auth.session import (
    SessionTokenIssuer,
    SessionTokenPair,
    SessionClaims,
    TokenClass,
    get_session_token_settings,
)

__all__ = [
    # Errors
    "CredentialServiceError",
    "ConfigurationError",
    "NoCredentials",
    "ExternalAuthError",
    "IntegrityError",
    "UnauthorizedError",
    "InvalidTokenError",
    "PrincipalNotFound",
    # Principals
    "ByEmail",
    "ByUserId",
    "PrincipalKey",
    "normalize_email",
    # Crypto
    "TokenCipher",
    "get_token_cipher",
    # Microsoft
    "MicrosoftOAuthSettings",
    "MicrosoftAuthService",
    "TokenSet",
    "get_microsoft_oauth_settings",
    "token_response_to_storage_format",
    "MicrosoftCredentialService",
    "DecryptedCredentials",
    "MicrosoftGraphClient",
    "OutlookEmail",
    "EmailAttachment",
    # Sessions
    "SessionTokenIssuer",
    "SessionTokenPair",
    "SessionClaims",
    "TokenClass",
    "get_session_token_settings",
]
