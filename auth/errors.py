"""
Error taxonomy for credential custody and session handling.

Every error carries the HTTP status the boundary should answer with and a
generic public message. The detailed message stays in logs.
"""

from __future__ import annotations

from typing import Any


class CredentialServiceError(RuntimeError):
    """Base class for all errors surfaced to the HTTP boundary."""

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(CredentialServiceError):
    """Required setting or secret is missing. Fatal at startup."""

    status_code = 500
    public_message = "Service is not configured correctly"


class NoCredentials(CredentialServiceError):
    """No Microsoft grant on file for the principal."""

    status_code = 404
    public_message = "Microsoft account is not connected. Please authorize access."

    def __init__(self, principal: Any) -> None:
        super().__init__(f"No Microsoft credentials found for {principal}")
        self.principal = principal


class ExternalAuthError(CredentialServiceError):
    """The identity provider rejected an exchange or could not be reached."""

    status_code = 502
    public_message = "Microsoft rejected the authorization request"

    def __init__(
        self,
        message: str,
        *,
        detail: dict[str, Any] | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.detail = detail or {}


class IntegrityError(CredentialServiceError):
    """Stored ciphertext failed authentication on decrypt."""

    status_code = 500
    public_message = "Stored Microsoft credentials are unreadable. Please authorize access again."


class UnauthorizedError(CredentialServiceError):
    """Authenticated Graph call failed after the single refresh-and-retry."""

    status_code = 401
    public_message = "Unable to access Microsoft account. Please authorize access again."


class InvalidTokenError(CredentialServiceError):
    """Session token failed verification (signature, structure, expiry or class)."""

    status_code = 401
    public_message = "Invalid or expired token"


class PrincipalNotFound(CredentialServiceError):
    """Session token refers to a principal that no longer exists."""

    status_code = 404
    public_message = "User not found"


__all__ = [
    "CredentialServiceError",
    "ConfigurationError",
    "NoCredentials",
    "ExternalAuthError",
    "IntegrityError",
    "UnauthorizedError",
    "InvalidTokenError",
    "PrincipalNotFound",
]
