"""
Pydantic request models for the HTTP API.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# SESSION MODELS
# =============================================================================

class RefreshSessionRequest(BaseModel):
    token: Optional[str] = Field(None, description="Refresh token; falls back to the 'refresh' cookie")


# =============================================================================
# MICROSOFT MODELS
# =============================================================================

class ObtainTokensRequest(BaseModel):
    code: str = Field(..., description="Authorization code returned to the redirect URI")
    redirect: Optional[str] = Field(None, description="Redirect URI used for the authorize request")

    @field_validator("code")
    @classmethod
    def _code_not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("code cannot be empty")
        return value.strip()

    @field_validator("redirect", mode="before")
    @classmethod
    def _blank_redirect_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class OutlookPluginTokensRequest(BaseModel):
    code: str = Field(..., description="Authorization code returned to the add-in")
    redirect: str = Field(..., description="Redirect URI registered for the Outlook add-in")

    @field_validator("code")
    @classmethod
    def _code_not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("code cannot be empty")
        return value.strip()

    @field_validator("redirect", mode="before")
    @classmethod
    def _redirect_required(cls, value: Optional[str]) -> str:
        if value is None or not str(value).strip():
            raise ValueError("redirect is required")
        return str(value).strip()

