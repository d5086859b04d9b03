"""
Authenticated Microsoft Graph calls.

``MicrosoftGraphClient.call`` is the one primitive the rest of the app uses to
reach Graph on behalf of a principal:

    HAVE_CREDENTIALS -> CALLING(token) -> SUCCESS
                                       -> UNAUTHORIZED -> REFRESHING
                                          -> CALLING(new token) -> SUCCESS | FAILED

Any failed first attempt (non-2xx status, timeout, transport error) triggers
exactly one refresh followed by exactly one retry. Provider errors for
expired, malformed and revoked tokens cannot be told apart reliably from
here, so no attempt is made to.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from auth.credentials import MicrosoftCredentialService
from auth.errors import (
    CredentialServiceError,
    ExternalAuthError,
    NoCredentials,
    UnauthorizedError,
)
from auth.principal import PrincipalKey
from utils.email_template import render_outlook_email

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
ACCOUNT_URL = f"{GRAPH_BASE_URL}/me"
DRIVE_ROOT_CHILDREN_URL = f"{GRAPH_BASE_URL}/me/drive/root/children"
DRIVE_RECENT_URL = f"{GRAPH_BASE_URL}/me/drive/recent"
DRIVE_SHARED_WITH_ME_URL = f"{GRAPH_BASE_URL}/me/drive/sharedWithMe"
EMAIL_UPLOAD_FOLDER = "Emails"


@dataclass
class EmailAttachment:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class OutlookEmail:
    """An email forwarded by the Outlook add-in."""

    subject: str | None
    sender: str
    to_recipients: list[str]
    date: str
    body_html: str
    cc_recipients: list[str] = field(default_factory=list)


def drive_search_url(query: str) -> str:
    """Build the OneDrive search URL for a free-text query."""
    escaped = query.replace("'", "''")
    return f"{GRAPH_BASE_URL}/me/drive/root/search(q='{quote(escaped, safe='')}')?select=name,id,webUrl"


def drive_upload_url(path: str) -> str:
    return f"{GRAPH_BASE_URL}/me/drive/root:/{quote(path.strip('/'))}:/content"


def _safe_filename(value: str) -> str:
    cleaned = "".join(ch if ch.isalnum() or ch in " ._-" else "_" for ch in value).strip(" .")
    return cleaned[:120] or "email"


class MicrosoftGraphClient:
    """Calls Graph for a principal, refreshing the stored grant at most once per call."""

    def __init__(
        self,
        credentials: MicrosoftCredentialService | None = None,
        *,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials or MicrosoftCredentialService()
        self._timeout = timeout_seconds or self._credentials.auth_service.settings.timeout_seconds
        self._transport = transport

    # =========================================================================
    # Core call
    # =========================================================================

    async def call(
        self,
        principal: PrincipalKey,
        url: str,
        method: str = "GET",
        content_type: str | None = None,
        body: bytes | str | None = None,
    ) -> httpx.Response:
        """
        Call a Graph (or any bearer-protected) URL on behalf of ``principal``.

        Raises:
            NoCredentials: No grant is stored; nothing is sent
            IntegrityError: The stored tokens cannot be decrypted
            UnauthorizedError: The call failed again after one refresh, or the
                refresh itself was rejected
        """
        record, tokens = await self._credentials.load(principal)

        response = await self._attempt(principal, url, method, tokens.access_token, content_type, body)
        if response is not None:
            return response

        try:
            refreshed = await self._credentials.refresh(principal, stale_access_blob=record.access_token)
        except ExternalAuthError as exc:
            logger.error("Error refreshing Microsoft tokens for %s: %s", principal, exc)
            raise UnauthorizedError(f"Unable to refresh Microsoft access token for {principal}") from exc

        response = await self._attempt(principal, url, method, refreshed.access_token, content_type, body)
        if response is None:
            raise UnauthorizedError(f"Microsoft Graph call failed after token refresh for {principal}")
        return response

    async def _attempt(
        self,
        principal: PrincipalKey,
        url: str,
        method: str,
        access_token: str,
        content_type: str | None,
        body: bytes | str | None,
    ) -> httpx.Response | None:
        """Send one request. Returns the response on 2xx, None on any failure."""
        headers = {"Authorization": f"Bearer {access_token}"}
        if content_type:
            headers["Content-Type"] = content_type

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.request(method, url, headers=headers, content=body)
        except httpx.HTTPError as exc:
            logger.warning("Graph %s %s failed for %s: %s", method, url, principal, exc.__class__.__name__)
            return None

        if resp.is_success:
            return resp
        logger.warning(
            "Graph %s %s returned %d for %s: %s",
            method,
            url,
            resp.status_code,
            principal,
            resp.text[:200],
        )
        return None

    # =========================================================================
    # Graph operations
    # =========================================================================

    async def get_account(self, principal: PrincipalKey) -> dict[str, Any]:
        """Profile of the connected Microsoft account."""
        return (await self.call(principal, ACCOUNT_URL)).json()

    async def list_drive_items(self, principal: PrincipalKey) -> dict[str, Any]:
        return (await self.call(principal, DRIVE_ROOT_CHILDREN_URL)).json()

    async def list_recent_files(self, principal: PrincipalKey) -> dict[str, Any]:
        return (await self.call(principal, DRIVE_RECENT_URL)).json()

    async def list_shared_with_me(self, principal: PrincipalKey) -> dict[str, Any]:
        return (await self.call(principal, DRIVE_SHARED_WITH_ME_URL)).json()

    async def search_drive(self, principal: PrincipalKey, query: str) -> dict[str, Any]:
        if not query or not query.strip():
            raise ValueError("Search query is required")
        return (await self.call(principal, drive_search_url(query.strip()))).json()

    async def upload_file(
        self,
        principal: PrincipalKey,
        path: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> dict[str, Any]:
        """Upload (create or replace) a file in the principal's OneDrive."""
        resp = await self.call(
            principal,
            drive_upload_url(path),
            method="PUT",
            content_type=content_type,
            body=content,
        )
        return resp.json()

    async def upload_email(
        self,
        principal: PrincipalKey,
        email: OutlookEmail,
        attachments: list[EmailAttachment] | None = None,
    ) -> dict[str, Any]:
        """
        Save an email and its attachments to OneDrive.

        Attachments go first so the rendered email can link to them.

        Returns:
            The drive item of the uploaded HTML document
        """
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        base_name = f"{stamp} {_safe_filename(email.subject or 'No subject')}"

        attachment_urls: list[str] = []
        for attachment in attachments or []:
            item = await self.upload_file(
                principal,
                f"{EMAIL_UPLOAD_FOLDER}/{base_name}/{_safe_filename(attachment.filename)}",
                attachment.content,
                attachment.content_type,
            )
            if item.get("webUrl"):
                attachment_urls.append(item["webUrl"])

        html = render_outlook_email(
            subject=email.subject,
            sender=email.sender,
            to_recipients=email.to_recipients,
            cc_recipients=email.cc_recipients,
            date=email.date,
            body_html=email.body_html,
            attachment_urls=attachment_urls,
        )
        item = await self.upload_file(
            principal,
            f"{EMAIL_UPLOAD_FOLDER}/{base_name}.html",
            html.encode("utf-8"),
            "text/html",
        )
        logger.info("Uploaded email with %d attachment(s) for %s", len(attachment_urls), principal)
        return item

    async def is_connected(self, principal: PrincipalKey) -> bool:
        """
        Whether the principal has a usable Microsoft grant.

        Every failure maps to False: a principal with no grant and one whose
        refresh token the provider rejected look the same here. Callers that
        need the difference must use ``call`` and inspect the error.
        """
        try:
            await self.call(principal, ACCOUNT_URL)
        except NoCredentials:
            return False
        except CredentialServiceError as exc:
            logger.info("Microsoft status check failed for %s: %s", principal, exc)
            return False
        return True


__all__ = [
    "MicrosoftGraphClient",
    "OutlookEmail",
    "EmailAttachment",
    "drive_search_url",
    "drive_upload_url",
    "GRAPH_BASE_URL",
    "ACCOUNT_URL",
]
