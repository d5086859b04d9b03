"""Microsoft account connection and Graph (OneDrive) routes."""

from __future__ import annotations

import logging
import re

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import JSONResponse

from api.dependencies import (
    get_credential_service,
    get_current_principal,
    get_graph_client,
    get_plugin_principal,
    get_session_issuer,
)
from api.models import ObtainTokensRequest, OutlookPluginTokensRequest
from api.responses import api_response
from auth.credentials import MicrosoftCredentialService
from auth.graph import EmailAttachment, MicrosoftGraphClient, OutlookEmail
from auth.principal import ByEmail, ByUserId
from auth.session import SessionTokenIssuer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ms-graph", tags=["Microsoft Graph"])

_RECIPIENT_SPLIT = re.compile(r"[,;]")


def _split_recipients(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in _RECIPIENT_SPLIT.split(value) if part.strip()]


# =============================================================================
# Connection lifecycle
# =============================================================================


@router.get("/auth/login")
async def login(
    redirect: str | None = Query(None, description="Override the configured redirect URI"),
    credentials: MicrosoftCredentialService = Depends(get_credential_service),
) -> JSONResponse:
    """Return the Microsoft authorize URL the client should navigate to."""
    url = credentials.auth_service.build_authorization_url(redirect or None)
    return api_response(data={"redirectUri": url}, message="Authorization URL generated")


@router.post("/auth/obtain-tokens")
async def obtain_tokens(
    payload: ObtainTokensRequest,
    principal: ByUserId = Depends(get_current_principal),
    credentials: MicrosoftCredentialService = Depends(get_credential_service),
) -> JSONResponse:
    """Redeem an authorization code and connect the signed-in user's account."""
    await credentials.connect(principal, payload.code, payload.redirect)
    return api_response(message="Microsoft account connected successfully")


@router.post("/auth/obtain-tokens-outlook-plugin")
async def obtain_tokens_outlook_plugin(
    payload: OutlookPluginTokensRequest,
    credentials: MicrosoftCredentialService = Depends(get_credential_service),
    issuer: SessionTokenIssuer = Depends(get_session_issuer),
) -> JSONResponse:
    """
    Redeem an authorization code from the Outlook add-in.

    The add-in has no local user account, so the grant is stored under the
    consenting Microsoft account's own address. The returned plugin token is
    the add-in's proof of that account on later uploads.
    """
    record = await credentials.connect_by_email(payload.code, payload.redirect)
    principal_key = record.principal.key
    return api_response(
        data={
            "userPrincipal": principal_key,
            "pluginToken": issuer.issue_plugin_token(principal_key),
            "expiresIn": int(issuer.settings.plugin_ttl.total_seconds()),
        },
        message="Microsoft account connected successfully",
    )


@router.post("/auth/refresh-microsoft-tokens")
async def refresh_microsoft_tokens(
    principal: ByUserId = Depends(get_current_principal),
    credentials: MicrosoftCredentialService = Depends(get_credential_service),
) -> JSONResponse:
    await credentials.refresh(principal)
    return api_response(message="Microsoft tokens refreshed successfully")


@router.delete("/auth/disconnect-microsoft-account")
async def disconnect_microsoft_account(
    principal: ByUserId = Depends(get_current_principal),
    credentials: MicrosoftCredentialService = Depends(get_credential_service),
) -> JSONResponse:
    """Forget the user's Microsoft grant. Succeeds whether or not one existed."""
    existed = await credentials.disconnect(principal)
    return api_response(data={"disconnected": existed}, message="Microsoft account disconnected successfully")


@router.get("/auth/status")
async def connection_status(
    principal: ByUserId = Depends(get_current_principal),
    graph: MicrosoftGraphClient = Depends(get_graph_client),
) -> JSONResponse:
    connected = await graph.is_connected(principal)
    return api_response(data={"connected": connected}, message="Microsoft connection status")


# =============================================================================
# Graph reads
# =============================================================================


@router.get("/get-microsoft-account")
async def get_microsoft_account(
    principal: ByUserId = Depends(get_current_principal),
    graph: MicrosoftGraphClient = Depends(get_graph_client),
) -> JSONResponse:
    account = await graph.get_account(principal)
    return api_response(data=account, message="Microsoft account retrieved successfully")


@router.get("/list-one-drive-items")
async def list_one_drive_items(
    principal: ByUserId = Depends(get_current_principal),
    graph: MicrosoftGraphClient = Depends(get_graph_client),
) -> JSONResponse:
    items = await graph.list_drive_items(principal)
    return api_response(data=items, message="OneDrive items retrieved successfully")


@router.get("/recent-files")
async def recent_files(
    principal: ByUserId = Depends(get_current_principal),
    graph: MicrosoftGraphClient = Depends(get_graph_client),
) -> JSONResponse:
    items = await graph.list_recent_files(principal)
    return api_response(data=items, message="Recent files retrieved successfully")


@router.get("/shared-with-me")
async def shared_with_me(
    principal: ByUserId = Depends(get_current_principal),
    graph: MicrosoftGraphClient = Depends(get_graph_client),
) -> JSONResponse:
    items = await graph.list_shared_with_me(principal)
    return api_response(data=items, message="Shared files retrieved successfully")


@router.get("/search")
async def search_drive(
    q: str = Query(..., description="Free-text OneDrive search"),
    principal: ByUserId = Depends(get_current_principal),
    graph: MicrosoftGraphClient = Depends(get_graph_client),
) -> JSONResponse:
    try:
        results = await graph.search_drive(principal, q)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return api_response(data=results, message="Search completed successfully")


# =============================================================================
# Outlook add-in upload
# =============================================================================


@router.post("/upload-email-to-cloud")
async def upload_email_to_cloud(
    subject: str | None = Form(None),
    sender: str = Form(..., alias="from"),
    to_recipients: str = Form(..., alias="toRecipients"),
    cc_recipients: str | None = Form(None, alias="ccRecipients"),
    date: str = Form(...),
    body_html: str = Form("", alias="bodyHtml"),
    user_principal: str | None = Form(None, alias="userPrincipal"),
    attachments: list[UploadFile] | None = File(None),
    principal: ByEmail = Depends(get_plugin_principal),
    graph: MicrosoftGraphClient = Depends(get_graph_client),
) -> JSONResponse:
    """
    Archive an email forwarded by the Outlook add-in to the mailbox owner's
    OneDrive, attachments first.

    The target account comes from the plugin token. ``userPrincipal``, when
    sent, must name that same account.
    """
    if user_principal:
        try:
            claimed = ByEmail(user_principal)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="userPrincipal must be an email address")
        if claimed != principal:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="userPrincipal does not match the connected Microsoft account",
            )

    email = OutlookEmail(
        subject=subject,
        sender=sender,
        to_recipients=_split_recipients(to_recipients),
        cc_recipients=_split_recipients(cc_recipients),
        date=date,
        body_html=body_html,
    )
    files = [
        EmailAttachment(
            filename=upload.filename or "attachment",
            content=await upload.read(),
            content_type=upload.content_type or "application/octet-stream",
        )
        for upload in attachments or []
    ]

    item = await graph.upload_email(principal, email, files)
    return api_response(
        data={"id": item.get("id"), "webUrl": item.get("webUrl")},
        message="Email received",
    )
