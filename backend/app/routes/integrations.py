"""Google Drive integration routes."""

import secrets
import uuid
from datetime import datetime
from pathlib import PurePosixPath
from typing import List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.dependencies import get_google_drive_client
from app.exceptions import GoogleDriveError, MissingTokenError
from app.logging_config import get_logger
from app.models.integration import Integration
from app.models.user import User
from app.routes.auth import get_current_user
from app.schemas.integration import (
    AuthorizationUrlResponse,
    DriveFile,
    DriveFileListResponse,
    IntegrationResponse,
    IntegrationSettingsUpdate,
    SuccessResponse,
    SyncRequest,
    SyncResponse,
    TokenRefreshResponse,
)
from app.services import google_drive
from app.services.google_drive import GoogleDriveClient
from app.services.transcription import find_job

router = APIRouter(prefix="/integrations", tags=["integrations"])
logger = get_logger(__name__)


def _to_response(integration: Integration) -> IntegrationResponse:
    current = google_drive.load_settings(integration)
    return IntegrationResponse(
        id=integration.id,
        provider=integration.provider,
        status=integration.status,
        auto_save=current.auto_save,
        folder_path=current.folder_path,
        sync_frequency=current.sync_frequency,
        connected_at=integration.connected_at,
        last_sync=integration.last_sync,
    )


def _dashboard_redirect(**params: str) -> RedirectResponse:
    url = f"{settings.app_url.rstrip('/')}/dashboard/integrations?{urlencode(params)}"
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


async def _require_integration(db: AsyncSession, user: User) -> Integration:
    integration = await google_drive.get_integration(db, user.id)
    if integration is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Integration not found")
    return integration


async def _require_connected(db: AsyncSession, user: User) -> Integration:
    integration = await _require_integration(db, user)
    if integration.status != "connected":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Integration is not connected"
        )
    return integration


@router.get("", response_model=List[IntegrationResponse])
async def list_integrations(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The caller's integrations; tokens are never included."""
    result = await db.execute(
        select(Integration)
        .where(Integration.user_id == current_user.id)
        .order_by(Integration.created_at)
    )
    return [_to_response(integration) for integration in result.scalars().all()]


@router.get("/google-drive", response_model=AuthorizationUrlResponse)
async def start_google_drive_oauth(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: GoogleDriveClient = Depends(get_google_drive_client),
):
    """Record a fresh OAuth state and return the Google consent URL."""
    state = secrets.token_hex(32)
    integration = await google_drive.get_integration(db, current_user.id)
    if integration is None:
        integration = Integration(
            id=str(uuid.uuid4()),
            user_id=current_user.id,
            provider=google_drive.PROVIDER,
            status="disconnected",
            settings={},
        )
        db.add(integration)

    current = google_drive.load_settings(integration)
    google_drive.store_settings(integration, current.model_copy(update={"oauth_state": state}))
    await db.commit()

    logger.info("Started Google Drive OAuth for user %s", current_user.id)
    return AuthorizationUrlResponse(authorization_url=client.authorization_url(state))


@router.get("/google-drive/callback")
async def google_drive_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    client: GoogleDriveClient = Depends(get_google_drive_client),
):
    """
    OAuth redirect target.

    The browser redirect carries no bearer token, so the integration is found
    through the ``state`` recorded when the flow started. Always redirects
    back to the dashboard with ``success=true`` or an ``error`` reason.
    """
    if error:
        logger.warning("Google OAuth returned error: %s", error)
        return _dashboard_redirect(error="oauth_error")
    if not code or not state:
        return _dashboard_redirect(error="invalid_callback")

    integration = await google_drive.get_integration_by_state(db, state)
    if integration is None:
        return _dashboard_redirect(error="integration_not_found")

    try:
        tokens = await client.exchange_code(code)
    except GoogleDriveError as exc:
        logger.error("Google OAuth code exchange failed for user %s: %s", integration.user_id, exc)
        return _dashboard_redirect(error="callback_error")

    current = google_drive.load_settings(integration)
    google_drive.store_settings(
        integration, current.model_copy(update={"tokens": tokens, "oauth_state": None})
    )
    integration.status = "connected"
    integration.connected_at = datetime.utcnow()
    await db.commit()

    logger.info("Google Drive connected for user %s", integration.user_id)
    return _dashboard_redirect(success="true")


@router.post("/google-drive/disconnect", response_model=SuccessResponse)
async def disconnect_google_drive(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: GoogleDriveClient = Depends(get_google_drive_client),
):
    """Revoke the stored token (best effort) and forget it."""
    integration = await _require_integration(db, current_user)
    current = google_drive.load_settings(integration)
    if current.tokens is not None:
        await client.revoke(current.tokens.refresh_token or current.tokens.access_token)

    google_drive.store_settings(
        integration, current.model_copy(update={"tokens": None, "oauth_state": None})
    )
    integration.status = "disconnected"
    await db.commit()

    logger.info("Google Drive disconnected for user %s", current_user.id)
    return SuccessResponse()


@router.put("/google-drive/settings", response_model=IntegrationResponse)
async def update_google_drive_settings(
    payload: IntegrationSettingsUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Merge sync preferences into the stored settings."""
    integration = await _require_integration(db, current_user)
    current = google_drive.load_settings(integration)
    google_drive.store_settings(
        integration, current.model_copy(update=payload.model_dump(exclude_none=True))
    )
    await db.commit()
    return _to_response(integration)


@router.post("/google-drive/refresh-token", response_model=TokenRefreshResponse)
async def refresh_google_drive_token(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: GoogleDriveClient = Depends(get_google_drive_client),
):
    """Force a token refresh regardless of expiry."""
    integration = await _require_connected(db, current_user)
    current = google_drive.load_settings(integration)
    if current.tokens is None:
        raise MissingTokenError("No refresh token available")

    refreshed = await client.refresh(current.tokens)
    google_drive.store_settings(integration, current.model_copy(update={"tokens": refreshed}))
    await db.commit()
    return TokenRefreshResponse(access_token=refreshed.access_token, expires_at=refreshed.expires_at)


@router.get("/google-drive/files", response_model=DriveFileListResponse)
async def list_google_drive_files(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: GoogleDriveClient = Depends(get_google_drive_client),
):
    integration = await _require_connected(db, current_user)
    current = await google_drive.fresh_settings(db, client, integration)
    files = await client.list_files(current.tokens, current.folder_path)
    return DriveFileListResponse(files=[DriveFile.model_validate(f) for f in files])


@router.delete("/google-drive/files/{file_id}", response_model=SuccessResponse)
async def delete_google_drive_file(
    file_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: GoogleDriveClient = Depends(get_google_drive_client),
):
    integration = await _require_connected(db, current_user)
    current = await google_drive.fresh_settings(db, client, integration)
    await client.delete_file(current.tokens, file_id)
    return SuccessResponse()


@router.post("/google-drive/sync", response_model=SyncResponse)
async def sync_transcription(
    payload: SyncRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: GoogleDriveClient = Depends(get_google_drive_client),
):
    """
    Upload a completed transcript as a text file to the configured folder.

    Raises:
        HTTPException: 404 if the integration or transcription is missing,
            400 if it is disconnected or the transcription is not completed
    """
    integration = await _require_connected(db, current_user)
    job = await find_job(db, current_user.id, payload.transcription_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transcription not found")
    if job.status != "completed":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Transcription is not completed"
        )

    current = await google_drive.fresh_settings(db, client, integration)
    name = f"{PurePosixPath(job.file_name).stem or job.id}.txt"
    uploaded = await client.upload(
        current.tokens,
        name,
        "text/plain",
        (job.transcription_text or "").encode("utf-8"),
        current.folder_path,
    )
    integration.last_sync = datetime.utcnow()
    await db.commit()

    logger.info("Synced transcription %s to Google Drive for user %s", job.id, current_user.id)
    return SyncResponse(file=DriveFile.model_validate(uploaded))
