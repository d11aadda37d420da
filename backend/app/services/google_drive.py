"""Google Drive OAuth token management and file operations.

Every Drive call goes through ``ensure_fresh_token`` first. Folder paths are
resolved from ``root`` one segment at a time on every call; nothing is cached.
"""

from __future__ import annotations

import json
import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import GoogleDriveError, MissingTokenError
from app.logging_config import get_logger
from app.models.integration import Integration
from app.schemas.integration import IntegrationSettings, OAuthTokens

logger = get_logger(__name__)

PROVIDER = "google_drive"
AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
REVOKE_URL = "https://oauth2.googleapis.com/revoke"
FILES_URL = "https://www.googleapis.com/drive/v3/files"
UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
FILE_FIELDS = "id,name,mimeType,webViewLink,createdTime,modifiedTime"

UPLOAD_ERRORS = {
    401: "Google Drive authorization error. Please reconnect your account.",
    403: "Permission denied. The app may not have sufficient access to upload files.",
    404: "The folder path was not found in Google Drive.",
    429: "Rate limit exceeded. Please try again later.",
}


def _escape_query(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _split_path(path: str) -> List[str]:
    return [part for part in (path or "").split("/") if part]


class GoogleDriveClient:
    """OAuth and Drive v3 REST calls over a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        scopes: Optional[List[str]] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes or []
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls) -> "GoogleDriveClient":
        return cls(
            settings.google_client_id,
            settings.google_client_secret,
            settings.google_redirect_uri,
            scopes=settings.google_scopes_list,
            timeout=settings.vendor_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _call(
        self,
        operation: str,
        method: str,
        url: str,
        *,
        expected_empty: bool = False,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        try:
            resp = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("Google Drive %s failed: %s", operation, exc)
            raise GoogleDriveError(f"Failed to {operation}: {exc}") from exc

        if resp.status_code >= 400:
            logger.error(
                "Google Drive %s returned %s: %s", operation, resp.status_code, resp.text[:500]
            )
            raise GoogleDriveError(f"Failed to {operation}", status_code=resp.status_code)
        if expected_empty or not resp.content:
            return {}
        return resp.json()

    @staticmethod
    def _auth(tokens: OAuthTokens) -> Dict[str, str]:
        return {"Authorization": f"Bearer {tokens.access_token}"}

    # OAuth

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, *, now: Optional[float] = None) -> OAuthTokens:
        """Trade an authorization code for an access/refresh token pair."""
        data = await self._call(
            "exchange code for tokens",
            "POST",
            TOKEN_URL,
            data={
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        now = now if now is not None else time.time()
        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=now + float(data.get("expires_in") or 3600),
        )

    async def refresh(self, tokens: OAuthTokens, *, now: Optional[float] = None) -> OAuthTokens:
        """Exchange the refresh token for a new access token; keeps the refresh token."""
        if not tokens.refresh_token:
            raise MissingTokenError("No refresh token available")
        data = await self._call(
            "refresh token",
            "POST",
            TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": tokens.refresh_token,
                "grant_type": "refresh_token",
            },
        )
        now = now if now is not None else time.time()
        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=tokens.refresh_token,
            expires_at=now + float(data.get("expires_in") or 3600),
        )

    async def ensure_fresh_token(
        self,
        integration_settings: IntegrationSettings,
        *,
        now: Optional[float] = None,
    ) -> IntegrationSettings:
        """Return settings whose access token is valid at ``now``.

        The input is returned unchanged while the token is live; an expired
        token is refreshed and a copy with the tokens replaced is returned.
        """
        tokens = integration_settings.tokens
        if tokens is None or not tokens.access_token:
            raise MissingTokenError("No access token available")

        now = now if now is not None else time.time()
        if now < tokens.expires_at:
            return integration_settings

        if not tokens.refresh_token:
            raise MissingTokenError("No refresh token available")
        logger.info("Google Drive access token expired; refreshing")
        refreshed = await self.refresh(tokens, now=now)
        return integration_settings.model_copy(update={"tokens": refreshed})

    async def revoke(self, token: str) -> bool:
        """Best-effort token revocation; returns False instead of raising."""
        try:
            await self._call(
                "revoke token",
                "POST",
                REVOKE_URL,
                params={"token": token},
                expected_empty=True,
            )
        except GoogleDriveError as exc:
            logger.warning("Token revocation failed: %s", exc)
            return False
        return True

    # Drive

    async def ensure_folder(self, tokens: OAuthTokens, path: str) -> str:
        """Resolve ``path`` to a folder id, creating any missing segment."""
        parent_id = "root"
        for part in _split_path(path):
            query = (
                f"name='{_escape_query(part)}' and mimeType='{FOLDER_MIME_TYPE}' "
                f"and '{parent_id}' in parents and trashed=false"
            )
            found = await self._call(
                "check folder existence",
                "GET",
                FILES_URL,
                params={"q": query, "fields": "files(id,name)"},
                headers=self._auth(tokens),
            )
            files = found.get("files") or []
            if files:
                parent_id = files[0]["id"]
                continue

            created = await self._call(
                "create folder",
                "POST",
                FILES_URL,
                json={"name": part, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]},
                headers=self._auth(tokens),
            )
            logger.info("Created Google Drive folder %r (%s)", part, created.get("id"))
            parent_id = created["id"]
        return parent_id

    async def upload(
        self,
        tokens: OAuthTokens,
        name: str,
        mime_type: str,
        content: bytes,
        folder_path: str,
    ) -> Dict[str, Any]:
        folder_id = await self.ensure_folder(tokens, folder_path)
        metadata = {"name": name, "mimeType": mime_type, "parents": [folder_id]}
        boundary = uuid.uuid4().hex
        body = b"".join(
            [
                f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n".encode(),
                json.dumps(metadata).encode(),
                f"\r\n--{boundary}\r\nContent-Type: {mime_type}\r\n\r\n".encode(),
                content,
                f"\r\n--{boundary}--\r\n".encode(),
            ]
        )
        logger.info(
            "Uploading %r (%s bytes) to Google Drive folder %r", name, len(content), folder_path
        )
        try:
            resp = await self._http.post(
                UPLOAD_URL,
                params={"uploadType": "multipart", "fields": "id,name,mimeType,webViewLink"},
                content=body,
                headers={
                    **self._auth(tokens),
                    "Content-Type": f"multipart/related; boundary={boundary}",
                },
            )
        except httpx.HTTPError as exc:
            raise GoogleDriveError(f"Failed to upload file to Google Drive: {exc}") from exc

        if resp.status_code >= 400:
            message = UPLOAD_ERRORS.get(resp.status_code)
            if message is None:
                try:
                    detail = resp.json().get("error", {}).get("message")
                except (ValueError, AttributeError):
                    detail = None
                message = f"Failed to upload file to Google Drive: {detail or resp.reason_phrase}"
            logger.error("Google Drive upload returned %s: %s", resp.status_code, message)
            raise GoogleDriveError(message, status_code=resp.status_code)

        data = resp.json()
        logger.info("Uploaded %r to Google Drive as %s", name, data.get("id"))
        return data

    async def list_files(self, tokens: OAuthTokens, folder_path: str) -> List[Dict[str, Any]]:
        folder_id = await self.ensure_folder(tokens, folder_path)
        data = await self._call(
            "list files from Google Drive",
            "GET",
            FILES_URL,
            params={
                "q": f"'{folder_id}' in parents and trashed=false",
                "fields": f"files({FILE_FIELDS})",
            },
            headers=self._auth(tokens),
        )
        return data.get("files") or []

    async def delete_file(self, tokens: OAuthTokens, file_id: str) -> None:
        await self._call(
            "delete file from Google Drive",
            "DELETE",
            f"{FILES_URL}/{file_id}",
            headers=self._auth(tokens),
            expected_empty=True,
        )
        logger.info("Deleted Google Drive file %s", file_id)


# Persistence helpers


async def get_integration(
    db: AsyncSession, user_id: str, provider: str = PROVIDER
) -> Optional[Integration]:
    result = await db.execute(
        select(Integration).where(Integration.user_id == user_id, Integration.provider == provider)
    )
    return result.scalar_one_or_none()


async def get_integration_by_state(db: AsyncSession, state: str) -> Optional[Integration]:
    result = await db.execute(
        select(Integration).where(
            Integration.provider == PROVIDER,
            Integration.settings["oauth_state"].as_string() == state,
        )
    )
    return result.scalars().first()


def load_settings(integration: Integration) -> IntegrationSettings:
    return IntegrationSettings.model_validate(integration.settings or {})


def store_settings(integration: Integration, integration_settings: IntegrationSettings) -> None:
    # Assign a new dict so the JSON column is flagged as modified.
    integration.settings = integration_settings.to_json()
    integration.updated_at = datetime.utcnow()


async def fresh_settings(
    db: AsyncSession,
    client: GoogleDriveClient,
    integration: Integration,
    *,
    now: Optional[float] = None,
) -> IntegrationSettings:
    """``ensure_fresh_token`` for a stored integration, persisting any refresh."""
    current = load_settings(integration)
    updated = await client.ensure_fresh_token(current, now=now)
    if updated is not current:
        store_settings(integration, updated)
        await db.commit()
        logger.info("Stored refreshed Google Drive token for user %s", integration.user_id)
    return updated
