"""Pydantic schemas for storage integrations."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.config import settings


class OAuthTokens(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: float = Field(..., description="Expiry as a UNIX timestamp in seconds")


class IntegrationSettings(BaseModel):
    """Typed view of ``integrations.settings``."""

    model_config = ConfigDict(extra="ignore")

    auto_save: bool = False
    folder_path: str = Field(default_factory=lambda: settings.google_default_folder)
    sync_frequency: Literal["realtime", "daily", "weekly"] = "realtime"
    tokens: Optional[OAuthTokens] = None
    oauth_state: Optional[str] = None

    def to_json(self) -> dict:
        return self.model_dump(mode="json")


class IntegrationResponse(BaseModel):
    """Integration as shown to its owner; tokens are never echoed."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    provider: str
    status: str
    auto_save: bool = False
    folder_path: str = "/Transcriptions"
    sync_frequency: str = "realtime"
    connected_at: Optional[datetime] = None
    last_sync: Optional[datetime] = None


class AuthorizationUrlResponse(BaseModel):
    authorization_url: str


class IntegrationSettingsUpdate(BaseModel):
    auto_save: Optional[bool] = None
    folder_path: Optional[str] = Field(default=None, min_length=1, max_length=255)
    sync_frequency: Optional[Literal["realtime", "daily", "weekly"]] = None


class DisconnectRequest(BaseModel):
    token: Optional[str] = None


class TokenRefreshResponse(BaseModel):
    access_token: str
    expires_at: float


class DriveFile(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: str
    mimeType: Optional[str] = None
    webViewLink: Optional[str] = None
    createdTime: Optional[str] = None
    modifiedTime: Optional[str] = None


class DriveFileListResponse(BaseModel):
    success: bool = True
    files: List[DriveFile]


class SyncRequest(BaseModel):
    transcription_id: str


class SyncResponse(BaseModel):
    success: bool = True
    file: DriveFile


class SuccessResponse(BaseModel):
    success: bool = True
