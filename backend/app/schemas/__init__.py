"""Pydantic schemas package."""

from app.schemas.auth import UserResponse
from app.schemas.integration import IntegrationSettings, OAuthTokens
from app.schemas.transcription import TranscriptionMetadata

__all__ = ["UserResponse", "IntegrationSettings", "OAuthTokens", "TranscriptionMetadata"]
