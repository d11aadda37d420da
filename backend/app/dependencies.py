"""Process-scoped vendor clients exposed as FastAPI dependencies.

``app.main.lifespan`` builds one client of each kind and stores it on
``app.state``; tests swap them through ``app.dependency_overrides``.
"""

from fastapi import Request

from app.services.assemblyai import AssemblyAIClient
from app.services.google_drive import GoogleDriveClient


def get_assemblyai_client(request: Request) -> AssemblyAIClient:
    client = getattr(request.app.state, "assemblyai", None)
    if client is None:
        client = AssemblyAIClient.from_settings()
        request.app.state.assemblyai = client
    return client


def get_google_drive_client(request: Request) -> GoogleDriveClient:
    client = getattr(request.app.state, "google_drive", None)
    if client is None:
        client = GoogleDriveClient.from_settings()
        request.app.state.google_drive = client
    return client
