"""Tests for /api prefix handling."""

import pytest
from httpx import AsyncClient, ASGITransport

from app.main import app
from app.middleware.api_prefix import strip_prefix


@pytest.mark.parametrize(
    "path,expected",
    [
        ("/api", "/"),
        ("/api/credits", "/credits"),
        ("/api/transcription/tx_1", "/transcription/tx_1"),
        ("/apiary", None),
        ("/credits", None),
    ],
)
def test_strip_prefix(path, expected):
    assert strip_prefix(path, "/api") == expected


@pytest.mark.asyncio
async def test_routes_served_with_and_without_prefix():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        bare = await client.get("/health")
        prefixed = await client.get("/api/health")

    assert bare.status_code == 200
    assert prefixed.status_code == 200
    assert prefixed.json()["environment"] == "testing"


@pytest.mark.asyncio
async def test_health_reports_integrations():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")

    data = response.json()
    assert set(data["integrations"]) == {"assemblyai", "google_drive", "paddle"}
    assert data["database"] in ("healthy", "unhealthy")
