"""Tests for security headers middleware."""

import pytest
from httpx import AsyncClient, ASGITransport

from app.config import settings
from app.main import app


@pytest.mark.asyncio
async def test_security_headers_present():
    """Test that security headers are added to responses."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")

        assert "Content-Security-Policy" in response.headers
        assert "X-Frame-Options" in response.headers
        assert "X-Content-Type-Options" in response.headers
        assert "Referrer-Policy" in response.headers
        assert "Permissions-Policy" in response.headers


@pytest.mark.asyncio
async def test_csp_header_content():
    """Responses are JSON only, so nothing may be loaded or framed."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")

        csp = response.headers["Content-Security-Policy"]
        assert "default-src 'none'" in csp
        assert "frame-ancestors 'none'" in csp


@pytest.mark.asyncio
async def test_frame_options_and_nosniff():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")

        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["Cache-Control"] == "no-store"


@pytest.mark.asyncio
async def test_headers_on_error_responses():
    """Security headers are also applied to 4xx responses."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/does-not-exist")

        assert response.status_code == 404
        assert response.headers["X-Frame-Options"] == "DENY"


@pytest.mark.asyncio
async def test_hsts_only_in_production(monkeypatch):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")
        assert "Strict-Transport-Security" not in response.headers

        monkeypatch.setattr(settings, "environment", "production")
        response = await client.get("/health")
        assert "max-age=31536000" in response.headers["Strict-Transport-Security"]
