"""Security headers are set on every response, public or authenticated."""

from __future__ import annotations

import httpx
import pytest
from httpx import ASGITransport

from backend.web import main

pytestmark = pytest.mark.anyio("asyncio")


@pytest.mark.anyio
@pytest.mark.parametrize("path", ["/health", "/api/tracker/courses"])
async def test_baseline_security_headers(path):
    async with httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test") as client:
        resp = await client.get(path)
    assert resp.headers.get("X-Content-Type-Options") == "nosniff"
    assert resp.headers.get("X-Frame-Options") == "DENY"
    assert resp.headers.get("Referrer-Policy") == "strict-origin-when-cross-origin"
    assert "default-src 'none'" in resp.headers.get("Content-Security-Policy", "")


@pytest.mark.anyio
async def test_hsts_only_in_prod():
    async with httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test") as client:
        dev = await client.get("/health")
        main.SETTINGS.override_environment("prod")
        try:
            prod = await client.get("/health")
        finally:
            main.SETTINGS.override_environment(None)
    assert "Strict-Transport-Security" not in dev.headers
    assert prod.headers.get("Strict-Transport-Security", "").startswith("max-age=")
