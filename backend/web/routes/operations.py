"""Operations endpoints (health probe for orchestrators)."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

operations_router = APIRouter(tags=["Operations"])


@operations_router.get("/health")
async def health_check():
    # Security: include no-store to avoid caching any runtime status.
    return JSONResponse({"status": "healthy"}, headers={"Cache-Control": "private, no-store"})
