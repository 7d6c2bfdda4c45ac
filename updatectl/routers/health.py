"""Health-check endpoint."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_class=PlainTextResponse)
async def service_health() -> str:
    """Basic liveness probe (no auth required)."""
    return "OK"
