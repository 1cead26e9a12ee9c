"""Health check endpoints."""

from __future__ import annotations

import os

from fastapi import APIRouter, Request

router = APIRouter()


@router.get(
    "/health",
    summary="Health check",
    description="Basic health check endpoint.",
)
async def health():
    return {"status": "healthy", "service": "kubeforge"}


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if service is ready to receive traffic.",
)
async def ready(request: Request):
    """Readiness check.

    Verifies the metadata home directory exists and is writable.
    """
    home_dir = request.app.state.services.settings.home_dir
    checks = {
        "home_dir": home_dir.is_dir() and os.access(home_dir, os.W_OK),
    }
    all_ready = all(checks.values())

    return {
        "status": "ready" if all_ready else "not_ready",
        "checks": checks,
    }
