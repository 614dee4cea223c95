"""Liveness and status endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request

from fobsync.core.settings import settings

router = APIRouter(tags=["system"])


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@router.get("/status")
async def get_status(request: Request) -> dict[str, object]:
    """Return a sanitized snapshot of the workers and their configuration."""
    controller = getattr(request.app.state, "controller", None)
    archiver = getattr(request.app.state, "archiver", None)
    return {
        "app": {"name": settings.app_name, "version": settings.app_version},
        "sync": {
            "enabled": controller is not None,
            "state": controller.state.value if controller is not None else None,
            "trigger_pending": controller.trigger.pending if controller is not None else False,
            "resync_interval_seconds": settings.resync_interval_seconds,
        },
        "archiver": {
            "enabled": archiver is not None,
            "scrape_interval_seconds": settings.swipe_scrape_interval_seconds,
        },
    }
