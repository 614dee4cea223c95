# src/fobsync/main.py
"""Main entry point for the fobsync service."""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo

from fastapi import FastAPI

from fobsync.api import cards_router, system_router, webhook_router
from fobsync.core.settings import settings
from fobsync.db.session import SessionLocal, create_tables
from fobsync.services.archiver import SwipeArchiver
from fobsync.services.cards import get_card_directory
from fobsync.services.device import get_device_link
from fobsync.services.keycloak import get_keycloak_client, keycloak_enabled
from fobsync.services.reconcile import SYNC_ERRORS, ReconciliationController
from fobsync.services.swipes import SwipeLogReader

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="fobsync",
    description="Keeps access control cards in sync with a Keycloak group",
    version=settings.app_version,
)

app.include_router(webhook_router)
app.include_router(cards_router)
app.include_router(system_router)


def build_controller() -> ReconciliationController | None:
    if not settings.sync_enabled:
        return None
    if not keycloak_enabled():
        logger.warning("Keycloak is not configured; card sync is disabled")
        return None
    return ReconciliationController(
        get_card_directory(),
        get_keycloak_client(),
        webhook_url=settings.webhook_url,
        resync_interval=settings.resync_interval_seconds,
        cooldown=settings.cooldown_seconds,
    )


def build_archiver() -> SwipeArchiver | None:
    if not settings.archiver_enabled:
        return None
    reader = SwipeLogReader(get_device_link(), ZoneInfo(settings.device_timezone))
    return SwipeArchiver(
        reader,
        SessionLocal,
        users=get_keycloak_client() if keycloak_enabled() else None,
        interval=settings.swipe_scrape_interval_seconds,
    )


@app.on_event("startup")
async def on_startup() -> None:
    create_tables()

    controller = build_controller()
    if controller is not None:
        try:
            await controller.ensure_webhook()
        except SYNC_ERRORS as exc:
            # The periodic resync still converges without webhooks.
            logger.warning("could not ensure keycloak webhook: %s", exc)
        await controller.start()
    app.state.controller = controller

    archiver = build_archiver()
    if archiver is not None:
        await archiver.start()
    app.state.archiver = archiver


@app.on_event("shutdown")
async def on_shutdown() -> None:
    controller: ReconciliationController | None = getattr(app.state, "controller", None)
    if controller:
        await controller.stop()
    archiver: SwipeArchiver | None = getattr(app.state, "archiver", None)
    if archiver:
        await archiver.stop()
    if keycloak_enabled():
        await get_keycloak_client().close()
    await get_device_link().close()


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the service."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "webhook": "/webhook",
        "cards": "/cards",
    }


def run() -> None:
    """Serve the webhook listener and run the background workers."""
    import uvicorn

    uvicorn.run(app, host=settings.webhook_host, port=settings.webhook_port)


if __name__ == "__main__":
    run()
