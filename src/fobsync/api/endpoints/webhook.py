# src/fobsync/api/endpoints/webhook.py
"""Keycloak admin-event webhook receiver."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response, status

from fobsync.api.dependencies import ControllerDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])

WEBHOOK_METHODS = ["GET", "POST", "PUT"]


@router.api_route("/webhook", methods=WEBHOOK_METHODS)
@router.api_route("/webhook/{subpath:path}", methods=WEBHOOK_METHODS)
async def receive_webhook(controller: ControllerDep) -> Response:
    """Request a resync. The event body is ignored; any admin event may change membership."""
    logger.info("received webhook")
    controller.request_sync()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
