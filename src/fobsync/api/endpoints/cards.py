# src/fobsync/api/endpoints/cards.py
"""Diagnostic listing of the cards stored on the device."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status

from fobsync.api.dependencies import CardDirectoryDep
from fobsync.schemas.card import CardResponse
from fobsync.services.device import DeviceError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cards"])


@router.get("/cards", response_model=list[CardResponse])
async def list_cards(directory: CardDirectoryDep) -> list[CardResponse]:
    """Return the device's current card list."""
    logger.info("received list cards request")
    try:
        cards = await directory.list_cards()
    except DeviceError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    return [CardResponse.model_validate(card) for card in cards]
