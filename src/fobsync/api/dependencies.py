"""Shared API dependencies for the webhook and diagnostic endpoints."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from fobsync.services.cards import CardDirectory, get_card_directory
from fobsync.services.reconcile import ReconciliationController


def get_controller(request: Request) -> ReconciliationController:
    """Return the running reconciliation controller.

    Raises:
        HTTPException: If card sync is disabled in this process
    """
    controller: ReconciliationController | None = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Card sync is not enabled",
        )
    return controller


def get_card_directory_dep() -> CardDirectory:
    """Get CardDirectory dependency for dependency injection."""
    return get_card_directory()


ControllerDep = Annotated[ReconciliationController, Depends(get_controller)]
CardDirectoryDep = Annotated[CardDirectory, Depends(get_card_directory_dep)]
