# src/fobsync/api/endpoints/__init__.py
"""API endpoint modules."""

from .cards import router as cards_router
from .system import router as system_router
from .webhook import router as webhook_router

__all__ = ["cards_router", "system_router", "webhook_router"]
