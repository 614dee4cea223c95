# src/fobsync/api/__init__.py
"""HTTP endpoints served alongside the background workers."""

from .endpoints import cards_router, system_router, webhook_router

__all__ = ["cards_router", "system_router", "webhook_router"]
