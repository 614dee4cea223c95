# src/fobsync/models/__init__.py
"""SQLAlchemy models for the fobsync service."""

from .swipe import Swipe

__all__ = ["Swipe"]
