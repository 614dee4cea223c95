"""
Pydantic schemas for API response models.
"""

from .card import CardResponse

__all__ = ["CardResponse"]
