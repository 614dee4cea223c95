# src/fobsync/schemas/card.py
"""Card-related Pydantic schemas."""

from pydantic import BaseModel, ConfigDict


class CardResponse(BaseModel):
    """A card as currently stored on the access control device."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    number: int
    name: str
