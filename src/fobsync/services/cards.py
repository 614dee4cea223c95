"""Card management on the access control device."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from bs4 import BeautifulSoup

from fobsync.services.device import DeviceLink, DeviceProtocolError, get_device_link

logger = logging.getLogger(__name__)

# Device form endpoints for the user/card pages
LIST_CARDS_PATH = "/ACT_ID_21"
ADD_CARD_PATH = "/ACT_ID_325"
REMOVE_CARD_PATH = "/ACT_ID_324"


@dataclass(frozen=True)
class Card:
    """A card authorized on the device."""

    id: int
    number: int
    name: str

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


def parse_card_page(html: str | bytes) -> list[Card]:
    """Parse the device's card listing.

    Rows map positionally to device id, card number and name. Header rows and
    rows without numeric id/number are skipped.

    Raises:
        DeviceProtocolError: If the page has no table at all
    """

    soup = BeautifulSoup(html, "html.parser")
    if soup.find("table") is None:
        raise DeviceProtocolError("no card table found in access controller response")

    cards: list[Card] = []
    for row in soup.find_all("tr"):
        cells = row.find_all("td", recursive=False)
        if len(cells) < 3:
            continue
        card_id, number = (cell.get_text(strip=True) for cell in cells[:2])
        if not (card_id.isdigit() and number.isdigit()):
            continue
        cards.append(Card(id=int(card_id), number=int(number), name=cells[2].get_text(strip=True)))
    return cards


class CardDirectory:
    """Lists, adds and removes cards through a DeviceLink."""

    def __init__(self, link: DeviceLink) -> None:
        self.link = link

    async def list_cards(self) -> list[Card]:
        response = await self.link.post_form(LIST_CARDS_PATH, {"s2": "Users"})
        return parse_card_page(response.body)

    async def add_card(self, number: int, name: str) -> None:
        """Authorize ``number`` on the device under ``name``."""

        form = {
            "CN": str(number),
            "UN": name,
            "s4": "Add",
        }
        await self.link.post_form(ADD_CARD_PATH, form)
        logger.debug("added card %d (%s) to the device", number, name)

    async def remove_card(self, card_id: int) -> None:
        """Delete the card with device id ``card_id``."""

        form = {
            "D": str(card_id),
            "s4": "Delete",
        }
        await self.link.post_form(REMOVE_CARD_PATH, form)
        logger.debug("removed card id %d from the device", card_id)


def get_card_directory() -> CardDirectory:
    """Return a card directory bound to the process-wide device link."""
    return CardDirectory(get_device_link())
