"""Swipe log scraping for the access control device.

The device only exposes its swipe history as an HTML table, twenty rows per
page, newest first. SwipeLogReader walks those pages backwards until it
reaches an id the caller already has.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo

from bs4 import BeautifulSoup

from fobsync.services.device import DeviceLink, DeviceProtocolError

logger = logging.getLogger(__name__)

SWIPE_LOG_PATH = "/ACT_ID_345"
PAGE_SIZE = 20
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

# Walks the whole log; real ids start at 1.
BEGINNING_OF_LOG = 0
# Anchor for the most recent page.
LATEST_PAGE = 0
# Returned by a visitor to end iteration early.
STOP = True

ZERO_TIME = datetime(1, 1, 1, tzinfo=UTC)

_DOOR_FROM_STATUS = re.compile(r"\[([^\]]+)\]")


@dataclass(frozen=True)
class SwipeRecord:
    """One entry of the device's swipe log."""

    id: int
    card_id: int
    name: str
    status: str
    door_id: str
    time: datetime


@dataclass(frozen=True)
class SwipePage:
    """One parsed page of the log.

    ``row_count`` and ``top_id`` describe the rows the device actually sent,
    reboot entries included; paging arithmetic must use them rather than the
    filtered ``records``.
    """

    records: list[SwipeRecord]
    row_count: int = 0
    top_id: int = 0


SwipeVisitor = Callable[[SwipeRecord], Awaitable[bool | None]]


def _cell_text(cell) -> str:
    return cell.get_text(strip=True)


def _parse_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


def parse_swipe_time(value: str, tz: tzinfo = UTC) -> datetime:
    """Parse a device timestamp, returning ZERO_TIME when it is malformed."""

    try:
        return datetime.strptime(value, TIME_FORMAT).replace(tzinfo=tz)
    except ValueError:
        return ZERO_TIME


def door_from_status(status: str) -> str:
    """Extract the bracketed door id from an ``Allow IN`` status."""

    if "Allow IN" not in status:
        return ""
    match = _DOOR_FROM_STATUS.search(status)
    return match.group(1) if match else ""


def parse_swipe_page(html: str | bytes, tz: tzinfo = UTC) -> list[SwipeRecord]:
    """Parse one page of the swipe log into records, newest first.

    Reboot entries and rows without a numeric id are dropped.

    Raises:
        DeviceProtocolError: If the page has no table at all
    """
    return parse_swipe_log_page(html, tz).records


def parse_swipe_log_page(html: str | bytes, tz: tzinfo = UTC) -> SwipePage:
    """Parse a page, keeping the raw row count and top id for pagination."""

    soup = BeautifulSoup(html, "html.parser")
    if soup.find("table") is None:
        raise DeviceProtocolError("no table found in access controller response")

    records: list[SwipeRecord] = []
    row_count = 0
    top_id = 0
    for row in soup.find_all("tr"):
        cells = row.find_all("td", recursive=False)
        if len(cells) < 5:
            continue

        raw_id = _parse_int(_cell_text(cells[0]))
        if raw_id == 0:
            continue  # header or unreadable row
        row_count += 1
        if top_id == 0:
            top_id = raw_id

        status = _cell_text(cells[3])
        if "Reboot" in status:
            continue

        records.append(
            SwipeRecord(
                id=raw_id,
                card_id=_parse_int(_cell_text(cells[1])),
                name=_cell_text(cells[2]),
                status=status,
                door_id=door_from_status(status),
                time=parse_swipe_time(_cell_text(cells[4]), tz),
            )
        )
    return SwipePage(records=records, row_count=row_count, top_id=top_id)


class SwipeLogReader:
    """Paginates the device swipe log from newest to oldest."""

    def __init__(self, link: DeviceLink, tz: tzinfo = UTC) -> None:
        self.link = link
        self.tz = tz

    async def list_swipes_since(self, earliest_id: int, visit: SwipeVisitor) -> None:
        """Visit every swipe with an id greater than ``earliest_id``, newest first.

        Pass BEGINNING_OF_LOG to walk all the way back. The visitor may return
        STOP to end early; exceptions it raises propagate without fetching
        further pages.
        """

        anchor = LATEST_PAGE
        page_number = 0
        while True:
            try:
                page = await self.fetch_page(anchor)
            except DeviceProtocolError as exc:
                raise DeviceProtocolError(
                    f"getting page {page_number}: {exc}",
                    status_code=exc.status_code,
                    body=exc.body,
                ) from exc

            for record in page.records:
                if record.id <= earliest_id:
                    return
                if await visit(record) is STOP:
                    return

            # Reboot rows count towards the page size and the cursor.
            if page.row_count < PAGE_SIZE:
                return  # reached the end

            # The device pages by "rows before this id"; the next page's top id
            # lines up with the previous top id minus the rows seen, offset by
            # the page size minus one.
            anchor = page.top_id - page.row_count
            if anchor <= max(LATEST_PAGE, earliest_id):
                return  # older pages only hold ids the caller already has
            page_number += 1

    async def fetch_page(self, anchor: int) -> SwipePage:
        """Fetch and parse the page whose cursor is ``anchor + PAGE_SIZE - 1``."""

        form = {
            "PC": str(anchor + PAGE_SIZE - 1),
            "PE": "0",
            "PN": "Next",
        }
        response = await self.link.post_form(SWIPE_LOG_PATH, form)
        return parse_swipe_log_page(response.body, self.tz)
