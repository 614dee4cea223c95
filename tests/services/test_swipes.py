"""Tests for swipe log parsing and backward pagination."""

from datetime import UTC, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

from fobsync.services.device import DeviceProtocolError, DeviceResponse
from fobsync.services.swipes import (
    BEGINNING_OF_LOG,
    PAGE_SIZE,
    STOP,
    SWIPE_LOG_PATH,
    ZERO_TIME,
    SwipeLogReader,
    SwipeRecord,
    door_from_status,
    parse_swipe_log_page,
    parse_swipe_page,
)

FIXTURES = Path(__file__).resolve().parents[1] / "fixtures"


def render_page(ids: list[int], reboots: frozenset[int] = frozenset()) -> str:
    rows = "".join(
        f"<tr><td>{i}</td><td>{1000 + i}</td><td>user{i}</td>"
        f"<td>{'Reboot' if i in reboots else 'Allow IN[#1DOOR]'}</td>"
        f"<td>2023-04-01 12:00:00</td></tr>"
        for i in ids
    )
    return (
        "<html><body><table>"
        "<tr><td>Index</td><td>Card NO.</td><td>Name</td><td>Status</td><td>Date</td></tr>"
        f"{rows}</table></body></html>"
    )


class FakeSwipeDevice:
    """Serves a log of ids 1..total the way the device pages it."""

    def __init__(self, total: int, reboots: frozenset[int] = frozenset()) -> None:
        self.total = total
        self.reboots = reboots
        self.forms: list[dict[str, str]] = []

    async def post_form(self, path: str, form: dict[str, str]) -> DeviceResponse:
        assert path == SWIPE_LOG_PATH
        self.forms.append(dict(form))
        cursor = int(form["PC"])
        top = self.total if cursor == PAGE_SIZE - 1 else cursor - (PAGE_SIZE - 1)
        ids = [i for i in range(top, top - PAGE_SIZE, -1) if i >= 1]
        return DeviceResponse(status_code=200, body=render_page(ids, self.reboots).encode())


async def collect(reader: SwipeLogReader, earliest_id: int) -> list[int]:
    seen: list[int] = []

    async def visit(record: SwipeRecord) -> None:
        seen.append(record.id)

    await reader.list_swipes_since(earliest_id, visit)
    return seen


def test_parse_fixture_page() -> None:
    html = (FIXTURES / "swipes_page.html").read_bytes()

    records = parse_swipe_page(html)

    assert [r.id for r in records] == [4127, 4125, 4124]
    first = records[0]
    assert first.card_id == 9001
    assert first.name == "592af5478f6842d88b814a5d233b7cce"
    assert first.door_id == "#1DOOR"
    assert first.time == datetime(2023, 4, 1, 18, 22, 7, tzinfo=UTC)
    assert records[1].door_id == ""  # denied swipes carry no door
    assert records[2].time == ZERO_TIME


def test_page_geometry_counts_reboot_rows() -> None:
    page = parse_swipe_log_page((FIXTURES / "swipes_page.html").read_bytes())

    assert page.row_count == 4
    assert page.top_id == 4127
    assert len(page.records) == 3


def test_parse_applies_device_timezone() -> None:
    html = render_page([5])
    tz = ZoneInfo("America/Chicago")

    (record,) = parse_swipe_page(html, tz)

    assert record.time.tzinfo == tz
    assert record.time.hour == 12


def test_parse_without_table_is_an_error() -> None:
    with pytest.raises(DeviceProtocolError):
        parse_swipe_page("<html><body>Login required</body></html>")


def test_parse_empty_table() -> None:
    assert parse_swipe_page("<table></table>") == []


def test_door_from_status() -> None:
    assert door_from_status("Allow IN[#3DOOR]") == "#3DOOR"
    assert door_from_status("Forbid IN[#3DOOR]") == ""
    assert door_from_status("Allow IN") == ""


@pytest.mark.asyncio
async def test_walks_entire_log_newest_first() -> None:
    device = FakeSwipeDevice(total=45)
    reader = SwipeLogReader(device)

    seen = await collect(reader, BEGINNING_OF_LOG)

    assert seen == list(range(45, 0, -1))
    assert [form["PC"] for form in device.forms] == ["19", "44", "24"]
    assert all(form["PE"] == "0" and form["PN"] == "Next" for form in device.forms)


@pytest.mark.asyncio
async def test_exact_multiple_of_page_size_terminates() -> None:
    device = FakeSwipeDevice(total=40)
    reader = SwipeLogReader(device)

    seen = await collect(reader, BEGINNING_OF_LOG)

    assert seen == list(range(40, 0, -1))
    assert len(device.forms) == 2


@pytest.mark.asyncio
async def test_stops_at_earliest_id_without_fetching_more() -> None:
    device = FakeSwipeDevice(total=45)
    reader = SwipeLogReader(device)

    seen = await collect(reader, 30)

    assert seen == list(range(45, 30, -1))
    assert len(device.forms) == 1


@pytest.mark.asyncio
async def test_empty_log_ends_cleanly() -> None:
    device = FakeSwipeDevice(total=0)
    reader = SwipeLogReader(device)

    assert await collect(reader, BEGINNING_OF_LOG) == []
    assert len(device.forms) == 1


@pytest.mark.asyncio
async def test_visitor_can_stop_early() -> None:
    device = FakeSwipeDevice(total=45)
    reader = SwipeLogReader(device)
    seen: list[int] = []

    async def visit(record: SwipeRecord) -> bool | None:
        seen.append(record.id)
        return STOP if record.id == 43 else None

    await reader.list_swipes_since(BEGINNING_OF_LOG, visit)

    assert seen == [45, 44, 43]


@pytest.mark.asyncio
async def test_visitor_error_propagates() -> None:
    device = FakeSwipeDevice(total=45)
    reader = SwipeLogReader(device)

    async def visit(record: SwipeRecord) -> None:
        if record.id == 30:
            raise ValueError("storage rejected swipe")

    with pytest.raises(ValueError, match="storage rejected swipe"):
        await reader.list_swipes_since(BEGINNING_OF_LOG, visit)
    assert len(device.forms) == 1


@pytest.mark.asyncio
async def test_page_error_names_the_page() -> None:
    class BrokenDevice(FakeSwipeDevice):
        async def post_form(self, path: str, form: dict[str, str]) -> DeviceResponse:
            if self.forms:
                return DeviceResponse(status_code=200, body=b"<html>busy</html>")
            return await super().post_form(path, form)

    reader = SwipeLogReader(BrokenDevice(total=45))

    with pytest.raises(DeviceProtocolError, match="getting page 1"):
        await collect(reader, BEGINNING_OF_LOG)


@pytest.mark.asyncio
@pytest.mark.parametrize("reboot_id", [60, 50, 41])
async def test_reboot_row_inside_full_page_does_not_end_walk(reboot_id: int) -> None:
    device = FakeSwipeDevice(total=60, reboots=frozenset({reboot_id}))
    reader = SwipeLogReader(device)

    seen = await collect(reader, BEGINNING_OF_LOG)

    assert seen == [i for i in range(60, 0, -1) if i != reboot_id]
    assert [form["PC"] for form in device.forms] == ["19", "59", "39"]


@pytest.mark.asyncio
async def test_reboot_rows_do_not_walk_past_earliest_id() -> None:
    device = FakeSwipeDevice(total=60, reboots=frozenset(range(41, 61)))
    reader = SwipeLogReader(device)

    seen = await collect(reader, 45)

    assert seen == []
    assert len(device.forms) == 1
