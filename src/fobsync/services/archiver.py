"""Background archiving of device swipes into the database.

This module provides the SwipeArchiver class that periodically scrapes the
device swipe log and appends new entries to the ``swipes`` table. The highest
stored id is the cursor. Each scrape commits once, at the end, so a scrape
interrupted half-way leaves the cursor where it was and is simply repeated.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fobsync.models import Swipe
from fobsync.services.backoff import ExponentialBackoff
from fobsync.services.device import DeviceError
from fobsync.services.keycloak import AccessUser, IdentityProviderError
from fobsync.services.reconcile import DATA_ERRORS, UserSource, card_name_for
from fobsync.services.swipes import BEGINNING_OF_LOG, SwipeLogReader, SwipeRecord

# Configure logger for this module
logger = logging.getLogger(__name__)

DEFAULT_SCRAPE_INTERVAL_SECONDS = 2 * 60 * 60

SCRAPE_ERRORS = (
    DeviceError,
    IdentityProviderError,
    SQLAlchemyError,
    OSError,
    TimeoutError,
)


def insert_swipe(db: Session, swipe: SwipeRecord, name: str) -> None:
    """Insert a swipe, doing nothing if its id is already stored."""

    values = {
        "id": swipe.id,
        "card_id": swipe.card_id,
        "door_id": swipe.door_id,
        "time": swipe.time,
        "name": name,
    }
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(Swipe).values(**values).on_conflict_do_nothing()
    elif dialect == "sqlite":
        stmt = sqlite.insert(Swipe).values(**values).on_conflict_do_nothing()
    else:
        if db.get(Swipe, swipe.id) is not None:
            return
        db.add(Swipe(**values))
        db.flush()
        return
    db.execute(stmt)


def last_swipe_id(db: Session) -> int:
    """Return the cursor: the highest archived swipe id, or BEGINNING_OF_LOG."""
    latest = db.scalar(select(func.max(Swipe.id)))
    return BEGINNING_OF_LOG if latest is None else int(latest)


class SwipeArchiver:
    """Incrementally copies new swipes from the device into storage."""

    def __init__(
        self,
        reader: SwipeLogReader,
        session_factory: Callable[[], Session],
        users: UserSource | None = None,
        *,
        interval: float = DEFAULT_SCRAPE_INTERVAL_SECONDS,
        backoff: ExponentialBackoff | None = None,
    ) -> None:
        self.reader = reader
        self.session_factory = session_factory
        self.users = users
        self.interval = interval
        self.backoff = backoff or ExponentialBackoff()
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        """Start the background archiving loop."""

        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background archiving loop."""

        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.scrape()
            except SCRAPE_ERRORS as exc:
                delay = self.backoff.next_delay()
                logger.warning("error scraping swipe events: %s (retrying in %.2fs)", exc, delay)
            except DATA_ERRORS as exc:
                delay = self.backoff.next_delay()
                logger.error(
                    "bad data while scraping swipe events: %s (retrying in %.2fs)",
                    exc,
                    delay,
                    exc_info=True,
                )
            except Exception:
                delay = self.backoff.next_delay()
                logger.exception("unexpected error scraping swipe events (retrying in %.2fs)", delay)
            else:
                self.backoff.reset()
                await self._sleep(self.interval)
                continue

            await self._sleep(delay)

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=max(0.0, seconds))
        except TimeoutError:
            pass

    async def _users_by_card_name(self) -> dict[str, AccessUser]:
        if self.users is None:
            return {}
        return {card_name_for(user.uuid): user for user in await self.users.list_users()}

    async def scrape(self) -> int:
        """Archive every swipe newer than the stored cursor. Returns the number visited."""

        start = time.monotonic()
        logger.info("starting to scrape swipe events")

        cursor = await asyncio.to_thread(self._read_cursor)
        logger.info("last known swipe event ID: %d", cursor)

        users_by_name = await self._users_by_card_name()
        pending: list[tuple[SwipeRecord, str]] = []

        async def visit(swipe: SwipeRecord) -> None:
            user = users_by_name.get(swipe.name)
            # fall back to the raw card name (usually the dashless uuid)
            pending.append((swipe, user.name if user is not None else swipe.name))

        await self.reader.list_swipes_since(cursor, visit)
        if pending:
            await asyncio.to_thread(self._store, pending)

        logger.info(
            "finished scraping swipe events in %.2fs (%d new)", time.monotonic() - start, len(pending)
        )
        return len(pending)

    def _read_cursor(self) -> int:
        with self.session_factory() as db:
            return last_swipe_id(db)

    def _store(self, swipes: list[tuple[SwipeRecord, str]]) -> None:
        # Newest rows arrive first, so only a completed walk may move the
        # cursor; a partial commit would skip rows that were never read.
        with self.session_factory() as db, db.begin():
            for swipe, name in swipes:
                insert_swipe(db, swipe, name)
                logger.info(
                    "inserted swipe event %d into database - card=%d door=%s time=%s",
                    swipe.id,
                    swipe.card_id,
                    swipe.door_id,
                    swipe.time.isoformat(),
                )
