"""Reconciliation of device cards against Keycloak group membership.

This module provides the ReconciliationController class, which converges the
set of cards on the access control device toward the goal state defined by
the authorized Keycloak group. Each pass takes at most one corrective action
so every mutation against the slow device can be observed and retried on its
own; the controller keeps re-running passes until nothing changes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from fobsync.services.backoff import ExponentialBackoff
from fobsync.services.cards import Card
from fobsync.services.device import DeviceError
from fobsync.services.keycloak import AccessUser, IdentityProviderError, Webhook
from fobsync.services.trigger import CoalescingTrigger

# Configure logger for this module
logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 5.0
DEFAULT_RESYNC_INTERVAL_SECONDS = 60.0 * 60.0
WEBHOOK_EVENT_TYPES = ["admin.*"]

# Failures that end a pass and send the controller into backoff
SERVICE_ERRORS = (DeviceError, IdentityProviderError, OSError, TimeoutError)
# Malformed data from either side
DATA_ERRORS = (ValueError, TypeError, KeyError, AttributeError)
SYNC_ERRORS = SERVICE_ERRORS + DATA_ERRORS


class CardStore(Protocol):
    async def list_cards(self) -> list[Card]: ...

    async def add_card(self, number: int, name: str) -> None: ...

    async def remove_card(self, card_id: int) -> None: ...


class UserSource(Protocol):
    async def list_users(self) -> list[AccessUser]: ...

    async def list_webhooks(self) -> list[Webhook]: ...

    async def create_webhook(self, webhook: Webhook) -> None: ...


class ControllerState(Enum):
    """Where the reconciliation loop currently is."""

    IDLE = "idle"            # waiting for a trigger
    RUNNING = "running"      # a pass is in flight
    BACKOFF = "backoff"      # last pass failed, waiting to retry
    COOLDOWN = "cooldown"    # last pass changed nothing, brief pause
    STOPPED = "stopped"


@dataclass(frozen=True)
class RemoveCard:
    """Delete a stale or misattributed card."""

    card: Card


@dataclass(frozen=True)
class AddCard:
    """Authorize a goal user whose keyfob is missing from the device."""

    user: AccessUser


# The single corrective step chosen for a pass
Action = RemoveCard | AddCard


def card_name_for(uuid: str) -> str:
    """Return the card name stored for a user; the device rejects dashes in names."""
    return uuid.replace("-", "")


def is_managed_name(name: str) -> bool:
    """Names written by this service never contain spaces; human-entered names do."""
    return " " not in name


def plan_action(users: Iterable[AccessUser], cards: Sequence[Card]) -> Action | None:
    """Choose the next corrective action, or None when already converged.

    Removals of stale or misattributed cards take precedence over creations.
    Cards with human names and no matching goal user are left alone.
    """

    goal_users = list(users)
    users_by_fob = {user.keyfob_number: user for user in goal_users}

    for card in cards:
        user = users_by_fob.get(card.number)
        if user is None and not is_managed_name(card.name):
            continue
        if user is not None and card_name_for(user.uuid) == card.name:
            continue
        return RemoveCard(card)

    numbers_on_device = {card.number for card in cards}
    for user in goal_users:
        if user.keyfob_number in numbers_on_device:
            continue  # already exists
        return AddCard(user)

    return None


class ReconciliationController:
    """Drives passes from a coalesced trigger with cooldown and backoff.

    Webhook callbacks and a periodic timer only post to the trigger; the
    controller loop is the only place passes run. Shutdown is observed between
    passes and while sleeping; a pass in flight always completes.
    """

    def __init__(
        self,
        cards: CardStore,
        users: UserSource,
        *,
        webhook_url: str | None = None,
        resync_interval: float = DEFAULT_RESYNC_INTERVAL_SECONDS,
        cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        backoff: ExponentialBackoff | None = None,
    ) -> None:
        self.cards = cards
        self.users = users
        self.webhook_url = webhook_url
        self.resync_interval = resync_interval
        self.cooldown = cooldown
        self.backoff = backoff or ExponentialBackoff()
        self.state = ControllerState.IDLE
        self.trigger = CoalescingTrigger()
        self.trigger.post()  # sync when starting up

        self._stopping = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._timer_task: asyncio.Task[None] | None = None

    def request_sync(self) -> bool:
        """Ask for a pass. Returns False if one was already pending."""
        return self.trigger.post()

    async def sync_once(self) -> bool:
        """Run one pass and return True if the device was changed."""

        goal_users = await self.users.list_users()
        cards = await self.cards.list_cards()

        action = plan_action(goal_users, cards)
        if action is None:
            return False

        if isinstance(action, RemoveCard):
            await self.cards.remove_card(action.card.id)
            logger.info(
                "removed card %d (number %d) from the controller",
                action.card.id,
                action.card.number,
            )
            return True

        await self.cards.add_card(action.user.keyfob_number, card_name_for(action.user.uuid))
        logger.info(
            "associated card %d with user %s", action.user.keyfob_number, action.user.uuid
        )
        return True

    async def ensure_webhook(self) -> None:
        """Register the callback webhook with Keycloak unless it already exists."""

        if not self.webhook_url:
            logger.info("no callback URL configured; skipping webhook registration")
            return

        hooks = await self.users.list_webhooks()
        for hook in hooks:
            if hook.url == self.webhook_url:
                return  # already exists

        await self.users.create_webhook(
            Webhook(url=self.webhook_url, enabled=True, event_types=list(WEBHOOK_EVENT_TYPES))
        )
        logger.info("registered keycloak webhook %s", self.webhook_url)

    async def start(self) -> None:
        """Start the reconciliation loop and the periodic resync timer."""

        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self.run())
            self._timer_task = asyncio.create_task(self._periodic())

    async def stop(self) -> None:
        """Stop both loops, letting an in-flight pass finish."""

        self._stopping.set()
        for task in (self._timer_task, self._task):
            if task is not None:
                await task
        self._task = self._timer_task = None

    async def run(self) -> None:
        """Wait for triggers and converge until asked to stop."""

        try:
            while not self._stopping.is_set():
                self.state = ControllerState.IDLE
                if not await self._wait_for_trigger():
                    break
                if not await self._converge():
                    break
        finally:
            self.state = ControllerState.STOPPED

    async def _converge(self) -> bool:
        """Run passes until one reports no change. Returns False when stopping."""

        while True:
            self.state = ControllerState.RUNNING
            try:
                changed = await self.sync_once()
            except SERVICE_ERRORS as exc:
                delay = self.backoff.next_delay()
                logger.warning("sync error: %s (retrying in %.2fs)", exc, delay)
            except DATA_ERRORS as exc:
                delay = self.backoff.next_delay()
                logger.error(
                    "sync data error: %s (retrying in %.2fs)", exc, delay, exc_info=True
                )
            except Exception:
                delay = self.backoff.next_delay()
                logger.exception("unexpected sync failure (retrying in %.2fs)", delay)
            else:
                self.backoff.reset()
                if changed:
                    if self._stopping.is_set():
                        return False
                    continue

                self.state = ControllerState.COOLDOWN
                return not await self._sleep(self.cooldown)

            self.state = ControllerState.BACKOFF
            if await self._sleep(delay):
                return False

    async def _periodic(self) -> None:
        interval = max(0.1, float(self.resync_interval))
        while not await self._sleep(interval):
            if self.request_sync():
                logger.debug("periodic resync requested")

    async def _wait_for_trigger(self) -> bool:
        """Wait for a trigger. Returns False if stopped first."""

        trigger = asyncio.ensure_future(self.trigger.wait())
        stopping = asyncio.ensure_future(self._stopping.wait())
        done, pending = await asyncio.wait(
            {trigger, stopping}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        return trigger in done and not self._stopping.is_set()

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless stopped sooner. Returns True if stopping."""

        if seconds <= 0:
            return self._stopping.is_set()
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True
