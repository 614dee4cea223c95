"""Single-slot coalescing trigger."""

from __future__ import annotations

import asyncio


class CoalescingTrigger:
    """A "please resync" signal with at most one pending instance.

    Posting while a trigger is already pending is a no-op, never a blocking
    send, so callers such as webhook handlers return immediately.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[None] = asyncio.Queue(maxsize=1)

    @property
    def pending(self) -> bool:
        return self._queue.full()

    def post(self) -> bool:
        """Request a resync. Returns False when one was already pending."""
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            return False
        return True

    async def wait(self) -> None:
        """Wait for and consume the pending trigger."""
        await self._queue.get()

    def clear(self) -> None:
        """Drop the pending trigger, if any."""
        try:
            self._queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
