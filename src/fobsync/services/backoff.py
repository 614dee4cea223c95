"""Exponential backoff shared by the reconciliation and archiver loops."""

from __future__ import annotations

from dataclasses import dataclass

INITIAL_DELAY_SECONDS = 0.25
BACKOFF_FACTOR = 1.5
MAX_DELAY_SECONDS = 60.0 * 60.0


@dataclass
class ExponentialBackoff:
    """Delay that grows by ``factor`` per consecutive failure, up to ``maximum``.

    The first failure waits ``initial * factor`` seconds.
    """

    initial: float = INITIAL_DELAY_SECONDS
    factor: float = BACKOFF_FACTOR
    maximum: float = MAX_DELAY_SECONDS
    _last: float = 0.0

    @property
    def current(self) -> float:
        return self._last

    def next_delay(self) -> float:
        """Record a failure and return how long to wait before retrying."""
        if self._last == 0:
            self._last = self.initial
        self._last = min(self._last * self.factor, self.maximum)
        return self._last

    def reset(self) -> None:
        """Forget previous failures after a success."""
        self._last = 0.0
