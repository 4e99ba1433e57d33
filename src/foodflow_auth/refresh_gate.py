"""Throttle for forced JWKS refetches.

A token carrying an unknown ``kid`` makes the key provider refetch the key
set. Without a limit, a stream of tokens with random key ids would turn into
a stream of requests against the identity provider. RefreshGate lets one
refetch through per interval and counts everything it turns away.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Final

import structlog

if TYPE_CHECKING:
    from .protocols import Clock

logger = structlog.get_logger(__name__)

MIN_REFRESH_INTERVAL: Final[float] = 10
ALERT_AFTER_DENIALS: Final[int] = 5


class RefreshGate:
    """Admit at most one refresh per ``min_interval`` seconds.

    Denials since the last admitted refresh are counted; a warning is logged
    when the count reaches ``alert_threshold``. Safe to share between
    request threads.
    """

    def __init__(
        self,
        min_interval: float = MIN_REFRESH_INTERVAL,
        alert_threshold: int = ALERT_AFTER_DENIALS,
        clock: Clock = time.monotonic,
    ) -> None:
        if min_interval <= 0:
            raise ValueError(f"min_interval must be positive, got {min_interval}")
        if alert_threshold < 1:
            raise ValueError(f"alert_threshold must be at least 1, got {alert_threshold}")

        self._interval = min_interval
        self._alert_at = alert_threshold
        self._clock = clock
        self._mutex = threading.Lock()
        self._last_admitted: float | None = None
        self._denied = 0

    @property
    def retry_attempts(self) -> int:
        """Refreshes denied since the last admitted one."""
        return self._denied

    def _cooling_down(self, now: float) -> bool:
        return self._last_admitted is not None and now - self._last_admitted < self._interval

    def allow(self) -> bool:
        """Return True and start a new interval, or False while one is running."""
        now = self._clock()

        with self._mutex:
            if not self._cooling_down(now):
                self._last_admitted = now
                self._denied = 0
                return True

            self._denied += 1
            if self._denied == self._alert_at:
                logger.warning(
                    "jwks_refresh_throttled",
                    denied_attempts=self._denied,
                    min_interval=self._interval,
                )
            return False
