"""
Rate-limited fetch gate.

One gate per quota-limited upstream, shared by every caller of that upstream so
separate services cannot jointly exceed the quota.

  Polygon free tier: 5 requests / minute  -> 12 s between requests
  SEC EDGAR fair access: <= 10 requests / s -> 1 s between requests (conservative)

acquire() serialises callers behind an asyncio.Lock (first come, first served)
and returns once min_interval_s has elapsed since the previous acquire returned.
No circuit breaking: a slow upstream only delays the callers queued behind it.
"""

import asyncio
import logging
import time

logger = logging.getLogger(__name__)


class FetchGate:
    def __init__(self, min_interval_s: float, name: str = "upstream"):
        self.min_interval_s = max(0.0, float(min_interval_s))
        self.name = name
        self._last_request_at: float | None = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            if self._last_request_at is not None:
                lag = time.monotonic() - self._last_request_at
                if lag < self.min_interval_s:
                    wait_s = self.min_interval_s - lag
                    logger.debug("[Gate][%s] waiting %.2fs", self.name, wait_s)
                    await asyncio.sleep(wait_s)
            self._last_request_at = time.monotonic()
