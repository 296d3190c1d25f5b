"""Time-windowed idempotency cache for message sends."""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class PendingRequestCache:
    """Remembers recently seen request ids so repeated submissions are rejected.

    Entries expire ``ttl`` seconds after they were recorded.  Expired entries
    are dropped lazily on lookup and by a background sweep that runs every
    ``sweep_interval`` seconds once :meth:`start` is awaited.
    """

    def __init__(
        self,
        ttl: float = 5.0,
        sweep_interval: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            ttl: Seconds a request id stays blocked.
            sweep_interval: Seconds between background sweeps.
            clock: Monotonic time source, replaceable in tests.
        """
        self.ttl = ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._seen: Dict[str, float] = {}
        self._sweep_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._seen)

    def _expired(self, seen_at: float, now: float) -> bool:
        return now - seen_at >= self.ttl

    def is_pending(self, key: str) -> bool:
        """True when *key* was recorded less than ``ttl`` seconds ago."""
        seen_at = self._seen.get(key)
        if seen_at is None:
            return False
        if self._expired(seen_at, self._clock()):
            del self._seen[key]
            return False
        return True

    def check_and_record(self, key: str) -> bool:
        """Record *key* unless it is still pending.

        Returns:
            True if the key was accepted, False if it is a duplicate.
        """
        if self.is_pending(key):
            return False
        self._seen[key] = self._clock()
        return True

    def sweep(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [key for key, seen_at in self._seen.items() if self._expired(seen_at, now)]
        for key in expired:
            del self._seen[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired request ids")
        return len(expired)

    def clear(self) -> None:
        self._seen.clear()

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()

    async def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self.running:
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.debug(f"Request cache sweep started (every {self.sweep_interval}s)")

    async def stop(self) -> None:
        """Cancel the periodic sweep."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
