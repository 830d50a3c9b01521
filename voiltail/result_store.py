"""Short-lived in-memory store for handing finished analyses to the client.

The streaming endpoint stores the analysis here and sends only its id; the
client then fetches the analysis with a separate request. Entries expire
after a TTL: reads check expiry themselves, and a background sweep purges
expired entries so memory stays bounded.
"""

import asyncio
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable

from .models import ConsensusAnalysis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredResult:
    """An analysis plus its expiry bookkeeping."""

    id: str
    result: ConsensusAnalysis
    timestamp: float  # epoch seconds when stored
    ttl: float  # seconds
    expires_at: float  # on the store's monotonic clock


class ResultStore:
    """Thread-safe TTL map of result id -> ConsensusAnalysis.

    Construct once at process start, call ``start()`` from a running event
    loop to begin sweeping, and ``shutdown()`` to stop.
    """

    def __init__(
        self,
        default_ttl_minutes: float = 30.0,
        sweep_interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl_minutes = default_ttl_minutes
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._entries: dict[str, StoredResult] = {}
        self._lock = threading.Lock()
        self._sweep_task: asyncio.Task | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @staticmethod
    def _generate_id() -> str:
        return f"result_{uuid.uuid4().hex}"

    def put(self, result: ConsensusAnalysis, ttl_minutes: float | None = None) -> str:
        """
        Store a result under a fresh id.

        Args:
            result: The analysis to hand off
            ttl_minutes: Lifetime in minutes (store default if None)

        Returns:
            The new result id
        """
        ttl = (self.default_ttl_minutes if ttl_minutes is None else ttl_minutes) * 60
        now = self._clock()

        with self._lock:
            result_id = self._generate_id()
            while result_id in self._entries:
                result_id = self._generate_id()
            self._entries[result_id] = StoredResult(
                id=result_id,
                result=result,
                timestamp=time.time(),
                ttl=ttl,
                expires_at=now + ttl,
            )

        logger.info("Stored result. ResultId: %s, TtlSeconds: %.1f", result_id, ttl)
        return result_id

    def get(self, result_id: str) -> ConsensusAnalysis | None:
        """
        Look up a result.

        Returns:
            The stored analysis, or None if the id is unknown or expired
        """
        with self._lock:
            stored = self._entries.get(result_id)
            if stored is None:
                logger.info("Result not found. ResultId: %s", result_id)
                return None

            if self._clock() > stored.expires_at:
                del self._entries[result_id]
                logger.info("Result expired. ResultId: %s", result_id)
                return None

        return stored.result

    def take(self, result_id: str) -> ConsensusAnalysis | None:
        """
        Remove and return a result, so that it can be read only once.

        Returns:
            The stored analysis, or None if the id is unknown, expired or
            already taken
        """
        with self._lock:
            stored = self._entries.pop(result_id, None)
            if stored is not None and self._clock() > stored.expires_at:
                logger.info("Result expired. ResultId: %s", result_id)
                return None

        if stored is None:
            logger.info("Result not found. ResultId: %s", result_id)
            return None
        logger.debug("Took result. ResultId: %s", result_id)
        return stored.result

    def delete(self, result_id: str) -> bool:
        """Remove a result. Returns True if it existed."""
        with self._lock:
            deleted = self._entries.pop(result_id, None) is not None
        if deleted:
            logger.debug("Deleted result. ResultId: %s", result_id)
        return deleted

    def sweep(self) -> int:
        """Purge every expired entry. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [rid for rid, stored in self._entries.items() if now > stored.expires_at]
            for rid in expired:
                del self._entries[rid]

        if expired:
            logger.info("Swept expired results. Count: %d", len(expired))
        return len(expired)

    def stats(self) -> dict[str, float]:
        """Entry count and the age in seconds of the oldest and newest entries."""
        now = time.time()
        with self._lock:
            timestamps = [stored.timestamp for stored in self._entries.values()]

        return {
            "count": len(timestamps),
            "oldest_age": now - min(timestamps) if timestamps else 0.0,
            "newest_age": now - max(timestamps) if timestamps else 0.0,
        }

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            self.sweep()

    def start(self) -> None:
        """Begin the periodic sweep. Must be called from a running event loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())
        logger.info(
            "Result store sweep started. IntervalSeconds: %.0f, DefaultTtlMinutes: %.1f",
            self.sweep_interval_seconds, self.default_ttl_minutes,
        )

    def shutdown(self) -> None:
        """Stop the sweep and drop all entries."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            self._sweep_task = None
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("Result store shut down. DroppedResults: %d", count)
