import asyncio
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)


class DepthCache:
    """Short-TTL result cache that keeps expired entries around for fallback.

    An entry is fresh for `ttl` seconds and can still be served as stale data
    until `stale_window` seconds old, after which it is dropped on access.
    """

    def __init__(
        self,
        ttl: float = 2.0,
        stale_window: float = 60.0,
        capacity: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = float(ttl)
        self.stale_window = max(float(stale_window), self.ttl)
        self.capacity = capacity
        self.clock = clock
        self._data: "OrderedDict[Hashable, Tuple[Any, float]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: Hashable) -> Optional[Tuple[Any, float]]:
        """Return (value, age_ms) or None."""
        item = self._data.get(key)
        if item is None:
            return None
        value, fetched_at = item
        age_ms = (self.clock() - fetched_at) * 1000
        if age_ms > self.stale_window * 1000:
            self._data.pop(key, None)
            return None
        return value, age_ms

    def put(self, key: Hashable, value: Any) -> None:
        self._data.pop(key, None)
        self._data[key] = (value, self.clock())
        while len(self._data) > self.capacity:
            evicted, _ = self._data.popitem(last=False)
            logger.debug("Evicted depth cache entry %s", evicted)

    def is_fresh(self, age_ms: float) -> bool:
        return age_ms <= self.ttl * 1000

    def is_usable_stale(self, age_ms: float) -> bool:
        return age_ms <= self.stale_window * 1000

    def clear(self) -> None:
        self._data.clear()


class RequestCoalescer:
    """Shares one in-flight computation between concurrent callers of a key."""

    def __init__(self) -> None:
        self._pending: Dict[Hashable, asyncio.Task] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._pending

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[Any]]) -> Any:
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._pending[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        else:
            logger.debug("Joining in-flight computation for %s", key)
        # One waiter timing out must not cancel the computation for the others.
        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Computation for %s failed: %r", key, task.exception())
