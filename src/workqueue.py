"""
Work Queue - Deduplicating, rate-limited queue of reconcile keys.

Semantics follow the Kubernetes controller work queue:
- a key that is already waiting is not queued a second time;
- a key being processed is never handed to another worker; if it is added
  again meanwhile, it is queued once processing is done;
- failed keys are re-added after an exponential per-key backoff;
- keys can be scheduled for a later time (periodic resync).
"""

import asyncio
import logging
import random
from collections import deque
from typing import Deque, Dict, Generic, Hashable, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

KeyT = TypeVar("KeyT", bound=Hashable)


class ExponentialBackoff(Generic[KeyT]):
    """
    Per-key exponential backoff.

    The n-th consecutive failure of a key waits ``base_delay * 2**n`` seconds,
    capped at ``max_delay``, with ±``jitter_factor`` random jitter.
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 120.0,
        jitter_factor: float = 0.0,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter_factor = jitter_factor
        self._failures: Dict[KeyT, int] = {}

    def when(self, key: KeyT) -> float:
        """Return the delay for the next retry of a key and count the failure."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1

        # Cap the exponent so the float never overflows
        delay = min(self.base_delay * (2 ** min(failures, 62)), self.max_delay)
        if self.jitter_factor:
            delay *= 1 + (random.random() * 2 - 1) * self.jitter_factor
        return delay

    def forget(self, key: KeyT) -> None:
        """Reset the failure count of a key."""
        self._failures.pop(key, None)

    def num_requeues(self, key: KeyT) -> int:
        return self._failures.get(key, 0)


class WorkQueue(Generic[KeyT]):
    """Asyncio work queue with coalescing, delayed adds and backoff."""

    def __init__(self, rate_limiter: Optional[ExponentialBackoff] = None):
        self.rate_limiter: ExponentialBackoff = rate_limiter or ExponentialBackoff()
        self._queue: Deque[KeyT] = deque()
        self._dirty: Set[KeyT] = set()
        self._processing: Set[KeyT] = set()
        self._waiting: Dict[KeyT, asyncio.TimerHandle] = {}
        self._not_empty = asyncio.Event()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: KeyT) -> None:
        """Queue a key for processing unless it is already queued."""
        if self._shutting_down:
            return
        if key in self._dirty:
            return

        self._dirty.add(key)
        if key in self._processing:
            return

        self._queue.append(key)
        self._not_empty.set()

    def add_after(self, key: KeyT, delay: float) -> None:
        """
        Queue a key after a delay.

        If the key is already waiting, the earlier of the two deadlines wins.
        """
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + delay
        existing = self._waiting.get(key)
        if existing is not None:
            if existing.when() <= deadline:
                return
            existing.cancel()

        self._waiting[key] = loop.call_at(deadline, self._fire, key)

    def add_rate_limited(self, key: KeyT) -> float:
        """Queue a key after its backoff delay. Returns the delay used."""
        delay = self.rate_limiter.when(key)
        self.add_after(key, delay)
        return delay

    def forget(self, key: KeyT) -> None:
        """Stop tracking backoff for a key; call after a successful pass."""
        self.rate_limiter.forget(key)

    def num_requeues(self, key: KeyT) -> int:
        return self.rate_limiter.num_requeues(key)

    async def get(self) -> Optional[KeyT]:
        """
        Wait for the next key and mark it as processing.

        Returns:
            The key, or None once the queue has been shut down and drained
        """
        while not self._queue:
            if self._shutting_down:
                return None
            self._not_empty.clear()
            await self._not_empty.wait()

        key = self._queue.popleft()
        self._processing.add(key)
        self._dirty.discard(key)
        return key

    def done(self, key: KeyT) -> None:
        """Mark a key as processed, re-queueing it if it was added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty:
            self._queue.append(key)
            self._not_empty.set()

    def shutdown(self) -> None:
        """Stop accepting keys, cancel pending delayed adds and wake waiters."""
        self._shutting_down = True
        for handle in self._waiting.values():
            handle.cancel()
        self._waiting.clear()
        self._not_empty.set()

    def _fire(self, key: KeyT) -> None:
        self._waiting.pop(key, None)
        self.add(key)
