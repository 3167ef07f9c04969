"""Keyed work queue with per-key exponential backoff."""

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from typing import Deque, Dict, List, Optional, Set, Tuple

from .config import BACKOFF_BASE_SECONDS, BACKOFF_MAX_SECONDS

logger = logging.getLogger(__name__)


class RateLimitingQueue:
    """
    Work queue of reconciliation keys.

    A key is handed to at most one worker at a time. Adding a key that is
    already queued is a no-op; adding a key that is being processed queues it
    again once the worker calls done().
    """

    def __init__(
        self,
        base_delay: float = BACKOFF_BASE_SECONDS,
        max_delay: float = BACKOFF_MAX_SECONDS
    ):
        """
        Initialize the queue.

        Args:
            base_delay: Delay in seconds after the first failure of a key
            max_delay: Upper bound on the backoff delay
        """
        self.base_delay = base_delay
        self.max_delay = max_delay

        self._queue: Deque[str] = deque()
        self._dirty: Set[str] = set()
        self._processing: Set[str] = set()
        self._waiting: List[Tuple[float, int, str]] = []
        self._failures: Dict[str, int] = {}
        self._counter = itertools.count()
        self._shutting_down = False
        self._cond = threading.Condition()

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def add(self, key: str) -> None:
        """Queue a key for processing."""
        with self._cond:
            self._add_locked(key)

    def add_after(self, key: str, delay: float) -> None:
        """Queue a key once ``delay`` seconds have passed."""
        if delay <= 0:
            self.add(key)
            return

        with self._cond:
            if self._shutting_down:
                return
            heapq.heappush(self._waiting, (time.monotonic() + delay, next(self._counter), key))
            self._cond.notify()

    def add_rate_limited(self, key: str) -> float:
        """
        Requeue a failed key after its backoff delay.

        Returns:
            The delay in seconds that was applied
        """
        with self._cond:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1

        delay = min(self.base_delay * (2 ** failures), self.max_delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        """Reset the backoff of a key after it was processed successfully."""
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def get(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Take the next key, blocking until one is ready.

        Args:
            timeout: Maximum seconds to wait (None waits indefinitely)

        Returns:
            A key, or None if the queue was shut down or the timeout expired
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        with self._cond:
            while True:
                self._promote_waiting_locked()

                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key

                if self._shutting_down:
                    return None

                now = time.monotonic()
                wait = None
                if self._waiting:
                    wait = max(self._waiting[0][0] - now, 0)
                if deadline is not None:
                    remaining = deadline - now
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: str) -> None:
        """Mark a key as processed; requeue it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        """Stop handing out keys and wake all waiting workers."""
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()
        logger.debug("Work queue shut down")

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def _add_locked(self, key: str) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def _promote_waiting_locked(self) -> None:
        now = time.monotonic()
        while self._waiting and self._waiting[0][0] <= now:
            _, _, key = heapq.heappop(self._waiting)
            self._add_locked(key)
