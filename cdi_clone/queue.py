"""Work queue delivering reconciliation keys to worker threads."""

import logging
from collections import deque
from threading import Condition, Lock, Timer
from typing import Optional

logger = logging.getLogger(__name__)


class ExponentialBackoff:
    """
    Per-key exponential retry delay.

    The delay doubles on every failure of the same key until it reaches
    ``max_delay``. ``forget`` resets the key after a successful pass.
    """

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: dict[str, int] = {}
        self._lock = Lock()

    def when(self, key: str) -> float:
        """Register a failure and return the delay before the next attempt."""
        with self._lock:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        # Avoid float overflow for keys that fail for a very long time
        if failures > 64:
            return self.max_delay
        return min(self.base_delay * (2**failures), self.max_delay)

    def num_requeues(self, key: str) -> int:
        with self._lock:
            return self._failures.get(key, 0)

    def forget(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)


class WorkQueue:
    """
    Deduplicating, single-flight work queue.

    - A key added several times before a worker picks it up is delivered once.
    - A key is never handed to two workers at the same time. If it is added
      while being processed, it is delivered again after ``done`` is called.
    - ``add_rate_limited`` re-adds a failed key after a per-key backoff delay.
    """

    def __init__(self, name: str = "clone", backoff: Optional[ExponentialBackoff] = None):
        """
        Initialize work queue.

        Args:
            name: Queue name used in log messages
            backoff: Retry delay policy for failed keys
        """
        self.name = name
        self.backoff = backoff or ExponentialBackoff()
        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._timers: set[Timer] = set()
        self._shutting_down = False
        self._cond = Condition()

    def add(self, key: str) -> None:
        """Queue a key for processing."""
        with self._cond:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            self._cond.notify()

    def add_after(self, key: str, delay: float) -> None:
        """Queue a key once ``delay`` seconds have passed."""
        if delay <= 0:
            self.add(key)
            return

        with self._cond:
            if self._shutting_down:
                return
            timer = Timer(delay, lambda: self._fire(key, timer))
            timer.daemon = True
            self._timers.add(timer)
        timer.start()

    def _fire(self, key: str, timer: Timer) -> None:
        with self._cond:
            self._timers.discard(timer)
        self.add(key)

    def add_rate_limited(self, key: str) -> None:
        """Re-queue a failed key after its backoff delay."""
        delay = self.backoff.when(key)
        logger.debug(f"[{self.name}] requeueing {key!r} in {delay:.3f}s")
        self.add_after(key, delay)

    def forget(self, key: str) -> None:
        """Reset the backoff of a key after it was processed successfully."""
        self.backoff.forget(key)

    def num_requeues(self, key: str) -> int:
        return self.backoff.num_requeues(key)

    def get(self, timeout: Optional[float] = None) -> tuple[Optional[str], bool]:
        """
        Block until a key is available.

        Args:
            timeout: Maximum seconds to wait (None waits forever)

        Returns:
            Tuple of (key, shutdown). ``key`` is None when shutting down or
            when the timeout expired. Keys still queued at shutdown are
            never handed out.
        """
        with self._cond:
            if not self._queue and not self._shutting_down:
                self._cond.wait_for(
                    lambda: bool(self._queue) or self._shutting_down, timeout=timeout
                )
            if self._shutting_down:
                return None, True
            if not self._queue:
                return None, False

            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key, False

    def done(self, key: str) -> None:
        """Mark a key as processed, re-delivering it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shut_down(self) -> None:
        """Stop handing out keys and wake up all waiting workers."""
        with self._cond:
            self._shutting_down = True
            timers = list(self._timers)
            self._timers.clear()
            self._cond.notify_all()
        for timer in timers:
            timer.cancel()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)
