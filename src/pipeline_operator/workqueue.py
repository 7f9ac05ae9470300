"""Deduplicating, rate limited work queue.

A key handed out by :meth:`RateLimitingQueue.get` stays checked out until
:meth:`RateLimitingQueue.done` is called for it. Adding the key again in the
meantime only marks it dirty, so it is queued once more after ``done`` and no
two workers ever hold the same key.
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from collections import deque
from collections.abc import Callable, Hashable
from typing import Protocol

from . import metrics


class RateLimiter(Protocol):
    def when(self, item: Hashable) -> float: ...

    def forget(self, item: Hashable) -> None: ...

    def num_requeues(self, item: Hashable) -> int: ...


class ItemExponentialFailureRateLimiter:
    """Per-item exponential backoff: ``base_delay * 2**failures`` capped at ``max_delay``."""

    def __init__(self, base_delay: float, max_delay: float) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            exp = self._failures.get(item, 0)
            self._failures[item] = exp + 1

        # Past 2**64 the cap has long been reached
        if exp > 64:
            return self.max_delay
        return min(self.base_delay * (2**exp), self.max_delay)

    def forget(self, item: Hashable) -> None:
        with self._lock:
            self._failures.pop(item, None)

    def num_requeues(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)


class BucketRateLimiter:
    """Token bucket shared by all items, limiting the overall retry rate."""

    def __init__(self, qps: float, burst: int, clock: Callable[[], float] = time.monotonic) -> None:
        self.qps = qps
        self.burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        if self.qps <= 0:
            return 0.0
        with self._lock:
            now = self._clock()
            self._tokens = min(float(self.burst), self._tokens + (now - self._last) * self.qps)
            self._last = now
            # Reserve a token; a negative balance is the wait until it is repaid
            self._tokens -= 1
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.qps

    def forget(self, item: Hashable) -> None:
        pass

    def num_requeues(self, item: Hashable) -> int:
        return 0


class MaxOfRateLimiter:
    """Combines limiters, returning the worst-case delay of its children."""

    def __init__(self, *limiters: RateLimiter) -> None:
        self.limiters = limiters

    def when(self, item: Hashable) -> float:
        return max(limiter.when(item) for limiter in self.limiters)

    def forget(self, item: Hashable) -> None:
        for limiter in self.limiters:
            limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return max(limiter.num_requeues(item) for limiter in self.limiters)


def default_controller_rate_limiter(
    base_delay: float = 0.005,
    max_delay: float = 1000.0,
    qps: float = 10.0,
    burst: int = 100,
) -> MaxOfRateLimiter:
    """Per-item exponential backoff combined with an overall token bucket."""
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(base_delay, max_delay),
        BucketRateLimiter(qps, burst),
    )


class RateLimitingQueue:
    """Work queue with per-key deduplication, delayed adds and rate limited retries."""

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        name: str = "pipeline",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self._rate_limiter = rate_limiter or default_controller_rate_limiter()
        self._clock = clock

        self._queue: deque[Hashable] = deque()
        # Keys that need processing: queued, or re-added while checked out
        self._dirty: set[Hashable] = set()
        # Keys currently checked out by a worker
        self._processing: set[Hashable] = set()
        self._shutting_down = False

        # Delayed adds: heap of (ready_at, seq, item); _ready_at holds the live entry per item
        self._waiting: list[tuple[float, int, Hashable]] = []
        self._ready_at: dict[Hashable, float] = {}
        self._seq = itertools.count()

        self._lock = threading.Lock()
        self._cond = threading.Condition(self._lock)
        self._delay_cond = threading.Condition(self._lock)

        self._waiting_thread = threading.Thread(
            target=self._waiting_loop, name=f"{name}-workqueue-delay", daemon=True
        )
        self._waiting_thread.start()

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    def _update_depth(self) -> None:
        metrics.WORKQUEUE_DEPTH.labels(name=self.name).set(len(self._queue))

    def _add_locked(self, item: Hashable) -> None:
        if self._shutting_down or item in self._dirty:
            return
        metrics.WORKQUEUE_ADDS.labels(name=self.name).inc()
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._update_depth()
        self._cond.notify()

    def add(self, item: Hashable) -> None:
        """Queue ``item`` unless it is already pending."""
        with self._lock:
            self._add_locked(item)

    def get(self) -> tuple[Hashable | None, bool]:
        """Block until an item is available; return ``(item, shutdown)``.

        After :meth:`shut_down` the remaining items are still handed out and
        ``(None, True)`` is returned once the queue is drained.
        """
        with self._lock:
            while not self._queue and not self._shutting_down:
                self._cond.wait()
            if not self._queue:
                return None, True

            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            self._update_depth()
            return item, False

    def done(self, item: Hashable) -> None:
        """Release ``item``; requeue it if it was added while being processed."""
        with self._lock:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._update_depth()
                self._cond.notify()

    def shut_down(self) -> None:
        with self._lock:
            self._shutting_down = True
            self._cond.notify_all()
            self._delay_cond.notify_all()

    def shutting_down(self) -> bool:
        with self._lock:
            return self._shutting_down

    def add_after(self, item: Hashable, delay: float) -> None:
        """Add ``item`` once ``delay`` seconds have passed."""
        if delay <= 0:
            self.add(item)
            return

        with self._lock:
            if self._shutting_down:
                return
            ready_at = self._clock() + delay
            current = self._ready_at.get(item)
            if current is not None and current <= ready_at:
                return
            self._ready_at[item] = ready_at
            heapq.heappush(self._waiting, (ready_at, next(self._seq), item))
            self._delay_cond.notify()

    def add_rate_limited(self, item: Hashable) -> None:
        """Add ``item`` after the delay the rate limiter assigns to it."""
        metrics.WORKQUEUE_RETRIES.labels(name=self.name).inc()
        self.add_after(item, self._rate_limiter.when(item))

    def forget(self, item: Hashable) -> None:
        """Clear the retry history of ``item``."""
        self._rate_limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return self._rate_limiter.num_requeues(item)

    def _waiting_loop(self) -> None:
        with self._lock:
            while not self._shutting_down:
                if not self._waiting:
                    self._delay_cond.wait()
                    continue

                ready_at, _, item = self._waiting[0]
                now = self._clock()
                if ready_at > now:
                    self._delay_cond.wait(timeout=ready_at - now)
                    continue

                heapq.heappop(self._waiting)
                # Superseded by an earlier add_after for the same item
                if self._ready_at.get(item) != ready_at:
                    continue
                del self._ready_at[item]
                self._add_locked(item)
