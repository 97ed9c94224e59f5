"""
The de-duplicating, delaying, rate-limited queue of the keys to reconcile.

The events of the store come in storms: many events for the same object
in a short time, and many events for many objects at once. The reconcilers,
on the other hand, are level-driven: they do not care about individual events,
they only care that the object is reconciled at least once after the changes.
Hence, the queue keeps the *keys* of the objects, not the events, and every key
is queued at most once at any moment, no matter how many events arrived.

A key goes through these states::

    (absent) --add--> dirty+queued --get--> processing --done--> (absent)
                                               |
                                          add (again)
                                               v
                                   processing+dirty --done--> dirty+queued

I.e., a key re-added while it is being processed by a worker is not handed
to another worker (which would reconcile the same object concurrently).
Instead, it is marked as "dirty" and is queued once the worker is done with it.
All the additions during the processing collapse into one re-delivery.

All the bookkeeping is done under one lock, so the synchronous operations
are atomic relative to each other -- even if called from the threads
of the synchronous reconcilers. The waiting getters are woken up via
the event-loop of the queue, and never poll.
"""
import asyncio
import collections
import logging
import threading
from typing import Deque, Dict, Hashable, List, Optional, Set, Tuple

from konverge.reactor import throttling
from konverge.utilities import aiotasks

logger = logging.getLogger(__name__)


class _Delayed:
    """ A key waiting until its next-eligible time to be actually added. """
    __slots__ = ('ready_at', 'handle')

    def __init__(self, ready_at: float, handle: Optional[asyncio.TimerHandle] = None) -> None:
        self.ready_at = ready_at
        self.handle = handle


class WorkQueue:

    def __init__(
            self,
            *,
            name: Optional[str] = None,
            rate_limiter: Optional[throttling.RateLimiter] = None,
    ) -> None:
        super().__init__()
        self.name = name
        self.rate_limiter = rate_limiter if rate_limiter is not None else throttling.default_rate_limiter()
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Deque[Hashable] = collections.deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._delayed: Dict[Hashable, _Delayed] = {}
        self._waiters: List[aiotasks.Future] = []
        self._shutting_down = False

    def __repr__(self) -> str:
        name = f' {self.name!r}' if self.name else ''
        with self._lock:
            return (f'<{self.__class__.__name__}{name}: queued={len(self._queue)}'
                    f' processing={len(self._processing)} delayed={len(self._delayed)}>')

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    def is_processing(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._processing

    def is_delayed(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._delayed

    def shutting_down(self) -> bool:
        with self._lock:
            return self._shutting_down

    def add(self, key: Hashable) -> None:
        """
        Queue the key, unless it is already queued; postpone it if it is processed.
        """
        with self._lock:
            if self._shutting_down:
                return
            if key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            self._notify_all()

    async def get(self) -> Tuple[Optional[Hashable], bool]:
        """
        Get the next key to process, waiting until there is one.

        Returns a pair ``(key, shutdown)``. Once the queue is shut down and
        fully drained, returns ``(None, True)`` to all the current and future
        callers. The key must be released with :meth:`done` after processing.
        """
        loop = asyncio.get_running_loop()
        while True:
            with self._lock:
                self._loop = loop
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key, False
                if self._shutting_down:
                    return None, True
                waiter: aiotasks.Future = loop.create_future()
                self._waiters.append(waiter)
            try:
                await waiter
            finally:
                with self._lock:
                    if waiter in self._waiters:
                        self._waiters.remove(waiter)

    def done(self, key: Hashable) -> None:
        """
        Release the key after processing; re-queue it if it was re-added meanwhile.
        """
        with self._lock:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._notify_all()

    def add_after(self, key: Hashable, delay: float) -> None:
        """
        Queue the key after a delay; the earliest of the pending delays wins.
        """
        if delay <= 0:
            self.add(key)
            return

        with self._lock:
            if self._shutting_down:
                return
            loop = self._get_loop()
            ready_at = loop.time() + delay
            existing = self._delayed.get(key)
            if existing is not None and existing.ready_at <= ready_at:
                return
            if existing is not None and existing.handle is not None:
                existing.handle.cancel()
            delayed = self._delayed[key] = _Delayed(ready_at)

        # Timers can only be scheduled from the loop's thread.
        if _is_current_loop(loop):
            self._schedule(key, delayed)
        else:
            loop.call_soon_threadsafe(self._schedule, key, delayed)

    def add_rate_limited(self, key: Hashable) -> None:
        """
        Queue the key after the delay as decided by the rate-limiter for this key.
        """
        self.add_after(key, self.rate_limiter.when(key))

    def forget(self, key: Hashable) -> None:
        """
        Clear the key's retry history: its next rate-limited delay starts from the base.
        """
        self.rate_limiter.forget(key)

    def num_requeues(self, key: Hashable) -> int:
        return self.rate_limiter.num_requeues(key)

    def shutdown(self) -> None:
        """
        Stop accepting new keys; wake up all the waiting getters.

        The already queued keys are still handed out until the queue is drained.
        The delayed keys are dropped: they are not queued yet.
        """
        with self._lock:
            self._shutting_down = True
            for delayed in self._delayed.values():
                if delayed.handle is not None:
                    delayed.handle.cancel()
            self._delayed.clear()
            self._notify_all()
        logger.debug(f"Queue {self.name!r} is shut down.")

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            if self._loop is None:
                raise RuntimeError("The queue has no event-loop to delay the keys in.") from None
            return self._loop

    def _schedule(self, key: Hashable, delayed: _Delayed) -> None:
        with self._lock:
            if self._delayed.get(key) is not delayed:
                return  # superseded by an earlier delay, or cleared by the shutdown
            loop = asyncio.get_running_loop()
            delayed.handle = loop.call_at(delayed.ready_at, self._fire, key, delayed)

    def _fire(self, key: Hashable, delayed: _Delayed) -> None:
        with self._lock:
            if self._delayed.get(key) is not delayed:
                return
            del self._delayed[key]
        self.add(key)

    def _notify_all(self) -> None:
        # Must be called under the lock. The futures belong to the loop, not to this thread.
        waiters = list(self._waiters)
        self._waiters.clear()
        for waiter in waiters:
            waiter.get_loop().call_soon_threadsafe(_wake_up, waiter)


def _wake_up(waiter: aiotasks.Future) -> None:
    if not waiter.done():
        waiter.set_result(None)


def _is_current_loop(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False
