"""
Rate limiters: how long a key should wait before it is queued again.

The rate limiters are consulted only for the rate-limited additions
(i.e. retries after failures), never for the regular event-driven additions.
They are synchronous, lock-protected, and never sleep themselves:
they only calculate the delays; the queue does the actual delaying.
"""
import threading
import time
from typing import Dict, Hashable, Optional

from typing_extensions import Protocol

from konverge.structs import configuration


class RateLimiter(Protocol):

    def when(self, key: Hashable) -> float:
        """ Get the delay for the key, and count it as one more requeue. """

    def forget(self, key: Hashable) -> None:
        """ Stop tracking the key: its next delay starts from scratch. """

    def num_requeues(self, key: Hashable) -> int:
        """ How many times the key has been requeued since last forgotten. """


class ExponentialFailureRateLimiter:
    """
    A per-key exponential backoff: ``base * 2 ** failures``, up to the ceiling.

    The failures of one key do not affect the delays of other keys.
    """

    def __init__(self, base_delay: float, max_delay: float) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._failures: Dict[Hashable, int] = {}
        self.base_delay = base_delay
        self.max_delay = max_delay

    def when(self, key: Hashable) -> float:
        with self._lock:
            exponent = self._failures.get(key, 0)
            self._failures[key] = exponent + 1

        # Beware of overflows: the exponent grows unlimited for constantly failing keys.
        try:
            delay = self.base_delay * 2 ** exponent
        except OverflowError:
            return self.max_delay
        return min(delay, self.max_delay)

    def forget(self, key: Hashable) -> None:
        with self._lock:
            self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        with self._lock:
            return self._failures.get(key, 0)


class BucketRateLimiter:
    """
    An overall token bucket: ``qps`` tokens per second, up to ``burst`` at once.

    It is key-agnostic: it protects the store from the storms of retries
    of many different keys, each of which is still early in its own backoff.
    """

    def __init__(self, qps: float, burst: int) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._tokens = float(burst)
        self._last: Optional[float] = None
        self.qps = qps
        self.burst = burst

    def when(self, key: Hashable) -> float:
        with self._lock:
            now = time.monotonic()
            if self._last is not None:
                self._tokens = min(float(self.burst), self._tokens + (now - self._last) * self.qps)
            self._last = now

            # Reserve a token even if it is in the future: the next callers wait longer.
            self._tokens -= 1
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.qps if self.qps > 0 else 0.0

    def forget(self, key: Hashable) -> None:
        pass

    def num_requeues(self, key: Hashable) -> int:
        return 0


class MaxOfRateLimiter:
    """ The worst (longest) delay of all the limiters involved. """

    def __init__(self, *limiters: RateLimiter) -> None:
        super().__init__()
        self.limiters = limiters

    def when(self, key: Hashable) -> float:
        return max((limiter.when(key) for limiter in self.limiters), default=0.0)

    def forget(self, key: Hashable) -> None:
        for limiter in self.limiters:
            limiter.forget(key)

    def num_requeues(self, key: Hashable) -> int:
        return max((limiter.num_requeues(key) for limiter in self.limiters), default=0)


def default_rate_limiter(
        settings: Optional[configuration.ManagerSettings] = None,
) -> RateLimiter:
    settings = settings if settings is not None else configuration.ManagerSettings()
    return MaxOfRateLimiter(
        ExponentialFailureRateLimiter(
            base_delay=settings.queueing.base_delay,
            max_delay=settings.queueing.max_delay,
        ),
        BucketRateLimiter(
            qps=settings.queueing.bucket_qps,
            burst=settings.queueing.bucket_burst,
        ),
    )
