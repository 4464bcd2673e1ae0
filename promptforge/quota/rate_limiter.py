"""Fixed-window request limiter keyed by user and IP.

Buckets live in memory only and are reset lazily the next time a key is
touched after its window ends. Updates are serialized with a lock so
concurrent sessions never lose an increment.
"""

import threading
import time
from collections.abc import Callable, Iterable

from ..errors import RateLimited
from ..logging_config import get_logger
from ..models.quota import RateBucket

logger = get_logger(__name__)


class RateLimiter:
    """Per-key fixed-window counter with separate user and IP ceilings."""

    def __init__(
        self,
        user_limit: int = 30,
        ip_limit: int = 60,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.user_limit = user_limit
        self.ip_limit = ip_limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._buckets: dict[str, RateBucket] = {}
        self._lock = threading.Lock()

    def _limit_for(self, key: str) -> int:
        return self.ip_limit if key.startswith("ip:") else self.user_limit

    def check_rate(self, keys: Iterable[str], scope: str) -> None:
        """Count one request against every key for ``scope``.

        Keys look like ``user:<id>`` or ``ip:<addr>``; the scope is appended
        so each operation has its own window.

        Raises:
            RateLimited: when any key goes over its ceiling in this window.
        """
        now = self._clock()
        with self._lock:
            for key in keys:
                if not key:
                    continue
                bucket_key = f"{key}:{scope}"
                bucket = self._buckets.get(bucket_key)
                if bucket is None or now > bucket.reset_at:
                    bucket = RateBucket(key=bucket_key, count=0, reset_at=now + self.window_seconds)
                    self._buckets[bucket_key] = bucket
                bucket.count += 1
                if bucket.count > self._limit_for(key):
                    logger.warning("Rate limit hit for %s (count=%d)", bucket_key, bucket.count)
                    raise RateLimited(scope)

    def bucket(self, key: str, scope: str) -> RateBucket | None:
        with self._lock:
            return self._buckets.get(f"{key}:{scope}")

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()
