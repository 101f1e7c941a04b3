"""Per-client throttling for the lead submission endpoints."""

import math
import time
from dataclasses import dataclass
from typing import Optional

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter

UNKNOWN_CLIENT = "unknown"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: Optional[int] = None


def seconds_until(reset_time: float) -> int:
    """Whole seconds left before a window resets, never less than one."""

    return max(1, math.ceil(reset_time - time.time()))


class RateLimiter:
    """Fixed window limiter: at most ``limit`` hits per ``window_seconds`` per key.

    The increment-and-compare happens inside the storage, which holds a lock
    per operation, so concurrent requests for one key never lose an update.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        *,
        namespace: str = "submissions",
        storage: Optional[Storage] = None,
    ) -> None:
        self._item = RateLimitItemPerSecond(limit, window_seconds, namespace=namespace)
        self._storage = storage or MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)

    @property
    def limit(self) -> int:
        return self._item.amount

    @property
    def window_seconds(self) -> int:
        return self._item.get_expiry()

    def check(self, client_key: Optional[str]) -> RateLimitDecision:
        key = client_key or UNKNOWN_CLIENT
        if self._strategy.hit(self._item, key):
            return RateLimitDecision(allowed=True)
        reset_time, _remaining = self._strategy.get_window_stats(self._item, key)
        return RateLimitDecision(allowed=False, retry_after=seconds_until(reset_time))

    def reset(self) -> None:
        self._storage.reset()
