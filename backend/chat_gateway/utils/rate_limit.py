from aiolimiter import AsyncLimiter
from cachetools import TTLCache


class RateLimiter:
    """Per-client leaky buckets, one store per app so limiters stay on its loop.

    An idle bucket drains fully within its 60s window, so entries unused for a
    window are dropped and recreated on demand.
    """

    def __init__(self, per_minute: int, maxsize: int = 10_000, ttl: float = 60):
        # max_rate tokens per 60s approximates a per-minute cap
        self.rate = max(1, per_minute)
        self._limiters: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)

    def __len__(self) -> int:
        return len(self._limiters)

    def get(self, key: str) -> AsyncLimiter:
        limiter = self._limiters.get(key)
        if limiter is None:
            limiter = AsyncLimiter(self.rate, time_period=60)
        # Re-inserting refreshes the entry's expiry
        self._limiters[key] = limiter
        return limiter
