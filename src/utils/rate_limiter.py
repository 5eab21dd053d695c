import asyncio


class RateLimiter:
    """Token bucket rate limiter for async HTTP clients.

    ``max_rps`` tokens refill per second up to ``burst``. A non-positive
    ``max_rps`` disables limiting.
    """

    def __init__(self, max_rps: float, *, burst: int = 1) -> None:
        self._rate = max_rps
        self._capacity = float(max(1, burst))
        self._tokens = self._capacity
        self._updated: float | None = None
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self._rate > 0

    async def acquire(self) -> None:
        if not self.enabled:
            return
        async with self._lock:
            loop = asyncio.get_running_loop()
            self._refill(loop.time())
            if self._tokens < 1:
                await asyncio.sleep((1 - self._tokens) / self._rate)
                self._refill(loop.time())
            self._tokens = max(0.0, self._tokens - 1)

    def _refill(self, now: float) -> None:
        if self._updated is not None:
            self._tokens = min(self._capacity, self._tokens + (now - self._updated) * self._rate)
        self._updated = now
