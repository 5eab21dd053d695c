"""Tests for the token bucket rate limiter."""

from unittest.mock import AsyncMock, patch

from src.utils.rate_limiter import RateLimiter


@patch("src.utils.rate_limiter.asyncio.sleep", new_callable=AsyncMock)
class TestRateLimiter:
    async def test_first_request_is_free(self, mock_sleep):
        limiter = RateLimiter(2.0)
        await limiter.acquire()
        mock_sleep.assert_not_awaited()

    async def test_second_request_waits(self, mock_sleep):
        limiter = RateLimiter(2.0)
        await limiter.acquire()
        await limiter.acquire()
        mock_sleep.assert_awaited_once()
        assert 0 < mock_sleep.await_args.args[0] <= 0.5

    async def test_burst_allows_back_to_back(self, mock_sleep):
        limiter = RateLimiter(1.0, burst=3)
        for _ in range(3):
            await limiter.acquire()
        mock_sleep.assert_not_awaited()

    async def test_disabled(self, mock_sleep):
        limiter = RateLimiter(0)
        assert not limiter.enabled
        for _ in range(5):
            await limiter.acquire()
        mock_sleep.assert_not_awaited()
