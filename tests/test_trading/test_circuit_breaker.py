"""Tests for ChannelCircuitBreaker."""

from __future__ import annotations

from unittest.mock import patch

from src.trading.circuit_breaker import ChannelCircuitBreaker
from src.trading.errors import ChannelUnavailable, ConfirmTimeout


class TestChannelCircuitBreaker:
    def test_trips_at_threshold(self):
        cb = ChannelCircuitBreaker(threshold=3, cooldown_sec=60)
        cb.record_failure(ChannelUnavailable("a"))
        cb.record_failure(ChannelUnavailable("b"))
        assert not cb.is_tripped
        cb.record_failure(ChannelUnavailable("c"))
        assert cb.is_tripped
        assert cb.total_failures == 3

    def test_success_resets_streak(self):
        cb = ChannelCircuitBreaker(threshold=2, cooldown_sec=60)
        cb.record_failure(ChannelUnavailable("a"))
        cb.record_success()
        cb.record_failure(ChannelUnavailable("b"))
        assert not cb.is_tripped
        assert cb.describe() == "closed, streak 1/2"

    def test_reset_on_reconnect(self):
        cb = ChannelCircuitBreaker(threshold=1, cooldown_sec=60)
        cb.record_failure(ChannelUnavailable("rpc down"))
        assert cb.is_tripped
        cb.reset()
        assert not cb.is_tripped
        assert cb.seconds_until_reset == 0.0
        assert cb.trip_cause is None

    def test_auto_reset_after_cooldown(self):
        cb = ChannelCircuitBreaker(threshold=1, cooldown_sec=60)
        with patch("src.trading.circuit_breaker.time.monotonic", return_value=1000.0):
            cb.record_failure(ChannelUnavailable("rpc down"))
        with patch("src.trading.circuit_breaker.time.monotonic", return_value=1030.0):
            assert cb.is_tripped
            assert cb.seconds_until_reset == 30.0
        with patch("src.trading.circuit_breaker.time.monotonic", return_value=1061.0):
            assert not cb.is_tripped


class TestTripCause:
    def test_last_failure_is_kept(self):
        cb = ChannelCircuitBreaker(threshold=2, cooldown_sec=60)
        cb.record_failure(ChannelUnavailable("relay 503"))
        assert cb.trip_cause is None
        cb.record_failure(ChannelUnavailable("getLatestBlockhash: ConnectError"))
        assert cb.trip_cause == "ChannelUnavailable: getLatestBlockhash: ConnectError"

    def test_banner_names_cause(self):
        cb = ChannelCircuitBreaker(threshold=1, cooldown_sec=120)
        with patch("src.trading.circuit_breaker.time.monotonic", return_value=500.0):
            cb.record_failure(ChannelUnavailable("rpc down"))
        with patch("src.trading.circuit_breaker.time.monotonic", return_value=520.0):
            banner = cb.describe()
        assert "ChannelUnavailable: rpc down" in banner
        assert "resumes in 100s" in banner

    def test_failures_counted_by_kind(self):
        cb = ChannelCircuitBreaker(threshold=5, cooldown_sec=60)
        cb.record_failure(ChannelUnavailable("a"))
        cb.record_failure(ChannelUnavailable("b"))
        cb.record_failure(ConfirmTimeout("c"))
        assert cb.failures_by_kind == {"ChannelUnavailable": 2, "ConfirmTimeout": 1}
