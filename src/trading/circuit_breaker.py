"""Channel circuit breaker.

Counts positions that died because the RPC or relay was unreachable. Once
tripped the sniper keeps logging discoveries but stops dispatching them,
until the event source reconnects or the cooldown elapses.
"""

import time
from collections import Counter

from loguru import logger


def _describe(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


class ChannelCircuitBreaker:
    """Trips after ``threshold`` positions in a row fail on the channel.

    A confirmed transaction clears the streak. The error that tripped the
    breaker is kept for the log-only banner until it resets.
    """

    def __init__(self, *, threshold: int = 3, cooldown_sec: float = 300) -> None:
        self._threshold = max(1, threshold)
        self._cooldown_sec = cooldown_sec
        self._streak: list[str] = []
        self._opened_at: float | None = None
        self._trip_cause: str | None = None
        self._by_kind: Counter[str] = Counter()

    @property
    def is_tripped(self) -> bool:
        if self._opened_at is None:
            return False
        if self.seconds_until_reset <= 0:
            self._close("cooldown elapsed")
            return False
        return True

    @property
    def seconds_until_reset(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(self._cooldown_sec - (time.monotonic() - self._opened_at), 0.0)

    @property
    def trip_cause(self) -> str | None:
        return self._trip_cause

    @property
    def total_failures(self) -> int:
        return sum(self._by_kind.values())

    @property
    def failures_by_kind(self) -> dict[str, int]:
        return dict(self._by_kind)

    def describe(self) -> str:
        """One-line state for the log-only banner."""
        if not self.is_tripped:
            return f"closed, streak {len(self._streak)}/{self._threshold}"
        return (
            f"open after {self._threshold} channel failures (last {self._trip_cause}), "
            f"resumes in {self.seconds_until_reset:.0f}s or on reconnect"
        )

    def record_success(self) -> None:
        self._streak.clear()

    def record_failure(self, error: BaseException) -> None:
        cause = _describe(error)
        self._by_kind[type(error).__name__] += 1
        self._streak.append(cause)
        logger.warning(f"[CIRCUIT] Channel failure {len(self._streak)}/{self._threshold}: {cause}")
        if self._opened_at is None and len(self._streak) >= self._threshold:
            self._opened_at = time.monotonic()
            self._trip_cause = cause
            logger.warning(
                f"[CIRCUIT] Open: dispatch paused for up to {self._cooldown_sec:.0f}s "
                f"or until the event source reconnects ({cause})"
            )

    def reset(self) -> None:
        """Event source reconnected: resume dispatching."""
        self._close("reconnect")

    def _close(self, why: str) -> None:
        if self._opened_at is not None:
            logger.info(f"[CIRCUIT] Closed on {why}, last cause was {self._trip_cause}")
        self._opened_at = None
        self._trip_cause = None
        self._streak.clear()
