"""Error taxonomy for the sniper core.

Retryable execution errors are absorbed by the retry combinator inside a
position lifecycle. Everything else terminates the position it belongs to
and never touches other positions.
"""

from __future__ import annotations


class SniperError(Exception):
    pass


class DecodeError(SniperError):
    """Malformed account data or RPC payload. Discarded, never retried."""


class InvalidTransition(SniperError):
    pass


class FilterRejected(SniperError):
    def __init__(self, predicate: str | None, message: str = "") -> None:
        self.predicate = predicate
        super().__init__(f"{predicate or 'filters'}: {message}" if message else str(predicate))


class FilterTimeout(FilterRejected):
    pass


class InstructionBuildError(SniperError):
    """Swap instructions could not be built. Fatal for the position."""


class ExecutionError(SniperError):
    retryable: bool = False


class SubmitError(ExecutionError):
    retryable = True


class TransactionRejected(SubmitError):
    """Transaction landed with an on-chain error (slippage, stale quote)."""


class ConfirmTimeout(ExecutionError):
    retryable = True


class ChannelUnavailable(ExecutionError):
    """RPC node or relay unreachable."""

    retryable = True


class InsufficientBalance(ExecutionError):
    retryable = False


class StaleBalance(ExecutionError):
    """Wallet read shows no tokens that a confirmed buy delivered (lagging node)."""

    retryable = True


class RetriesExhausted(SniperError):
    def __init__(self, label: str, attempts: int, last_error: Exception | None) -> None:
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{label} failed after {attempts} attempts: {last_error}")
