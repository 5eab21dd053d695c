"""Position state machine data.

A Position is owned by exactly one PositionLifecycle and only ever moves
forward through TRANSITIONS. BUYING and SELLING may loop on themselves
while the retry combinator resubmits.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum

from src.models.pool import PoolRecord
from src.trading.errors import InvalidTransition


class PositionState(StrEnum):
    NEW = "new"
    FILTERING = "filtering"
    BUYING = "buying"
    OPEN = "open"
    SELLING = "selling"
    CLOSED = "closed"
    ABORTED = "aborted"
    FAILED = "failed"


TERMINAL_STATES = frozenset({PositionState.CLOSED, PositionState.ABORTED, PositionState.FAILED})

TRANSITIONS: dict[PositionState, frozenset[PositionState]] = {
    PositionState.NEW: frozenset({PositionState.FILTERING}),
    PositionState.FILTERING: frozenset({PositionState.BUYING, PositionState.ABORTED}),
    PositionState.BUYING: frozenset(
        {PositionState.BUYING, PositionState.OPEN, PositionState.FAILED}
    ),
    PositionState.OPEN: frozenset({PositionState.SELLING}),
    PositionState.SELLING: frozenset(
        {PositionState.SELLING, PositionState.CLOSED, PositionState.FAILED}
    ),
    PositionState.CLOSED: frozenset(),
    PositionState.ABORTED: frozenset(),
    PositionState.FAILED: frozenset(),
}


@dataclass
class Position:
    pool: PoolRecord
    quote_amount: Decimal
    state: PositionState = PositionState.NEW
    entry_price: Decimal | None = None
    token_amount: int = 0
    opened_at: datetime | None = None
    closed_at: datetime | None = None
    buy_attempts: int = 0
    sell_attempts: int = 0
    buy_signature: str | None = None
    sell_signature: str | None = None
    exit_reason: str | None = None
    failure: str | None = None
    history: list[PositionState] = field(default_factory=list)

    @property
    def mint(self) -> str:
        return self.pool.base_mint

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, new_state: PositionState) -> None:
        """Move to ``new_state`` or raise InvalidTransition."""
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.mint[:12]}: {self.state} -> {new_state}")
        self.history.append(self.state)
        self.state = new_state
        if new_state in TERMINAL_STATES:
            self.closed_at = datetime.now(UTC)

    def __repr__(self) -> str:
        return f"Position(mint={self.mint[:12]}, state={self.state})"
