"""Take-profit / stop-loss watch over an open position."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from enum import StrEnum

from loguru import logger

from src.models.position import Position
from src.trading.errors import SniperError
from src.trading.price_source import PriceSource


class ExitDecision(StrEnum):
    HOLD = "hold"
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    TIMEOUT = "timeout"


def decide_exit(
    entry: Decimal,
    current: Decimal,
    *,
    take_profit: Decimal,
    stop_loss: Decimal,
) -> ExitDecision:
    """Compare a price to the entry. Thresholds are percentages; take-profit wins ties."""
    take_profit_price = entry * (1 + take_profit / 100)
    stop_loss_price = entry * (1 - stop_loss / 100)
    if current >= take_profit_price:
        return ExitDecision.TAKE_PROFIT
    if current <= stop_loss_price:
        return ExitDecision.STOP_LOSS
    return ExitDecision.HOLD


class PriceMonitor:
    def __init__(
        self,
        price_source: PriceSource,
        *,
        check_interval: float,
        check_duration: float,
        take_profit: float,
        stop_loss: float,
    ) -> None:
        self._source = price_source
        self._interval = check_interval
        self._max_ticks = int(check_duration / check_interval) if check_interval > 0 else 0
        self._take_profit = Decimal(str(take_profit))
        self._stop_loss = Decimal(str(stop_loss))

    @property
    def enabled(self) -> bool:
        """False when price checking is switched off (zero interval or duration)."""
        return self._max_ticks > 0

    async def poll(self, position: Position) -> ExitDecision:
        if position.entry_price is None or position.entry_price <= 0:
            return ExitDecision.HOLD
        try:
            current = await self._source.get_price(position.pool)
        except SniperError as e:
            logger.debug(f"[MONITOR] {position.mint[:12]} price unavailable: {e}")
            return ExitDecision.HOLD

        decision = decide_exit(
            position.entry_price,
            current,
            take_profit=self._take_profit,
            stop_loss=self._stop_loss,
        )
        change = (current / position.entry_price - 1) * 100
        logger.debug(
            f"[MONITOR] {position.mint[:12]} price {current:.10f} ({change:+.1f}%) → {decision}"
        )
        return decision

    async def watch(self, position: Position) -> ExitDecision:
        """Poll until a non-HOLD decision or the check duration runs out."""
        for tick in range(1, self._max_ticks + 1):
            decision = await self.poll(position)
            if decision is not ExitDecision.HOLD:
                logger.info(f"[MONITOR] {position.mint[:12]} {decision} on tick {tick}")
                return decision
            if tick < self._max_ticks:
                await asyncio.sleep(self._interval)
        logger.info(f"[MONITOR] {position.mint[:12]} no exit signal, timeout")
        return ExitDecision.TIMEOUT
