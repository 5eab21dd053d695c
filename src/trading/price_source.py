"""Where the price monitor gets its numbers from."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Protocol

from src.models.pool import PoolRecord
from src.rpc.client import SolanaRpcClient
from src.trading.errors import DecodeError


class PriceSource(Protocol):
    async def get_price(self, pool: PoolRecord) -> Decimal:
        """Quote-token price of one whole base token."""
        ...


class ReservePriceSource:
    """Spot price from the pool's vault reserves: quote reserve / base reserve."""

    def __init__(self, rpc: SolanaRpcClient) -> None:
        self._rpc = rpc

    async def get_price(self, pool: PoolRecord) -> Decimal:
        base, quote = await asyncio.gather(
            self._rpc.get_token_account_balance(pool.base_vault),
            self._rpc.get_token_account_balance(pool.quote_vault),
        )
        base_ui = Decimal(base.raw) / (Decimal(10) ** base.decimals)
        quote_ui = Decimal(quote.raw) / (Decimal(10) ** quote.decimals)
        if base_ui <= 0:
            raise DecodeError(f"pool {pool.pool_id[:12]}: empty base reserve")
        return quote_ui / base_ui
