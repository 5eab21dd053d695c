"""Decoded on-chain records consumed by the trading core."""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal


@dataclass(frozen=True)
class PoolRecord:
    """Raydium AMM v4 pool state, reduced to what the sniper needs."""

    pool_id: str
    base_mint: str
    quote_mint: str
    base_vault: str
    quote_vault: str
    lp_mint: str
    market_id: str
    base_decimals: int
    quote_decimals: int
    pool_open_time: int  # unix seconds
    base_liquidity: Decimal | None = None
    quote_liquidity: Decimal | None = None
    mint_renounced: bool | None = None
    freezable: bool | None = None

    def oriented(self, quote_mint: str) -> PoolRecord:
        """Return the pool with ``quote_mint`` on the quote side.

        Some pools list SOL/USDC as the base token. Swapping sides keeps
        ``base_mint`` pointing at the token we actually want to trade.
        """
        if self.quote_mint == quote_mint or self.base_mint != quote_mint:
            return self
        return replace(
            self,
            base_mint=self.quote_mint,
            quote_mint=self.base_mint,
            base_vault=self.quote_vault,
            quote_vault=self.base_vault,
            base_decimals=self.quote_decimals,
            quote_decimals=self.base_decimals,
            base_liquidity=self.quote_liquidity,
            quote_liquidity=self.base_liquidity,
        )


@dataclass(frozen=True)
class MintInfo:
    """SPL mint account."""

    supply: int
    decimals: int
    mint_authority: str | None  # None = renounced
    freeze_authority: str | None  # None = not freezable
    is_initialized: bool = True

    @property
    def mint_renounced(self) -> bool:
        return self.mint_authority is None

    @property
    def freezable(self) -> bool:
        return self.freeze_authority is not None


@dataclass(frozen=True)
class TokenAccount:
    """SPL token account (165-byte layout)."""

    address: str
    mint: str
    owner: str
    amount: int


@dataclass(frozen=True)
class MetadataInfo:
    """Metaplex token metadata."""

    update_authority: str
    mint: str
    name: str
    symbol: str
    uri: str
    is_mutable: bool
