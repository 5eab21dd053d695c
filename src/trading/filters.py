"""Pool safety filters and the polling pipeline that runs them.

Each filter answers one yes/no question about a pool using live chain data.
The pipeline re-asks all enabled filters every ``check_interval`` seconds and
only passes a pool after ``consecutive_matches`` ticks in a row where every
filter said yes. One bad tick resets the streak.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum

from loguru import logger
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from config.settings import Settings
from src.listeners.decoder import decode_metadata, decode_mint
from src.models.pool import PoolRecord
from src.rpc.client import SolanaRpcClient

METADATA_PROGRAM_ID = Pubkey.from_string("metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s")


class VerdictOutcome(StrEnum):
    PASS = "pass"
    FAIL = "fail"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class FilterVerdict:
    outcome: VerdictOutcome
    failed_predicate: str | None = None
    message: str = ""
    ticks: int = 0

    @property
    def passed(self) -> bool:
        return self.outcome is VerdictOutcome.PASS


@dataclass(frozen=True)
class FilterCheck:
    ok: bool
    message: str = ""


class PoolFilter(ABC):
    name: str = "filter"

    @abstractmethod
    async def check(self, pool: PoolRecord) -> FilterCheck: ...


class RenouncedFilter(PoolFilter):
    """Mint authority must be renounced (no more supply can be minted)."""

    name = "renounced"

    def __init__(self, rpc: SolanaRpcClient) -> None:
        self._rpc = rpc

    async def check(self, pool: PoolRecord) -> FilterCheck:
        raw = await self._rpc.get_account_info(pool.base_mint)
        if raw is None:
            return FilterCheck(False, "mint account not found")
        mint = decode_mint(raw)
        if not mint.mint_renounced:
            return FilterCheck(False, f"mint authority {mint.mint_authority}")
        return FilterCheck(True)


class FreezableFilter(PoolFilter):
    """Mint must not carry a freeze authority."""

    name = "freezable"

    def __init__(self, rpc: SolanaRpcClient) -> None:
        self._rpc = rpc

    async def check(self, pool: PoolRecord) -> FilterCheck:
        raw = await self._rpc.get_account_info(pool.base_mint)
        if raw is None:
            return FilterCheck(False, "mint account not found")
        mint = decode_mint(raw)
        if mint.freezable:
            return FilterCheck(False, f"freeze authority {mint.freeze_authority}")
        return FilterCheck(True)


class BurnFilter(PoolFilter):
    """LP tokens burned: LP mint supply is zero."""

    name = "burned"

    def __init__(self, rpc: SolanaRpcClient) -> None:
        self._rpc = rpc

    async def check(self, pool: PoolRecord) -> FilterCheck:
        supply = await self._rpc.get_token_supply(pool.lp_mint)
        if supply.raw != 0:
            return FilterCheck(False, f"LP supply {supply.ui_amount_string or supply.amount} not burned")
        return FilterCheck(True)


class PoolSizeFilter(PoolFilter):
    """Quote-side liquidity within [min_size, max_size]. A zero bound is off."""

    name = "pool_size"

    def __init__(self, rpc: SolanaRpcClient, *, min_size: Decimal, max_size: Decimal) -> None:
        self._rpc = rpc
        self._min = min_size
        self._max = max_size

    async def check(self, pool: PoolRecord) -> FilterCheck:
        balance = await self._rpc.get_token_account_balance(pool.quote_vault)
        size = Decimal(balance.raw) / (Decimal(10) ** balance.decimals)
        if self._max > 0 and size > self._max:
            return FilterCheck(False, f"pool size {size} > {self._max}")
        if self._min > 0 and size < self._min:
            return FilterCheck(False, f"pool size {size} < {self._min}")
        return FilterCheck(True)


class MutableFilter(PoolFilter):
    """Token metadata must be immutable."""

    name = "mutable"

    def __init__(self, rpc: SolanaRpcClient) -> None:
        self._rpc = rpc

    async def check(self, pool: PoolRecord) -> FilterCheck:
        mint = Pubkey.from_string(pool.base_mint)
        pda, _bump = Pubkey.find_program_address(
            [b"metadata", bytes(METADATA_PROGRAM_ID), bytes(mint)],
            METADATA_PROGRAM_ID,
        )
        raw = await self._rpc.get_account_info(str(pda))
        if raw is None:
            return FilterCheck(False, "metadata account not found")
        metadata = decode_metadata(raw)
        if metadata.is_mutable:
            return FilterCheck(False, "metadata is mutable")
        return FilterCheck(True)


def build_filters(settings: Settings, rpc: SolanaRpcClient) -> list[PoolFilter]:
    """Instantiate the filters switched on in configuration."""
    filters: list[PoolFilter] = []
    if settings.check_if_mint_is_renounced:
        filters.append(RenouncedFilter(rpc))
    if settings.check_if_freezable:
        filters.append(FreezableFilter(rpc))
    if settings.check_if_burned:
        filters.append(BurnFilter(rpc))
    if settings.check_if_mutable:
        filters.append(MutableFilter(rpc))
    if settings.min_pool_size > 0 or settings.max_pool_size > 0:
        filters.append(
            PoolSizeFilter(
                rpc,
                min_size=Decimal(str(settings.min_pool_size)),
                max_size=Decimal(str(settings.max_pool_size)),
            )
        )
    return filters


class FilterPipeline:
    def __init__(
        self,
        filters: list[PoolFilter],
        *,
        check_interval: float,
        check_duration: float,
        consecutive_matches: int,
    ) -> None:
        self._filters = filters
        self._interval = check_interval
        self._max_ticks = max(1, int(check_duration / check_interval)) if check_interval > 0 else 1
        self._required = max(1, consecutive_matches)

    @property
    def filter_names(self) -> list[str]:
        return [f.name for f in self._filters]

    async def run_once(self, pool: PoolRecord) -> tuple[str, str] | None:
        """Evaluate every filter once.

        Returns (filter name, message) for the first failure, or None if all pass.
        A filter that raises counts as failed for this tick.
        """
        results = await asyncio.gather(
            *(f.check(pool) for f in self._filters), return_exceptions=True
        )
        for flt, result in zip(self._filters, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                return flt.name, f"{type(result).__name__}: {result}"
            if not result.ok:
                return flt.name, result.message
        return None

    async def evaluate(self, pool: PoolRecord) -> FilterVerdict:
        """Poll the filters until the match streak is long enough or time runs out."""
        if not self._filters:
            return FilterVerdict(VerdictOutcome.PASS, ticks=0)

        matches = 0
        last_failed: str | None = None
        last_message = ""

        for tick in range(1, self._max_ticks + 1):
            failure = await self.run_once(pool)
            if failure is None:
                matches += 1
                logger.debug(
                    f"[FILTER] {pool.base_mint[:12]} tick {tick}: match {matches}/{self._required}"
                )
                if matches >= self._required:
                    return FilterVerdict(VerdictOutcome.PASS, ticks=tick)
            else:
                matches = 0
                last_failed, last_message = failure
                logger.debug(
                    f"[FILTER] {pool.base_mint[:12]} tick {tick}: {last_failed} failed: {last_message}"
                )

            if tick < self._max_ticks:
                await asyncio.sleep(self._interval)

        return FilterVerdict(
            VerdictOutcome.TIMEOUT,
            failed_predicate=last_failed,
            message=last_message or "not enough consecutive matches",
            ticks=self._max_ticks,
        )
