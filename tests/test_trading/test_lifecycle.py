"""Tests for PositionLifecycle — filter → buy → hold → sell.

Collaborators are in-memory fakes; asyncio.sleep is patched so filter,
retry and monitor loops run instantly.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from solders.keypair import Keypair  # type: ignore[import-untyped]

from src.models.pool import PoolRecord
from src.models.position import Position, PositionState
from src.trading.circuit_breaker import ChannelCircuitBreaker
from src.trading.dedup_cache import DedupCache, SlotStatus
from src.trading.errors import (
    ChannelUnavailable,
    ConfirmTimeout,
    InstructionBuildError,
    SubmitError,
)
from src.trading.executor import ExecutionResult, ExecutionStatus, FeeConfig
from src.trading.filters import FilterCheck, FilterPipeline, PoolFilter
from src.trading.lifecycle import PositionLifecycle, TradeConfig
from src.trading.price_monitor import PriceMonitor
from src.trading.snipe_list import SnipeList
from src.trading.swap_builder import SwapPlan
from src.trading.wallet import WSOL_MINT

TOKENS_BOUGHT = 5_000_000
BLOCK = object()


# ── Fakes ──────────────────────────────────────────────────────────────


class FakeWallet:
    """Balance reads can be scripted: an int overrides one read, an exception
    is raised once, None falls through to the live balance."""

    def __init__(self, *, quote_balance: int = 10**12, quote_reads=(), token_reads=()) -> None:
        self.keypair = Keypair()
        self.pubkey_str = str(self.keypair.pubkey())
        self.quote_balance = quote_balance
        self.token_balance = 0
        self.quote_reads = list(quote_reads)
        self.token_reads = list(token_reads)

    async def get_token_balance(self, mint: str) -> int:
        if mint == WSOL_MINT:
            return self._read(self.quote_reads, self.quote_balance)
        return self._read(self.token_reads, self.token_balance)

    @staticmethod
    def _read(script: list, live: int) -> int:
        step = script.pop(0) if script else None
        if isinstance(step, Exception):
            raise step
        return live if step is None else step


class FakeExecutor:
    """Scripted outcomes per side; a successful swap moves the wallet balance."""

    def __init__(self, wallet: FakeWallet, *, buy=(), sell=(), tokens_after_buy=TOKENS_BOUGHT) -> None:
        self.wallet = wallet
        self.outcomes = {"buy": list(buy), "sell": list(sell)}
        self.tokens_after_buy = tokens_after_buy
        self.calls: list[str] = []

    async def execute(self, instructions, signer, fee, lookup_tables=(), *, timeout):
        side = instructions[0]
        self.calls.append(side)
        queue = self.outcomes[side]
        outcome = queue.pop(0) if queue else None
        if isinstance(outcome, Exception):
            raise outcome
        self.wallet.token_balance = self.tokens_after_buy if side == "buy" else 0
        return ExecutionResult(f"{side}-sig-{len(self.calls)}", ExecutionStatus.CONFIRMED, slot=1)


class FakeSwapBuilder:
    def __init__(self, *, fail_buy: bool = False) -> None:
        self.fail_buy = fail_buy
        self.build_buy = AsyncMock(side_effect=self._buy)
        self.build_sell = AsyncMock(side_effect=self._sell)

    async def _buy(self, pool, amount, slippage):
        if self.fail_buy:
            raise InstructionBuildError("no route")
        return SwapPlan(pool.quote_mint, pool.base_mint, amount, TOKENS_BOUGHT, 0, 0.0, ["buy"])

    async def _sell(self, pool, amount, slippage):
        return SwapPlan(pool.base_mint, pool.quote_mint, amount, 10**8, 0, 0.0, ["sell"])


class FakePriceSource:
    """Returns prices in order, repeating the last; BLOCK waits forever."""

    def __init__(self, prices: list) -> None:
        self.prices = list(prices)
        self.calls = 0
        self.blocked = asyncio.Event()

    async def get_price(self, pool: PoolRecord) -> Decimal:
        self.calls += 1
        price = self.prices.pop(0) if len(self.prices) > 1 else self.prices[0]
        if price is BLOCK:
            self.blocked.set()
            await asyncio.Event().wait()
        return Decimal(price)


class PassingFilter(PoolFilter):
    name = "renounced"

    async def check(self, pool: PoolRecord) -> FilterCheck:
        return FilterCheck(True)


class FailingFilter(PoolFilter):
    name = "burned"

    async def check(self, pool: PoolRecord) -> FilterCheck:
        return FilterCheck(False, "LP not burned")


def _build(
    pool: PoolRecord,
    *,
    filters: list[PoolFilter] | None = None,
    snipe_list: SnipeList | None = None,
    prices: list | None = None,
    buy=(),
    sell=(),
    tokens_after_buy: int = TOKENS_BOUGHT,
    quote_balance: int = 10**12,
    quote_reads=(),
    token_reads=(),
    fail_build: bool = False,
    monitor_duration: float = 10.0,
    **config,
) -> SimpleNamespace:
    wallet = FakeWallet(quote_balance=quote_balance, quote_reads=quote_reads, token_reads=token_reads)
    executor = FakeExecutor(wallet, buy=buy, sell=sell, tokens_after_buy=tokens_after_buy)
    swap = FakeSwapBuilder(fail_buy=fail_build)
    source = FakePriceSource(prices or ["100"])
    dedup = DedupCache()
    circuit = ChannelCircuitBreaker(threshold=1, cooldown_sec=60)
    pipeline = FilterPipeline(
        filters if filters is not None else [PassingFilter()],
        check_interval=1.0,
        check_duration=10.0,
        consecutive_matches=3,
    )
    monitor = PriceMonitor(
        source, check_interval=1.0, check_duration=monitor_duration, take_profit=50, stop_loss=20
    )
    config.setdefault("max_buy_retries", 3)
    config.setdefault("max_sell_retries", 3)
    trade = TradeConfig(quote_amount=Decimal("0.1"), **config)

    position = Position(pool=pool, quote_amount=trade.quote_amount)
    assert dedup.claim(pool.base_mint, pool.pool_id)
    lifecycle = PositionLifecycle(
        position,
        config=trade,
        dedup=dedup,
        wallet=wallet,
        executor=executor,
        swap_builder=swap,
        price_source=source,
        monitor=monitor,
        fee=FeeConfig(1, 1, 1),
        pipeline=None if snipe_list is not None else pipeline,
        snipe_list=snipe_list,
        circuit=circuit,
    )
    return SimpleNamespace(
        lifecycle=lifecycle,
        position=position,
        wallet=wallet,
        executor=executor,
        swap=swap,
        source=source,
        dedup=dedup,
        circuit=circuit,
    )


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("src.trading.lifecycle.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


# ── Happy path ─────────────────────────────────────────────────────────


class TestEndToEnd:
    async def test_buy_take_profit_sell(self, pool):
        # all filters on and passing, price +60% during monitoring
        filters = [PassingFilter(), PassingFilter(), PassingFilter()]
        t = _build(pool, filters=filters, prices=["100", "120", "160"])

        position = await t.lifecycle.run()

        assert position.state is PositionState.CLOSED
        assert t.executor.calls == ["buy", "sell"]
        assert position.buy_attempts == 1
        assert position.sell_attempts == 1
        assert position.entry_price == Decimal("100")
        assert position.token_amount == TOKENS_BOUGHT
        assert position.exit_reason == "take_profit"
        assert position.buy_signature == "buy-sig-1"
        assert position.sell_signature == "sell-sig-2"
        assert position.opened_at is not None
        assert position.closed_at >= position.opened_at
        assert position.history == [
            PositionState.NEW,
            PositionState.FILTERING,
            PositionState.BUYING,
            PositionState.OPEN,
            PositionState.SELLING,
        ]
        assert t.dedup.get(pool.base_mint).status is SlotStatus.CLOSED
        t.swap.build_sell.assert_awaited_once_with(pool, TOKENS_BOUGHT, 20.0)

    async def test_stop_loss(self, pool):
        t = _build(pool, prices=["100", "70"])
        position = await t.lifecycle.run()
        assert position.state is PositionState.CLOSED
        assert position.exit_reason == "stop_loss"

    async def test_monitor_timeout_sells_with_auto_sell(self, pool):
        t = _build(pool, prices=["100", "110"], monitor_duration=3.0)
        position = await t.lifecycle.run()
        assert position.exit_reason == "timeout"
        assert t.executor.calls == ["buy", "sell"]

    async def test_auto_sell_without_price_checks(self, pool):
        t = _build(pool, monitor_duration=0)
        position = await t.lifecycle.run()
        assert position.state is PositionState.CLOSED
        assert position.exit_reason == "auto_sell"
        assert t.source.calls == 1  # entry price only

    async def test_buy_delay_applied(self, pool, no_sleep):
        t = _build(pool, prices=["100", "200"], auto_buy_delay=1.5)
        await t.lifecycle.run()
        no_sleep.assert_any_await(1.5)


# ── Gating ─────────────────────────────────────────────────────────────


class TestGating:
    async def test_filter_timeout_aborts(self, pool):
        t = _build(pool, filters=[PassingFilter(), FailingFilter()])
        position = await t.lifecycle.run()

        assert position.state is PositionState.ABORTED
        assert "burned" in position.failure
        assert t.executor.calls == []
        assert pool.base_mint not in t.dedup

    async def test_unlisted_mint_never_buys(self, pool):
        t = _build(pool, snipe_list=SnipeList(frozenset({"SomeOtherMint"})))
        position = await t.lifecycle.run()

        assert position.state is PositionState.ABORTED
        assert PositionState.BUYING not in position.history
        assert "snipe_list" in position.failure
        t.swap.build_buy.assert_not_awaited()

    async def test_listed_mint_skips_filters(self, pool):
        t = _build(
            pool,
            filters=[FailingFilter()],
            snipe_list=SnipeList(frozenset({pool.base_mint})),
            prices=["100", "200"],
        )
        position = await t.lifecycle.run()
        assert position.state is PositionState.CLOSED


# ── Buy failures ───────────────────────────────────────────────────────


class TestBuyFailures:
    async def test_retry_then_confirm(self, pool):
        t = _build(pool, buy=[SubmitError("blockhash"), ConfirmTimeout("slow")], prices=["100", "200"])
        position = await t.lifecycle.run()

        assert position.state is PositionState.CLOSED
        assert position.buy_attempts == 3
        assert t.executor.calls == ["buy", "buy", "buy", "sell"]
        assert position.history.count(PositionState.BUYING) == 3

    async def test_retries_exhausted(self, pool):
        t = _build(pool, buy=[SubmitError("x")] * 10, max_buy_retries=2)
        position = await t.lifecycle.run()

        assert position.state is PositionState.FAILED
        assert position.buy_attempts == 3
        assert t.executor.calls == ["buy"] * 3
        assert pool.base_mint not in t.dedup

    async def test_insufficient_balance_not_retried(self, pool):
        t = _build(pool, quote_balance=1_000)
        position = await t.lifecycle.run()

        assert position.state is PositionState.FAILED
        assert "quote balance" in position.failure
        assert t.executor.calls == []
        t.swap.build_buy.assert_not_awaited()

    async def test_instruction_build_error_is_fatal(self, pool):
        t = _build(pool, fail_build=True)
        position = await t.lifecycle.run()

        assert position.state is PositionState.FAILED
        assert t.executor.calls == []

    async def test_instructions_built_once(self, pool):
        t = _build(pool, buy=[SubmitError("a"), SubmitError("b")], prices=["100", "200"])
        await t.lifecycle.run()
        t.swap.build_buy.assert_awaited_once()

    async def test_channel_failure_reported(self, pool):
        t = _build(pool, buy=[ChannelUnavailable("rpc down")], max_buy_retries=0)
        await t.lifecycle.run()
        assert t.circuit.is_tripped
        assert t.circuit.trip_cause == "ChannelUnavailable: rpc down"

    async def test_quote_balance_read_retried(self, pool):
        t = _build(pool, quote_reads=[ChannelUnavailable("rpc blip")], prices=["100", "200"])
        position = await t.lifecycle.run()

        assert position.state is PositionState.CLOSED
        assert t.executor.calls == ["buy", "sell"]
        assert not t.circuit.is_tripped

    async def test_quote_balance_read_exhausted(self, pool):
        t = _build(pool, quote_reads=[ChannelUnavailable("rpc down")] * 5, max_buy_retries=1)
        position = await t.lifecycle.run()

        assert position.state is PositionState.FAILED
        assert t.executor.calls == []
        assert t.circuit.is_tripped


# ── Sell path ──────────────────────────────────────────────────────────


class TestSell:
    async def test_sell_retries_bounded(self, pool):
        t = _build(pool, prices=["100", "200"], sell=[SubmitError("x")] * 10, max_sell_retries=1)
        position = await t.lifecycle.run()

        assert position.state is PositionState.FAILED
        assert position.sell_attempts == 2
        assert t.executor.calls == ["buy", "sell", "sell"]
        assert pool.base_mint not in t.dedup

    async def test_sell_retry_delay(self, pool):
        t = _build(pool, prices=["100", "200"], sell=[SubmitError("x")], sell_retry_delay=0.25)
        with patch("src.trading.retry.asyncio.sleep", new_callable=AsyncMock) as retry_sleep:
            await t.lifecycle.run()
        retry_sleep.assert_any_await(0.25)

    async def test_balance_read_error_retried(self, pool):
        # first token read is the post-buy amount, the second is the sell read
        t = _build(pool, prices=["100", "200"], token_reads=[None, ChannelUnavailable("rpc blip")])
        position = await t.lifecycle.run()

        assert position.state is PositionState.CLOSED
        assert t.executor.calls == ["buy", "sell"]
        assert position.sell_signature == "sell-sig-2"
        t.swap.build_sell.assert_awaited_once_with(pool, TOKENS_BOUGHT, 20.0)

    async def test_lagging_zero_read_retried(self, pool):
        t = _build(pool, prices=["100", "200"], token_reads=[None, 0])
        position = await t.lifecycle.run()

        assert position.state is PositionState.CLOSED
        assert position.exit_reason == "take_profit"
        assert t.executor.calls == ["buy", "sell"]
        assert t.wallet.token_balance == 0
        t.swap.build_sell.assert_awaited_once_with(pool, TOKENS_BOUGHT, 20.0)

    async def test_zero_read_without_signal_never_closes(self, pool):
        t = _build(pool, prices=["100", "200"], tokens_after_buy=0, max_sell_retries=2)
        position = await t.lifecycle.run()

        assert position.state is PositionState.FAILED
        assert "wallet reads 0" in position.failure
        assert t.executor.calls == ["buy"]
        t.swap.build_sell.assert_not_awaited()
        assert pool.base_mint not in t.dedup

    async def test_balance_zero_signal_before_monitoring(self, pool):
        t = _build(pool, prices=["100", "200"], tokens_after_buy=0)
        t.lifecycle.notify_balance_zero()
        position = await t.lifecycle.run()

        assert position.exit_reason == "balance_zero"
        assert position.state is PositionState.CLOSED

    async def test_balance_zero_signal_interrupts_monitor(self, pool):
        t = _build(pool, prices=["100", BLOCK])
        task = asyncio.create_task(t.lifecycle.run())
        await t.source.blocked.wait()
        assert t.position.state is PositionState.OPEN

        t.wallet.token_balance = 0
        t.lifecycle.notify_balance_zero()
        position = await task

        assert position.exit_reason == "balance_zero"
        assert position.state is PositionState.CLOSED
        assert t.executor.calls == ["buy"]
        assert position.sell_attempts == 0
        assert position.sell_signature is None

    async def test_no_auto_sell_holds_after_timeout(self, pool):
        t = _build(pool, prices=["100", "110"], monitor_duration=3.0, auto_sell=False)
        task = asyncio.create_task(t.lifecycle.run())
        done, _ = await asyncio.wait({task}, timeout=0.05)

        assert not done
        assert t.position.state is PositionState.OPEN

        t.lifecycle.notify_balance_zero()
        position = await task
        assert position.exit_reason == "balance_zero"
        assert t.executor.calls == ["buy", "sell"]


# ── Cancellation ───────────────────────────────────────────────────────


class TestCancellation:
    async def test_cancel_releases_slot(self, pool):
        t = _build(pool, prices=["100", BLOCK])
        task = asyncio.create_task(t.lifecycle.run())
        await t.source.blocked.wait()
        assert pool.base_mint in t.dedup

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert pool.base_mint not in t.dedup
        assert t.position.state is PositionState.OPEN
