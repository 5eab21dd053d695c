"""Per-mint position lifecycle: filter → buy → hold → sell.

One PositionLifecycle owns one Position and runs as its own asyncio task.
Retryable execution errors are absorbed by retry_async; exhausted and fatal
errors end this position only. Whatever the outcome, the dedup slot is
released (ABORTED / FAILED / cancelled) or marked closed (CLOSED) on exit.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

from loguru import logger

from config.settings import Settings
from src.models.position import Position, PositionState
from src.trading.circuit_breaker import ChannelCircuitBreaker
from src.trading.dedup_cache import DedupCache
from src.trading.errors import (
    ChannelUnavailable,
    DecodeError,
    ExecutionError,
    FilterRejected,
    FilterTimeout,
    InstructionBuildError,
    InsufficientBalance,
    RetriesExhausted,
    StaleBalance,
)
from src.trading.executor import ExecutionResult, FeeConfig, TransactionExecutor
from src.trading.filters import FilterPipeline, VerdictOutcome
from src.trading.price_monitor import ExitDecision, PriceMonitor
from src.trading.price_source import PriceSource
from src.trading.retry import retry_async
from src.trading.snipe_list import SnipeList
from src.trading.swap_builder import JupiterSwapBuilder, SwapPlan, effective_price
from src.trading.wallet import SolanaWallet

EXIT_BALANCE_ZERO = "balance_zero"
EXIT_AUTO_SELL = "auto_sell"

_TERMINAL_ERRORS = (
    InstructionBuildError,
    ExecutionError,
    RetriesExhausted,
    DecodeError,
)


@dataclass(frozen=True)
class TradeConfig:
    """Buy/sell knobs read once from Settings."""

    quote_amount: Decimal
    auto_buy_delay: float = 0.0
    max_buy_retries: int = 10
    buy_slippage: float = 20.0
    auto_sell: bool = True
    auto_sell_delay: float = 0.0
    max_sell_retries: int = 10
    sell_retry_delay: float = 0.5
    sell_slippage: float = 20.0
    confirm_timeout: float = 60.0

    @classmethod
    def from_settings(cls, settings: Settings) -> TradeConfig:
        return cls(
            quote_amount=Decimal(str(settings.quote_amount)),
            auto_buy_delay=settings.auto_buy_delay_sec,
            max_buy_retries=settings.max_buy_retries,
            buy_slippage=settings.buy_slippage,
            auto_sell=settings.auto_sell,
            auto_sell_delay=settings.auto_sell_delay_sec,
            max_sell_retries=settings.max_sell_retries,
            sell_retry_delay=settings.sell_retry_delay_sec,
            sell_slippage=settings.sell_slippage,
            confirm_timeout=settings.confirm_timeout_sec,
        )


def _channel_error(error: Exception) -> ChannelUnavailable | None:
    if isinstance(error, RetriesExhausted):
        error = error.last_error
    return error if isinstance(error, ChannelUnavailable) else None


class PositionLifecycle:
    def __init__(
        self,
        position: Position,
        *,
        config: TradeConfig,
        dedup: DedupCache,
        wallet: SolanaWallet,
        executor: TransactionExecutor,
        swap_builder: JupiterSwapBuilder,
        price_source: PriceSource,
        monitor: PriceMonitor,
        fee: FeeConfig,
        pipeline: FilterPipeline | None = None,
        snipe_list: SnipeList | None = None,
        circuit: ChannelCircuitBreaker | None = None,
    ) -> None:
        self.position = position
        self._cfg = config
        self._dedup = dedup
        self._wallet = wallet
        self._executor = executor
        self._swap = swap_builder
        self._price_source = price_source
        self._monitor = monitor
        self._fee = fee
        self._pipeline = pipeline
        self._snipe_list = snipe_list
        self._circuit = circuit
        self._balance_zero = asyncio.Event()

    @property
    def mint(self) -> str:
        return self.position.mint

    def notify_balance_zero(self) -> None:
        """Wallet reports no tokens left for this mint (sold outside the bot)."""
        if not self._balance_zero.is_set():
            logger.info(f"[SELL] {self.mint[:12]} wallet balance dropped to zero")
        self._balance_zero.set()

    async def run(self) -> Position:
        try:
            await self._run()
        except asyncio.CancelledError:
            logger.info(f"[SNIPER] {self.mint[:12]} cancelled in state {self.position.state}")
            raise
        finally:
            self._release()
        return self.position

    async def _run(self) -> None:
        self.position.advance(PositionState.FILTERING)
        try:
            await self._filter()
        except FilterRejected as e:
            self.position.failure = str(e)
            self.position.advance(PositionState.ABORTED)
            kind = "timed out" if isinstance(e, FilterTimeout) else "rejected"
            logger.info(f"[FILTER] {self.mint[:12]} {kind}: {e}")
            return

        self.position.advance(PositionState.BUYING)
        try:
            await self._buy()
        except _TERMINAL_ERRORS as e:
            self._fail("buy", e)
            return
        self.position.advance(PositionState.OPEN)

        reason = await self._wait_for_exit()

        self.position.advance(PositionState.SELLING)
        self.position.exit_reason = reason
        try:
            await self._sell()
        except _TERMINAL_ERRORS as e:
            self._fail("sell", e)
            return
        self.position.advance(PositionState.CLOSED)

    def _release(self) -> None:
        if self.position.state is PositionState.CLOSED:
            self._dedup.mark_closed(self.mint)
        else:
            self._dedup.remove(self.mint)

    def _fail(self, step: str, error: Exception) -> None:
        self.position.failure = str(error)
        self.position.advance(PositionState.FAILED)
        tag = "[BUY]" if step == "buy" else "[SELL]"
        logger.error(f"{tag} {self.mint[:12]} failed: {error}")
        channel_error = _channel_error(error)
        if self._circuit is not None and channel_error is not None:
            self._circuit.record_failure(channel_error)

    # ─── Filtering ───────────────────────────────────────────────────

    async def _filter(self) -> None:
        pool = self.position.pool
        if self._snipe_list is not None:
            verdict = self._snipe_list.check(pool)
        elif self._pipeline is not None:
            verdict = await self._pipeline.evaluate(pool)
        else:
            return

        if verdict.outcome is VerdictOutcome.TIMEOUT:
            raise FilterTimeout(verdict.failed_predicate, verdict.message)
        if not verdict.passed:
            raise FilterRejected(verdict.failed_predicate, verdict.message)
        logger.info(f"[FILTER] {self.mint[:12]} passed after {verdict.ticks} ticks")

    # ─── Buy ─────────────────────────────────────────────────────────

    async def _buy(self) -> None:
        pool = self.position.pool
        cfg = self._cfg

        if cfg.auto_buy_delay > 0:
            logger.debug(f"[BUY] {self.mint[:12]} waiting {cfg.auto_buy_delay}s before buy")
            await asyncio.sleep(cfg.auto_buy_delay)

        amount_raw = int(self.position.quote_amount * (Decimal(10) ** pool.quote_decimals))

        async def check_balance(n: int) -> None:
            balance = await self._wallet.get_token_balance(pool.quote_mint)
            if balance < amount_raw:
                raise InsufficientBalance(
                    f"quote balance {balance} < {amount_raw} required for {self.mint[:12]}"
                )

        await retry_async(
            check_balance,
            max_retries=cfg.max_buy_retries,
            delay=cfg.auto_buy_delay,
            label=f"quote balance {self.mint[:12]}",
        )

        plan = await self._swap.build_buy(pool, amount_raw, cfg.buy_slippage)

        async def attempt(n: int) -> ExecutionResult:
            if n > 1:
                self.position.advance(PositionState.BUYING)
            self.position.buy_attempts = n
            return await self._submit(plan)

        logger.info(
            f"[BUY] {self.mint[:12]} {self.position.quote_amount} → ~{plan.out_amount} tokens "
            f"(pool {pool.pool_id[:12]})"
        )
        result = await retry_async(
            attempt,
            max_retries=cfg.max_buy_retries,
            delay=cfg.auto_buy_delay,
            label=f"buy {self.mint[:12]}",
        )
        self.position.buy_signature = result.signature
        self.position.opened_at = datetime.now(UTC)
        if self._circuit is not None:
            self._circuit.record_success()

        self.position.token_amount = await self._received_amount(plan)
        self.position.entry_price = await self._entry_price(plan)
        logger.info(
            f"[BUY] {self.mint[:12]} confirmed {result.signature[:16]} "
            f"after {self.position.buy_attempts} attempt(s), entry {self.position.entry_price:.10f}"
        )

    async def _received_amount(self, plan: SwapPlan) -> int:
        try:
            balance = await self._wallet.get_token_balance(self.mint)
        except (ExecutionError, DecodeError) as e:
            logger.debug(f"[BUY] {self.mint[:12]} balance read failed: {e}")
            return plan.out_amount
        return balance or plan.out_amount

    async def _entry_price(self, plan: SwapPlan) -> Decimal:
        try:
            return await self._price_source.get_price(self.position.pool)
        except (ExecutionError, DecodeError) as e:
            logger.debug(f"[BUY] {self.mint[:12]} pool price unavailable, using fill price: {e}")
            pool = self.position.pool
            return effective_price(
                plan, base_decimals=pool.base_decimals, quote_decimals=pool.quote_decimals
            )

    async def _submit(self, plan: SwapPlan) -> ExecutionResult:
        return await self._executor.execute(
            plan.instructions,
            self._wallet.keypair,
            self._fee,
            plan.lookup_tables,
            timeout=self._cfg.confirm_timeout,
        )

    # ─── Hold ────────────────────────────────────────────────────────

    async def _wait_for_exit(self) -> str:
        """Block while OPEN; return why the position should be sold."""
        cfg = self._cfg

        if await self._wait_balance_zero(cfg.auto_sell_delay):
            return EXIT_BALANCE_ZERO

        if self._monitor.enabled:
            decision = await self._race_monitor()
            if decision is None:
                return EXIT_BALANCE_ZERO
            if decision is not ExitDecision.TIMEOUT or cfg.auto_sell:
                return decision.value
        elif cfg.auto_sell:
            return EXIT_AUTO_SELL

        logger.info(f"[SELL] {self.mint[:12]} auto-sell off, holding until wallet balance is zero")
        await self._balance_zero.wait()
        return EXIT_BALANCE_ZERO

    async def _wait_balance_zero(self, timeout: float) -> bool:
        if timeout <= 0:
            return self._balance_zero.is_set()
        try:
            await asyncio.wait_for(self._balance_zero.wait(), timeout)
        except TimeoutError:
            return False
        return True

    async def _race_monitor(self) -> ExitDecision | None:
        """Monitor vs. wallet-zero signal. None means the signal won."""
        watch = asyncio.create_task(self._monitor.watch(self.position))
        zero = asyncio.create_task(self._balance_zero.wait())
        try:
            done, _ = await asyncio.wait({watch, zero}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (watch, zero):
                if not task.done():
                    task.cancel()
        if watch in done:
            return watch.result()
        return None

    # ─── Sell ────────────────────────────────────────────────────────

    async def _sell(self) -> None:
        pool = self.position.pool
        cfg = self._cfg
        plan: SwapPlan | None = None

        async def attempt(n: int) -> ExecutionResult | None:
            nonlocal plan
            if n > 1:
                self.position.advance(PositionState.SELLING)
            if plan is None:
                balance = await self._sell_balance()
                if balance == 0:
                    return None
                plan = await self._swap.build_sell(pool, balance, cfg.sell_slippage)
                logger.info(
                    f"[SELL] {self.mint[:12]} {balance} tokens → ~{plan.out_amount} quote "
                    f"({self.position.exit_reason})"
                )
            self.position.sell_attempts += 1
            return await self._submit(plan)

        result = await retry_async(
            attempt,
            max_retries=cfg.max_sell_retries,
            delay=cfg.sell_retry_delay,
            label=f"sell {self.mint[:12]}",
        )
        if result is None:
            logger.info(f"[SELL] {self.mint[:12]} nothing left to sell, closing")
            return

        self.position.sell_signature = result.signature
        if self._circuit is not None:
            self._circuit.record_success()
        logger.info(
            f"[SELL] {self.mint[:12]} confirmed {result.signature[:16]} "
            f"after {self.position.sell_attempts} attempt(s)"
        )

    async def _sell_balance(self) -> int:
        """Tokens to sell. Zero only counts once the wallet-zero signal confirmed it."""
        balance = await self._wallet.get_token_balance(self.mint)
        if balance > 0 or self.position.token_amount == 0:
            return balance
        if self.position.exit_reason == EXIT_BALANCE_ZERO or self._balance_zero.is_set():
            return 0
        raise StaleBalance(
            f"{self.mint[:12]} wallet reads 0 but {self.position.token_amount} tokens were bought"
        )
