"""Sniper supervisor: turns chain events into position lifecycles.

Owns the run-scoped pieces the lifecycles share: the dedup cache, the
active set, the one-token-at-a-time gate and the channel circuit breaker.
"""

from __future__ import annotations

import asyncio
import time

from loguru import logger

from src.listeners.models import PoolDiscovered, WalletBalanceChanged
from src.models.pool import PoolRecord
from src.models.position import Position
from src.trading.circuit_breaker import ChannelCircuitBreaker
from src.trading.dedup_cache import DedupCache
from src.trading.executor import FeeConfig, TransactionExecutor
from src.trading.filters import FilterPipeline
from src.trading.lifecycle import PositionLifecycle, TradeConfig
from src.trading.price_monitor import PriceMonitor
from src.trading.price_source import PriceSource
from src.trading.snipe_list import SnipeList
from src.trading.swap_builder import JupiterSwapBuilder
from src.trading.wallet import SolanaWallet


class Sniper:
    def __init__(
        self,
        *,
        quote_mint: str,
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
        one_token_at_a_time: bool = True,
        run_started_at: int | None = None,
    ) -> None:
        self._quote_mint = quote_mint
        self._config = config
        self._dedup = dedup
        self._wallet = wallet
        self._executor = executor
        self._swap = swap_builder
        self._price_source = price_source
        self._monitor = monitor
        self._fee = fee
        self._pipeline = pipeline
        self._snipe_list = snipe_list
        self._circuit = circuit or ChannelCircuitBreaker()
        self._one_token = one_token_at_a_time
        self._gate = asyncio.Lock()
        self._run_started_at = int(time.time()) if run_started_at is None else run_started_at

        self._active: dict[str, PositionLifecycle] = {}
        self._tasks: set[asyncio.Task] = set()
        self.finished: list[Position] = []

    @property
    def active_positions(self) -> list[Position]:
        return [lc.position for lc in self._active.values()]

    @property
    def circuit(self) -> ChannelCircuitBreaker:
        return self._circuit

    async def validate(self) -> bool:
        """The wallet must already hold a token account for the quote mint."""
        if not await self._wallet.has_token_account(self._quote_mint):
            logger.error(
                f"[SNIPER] No token account for quote mint {self._quote_mint} in wallet "
                f"{self._wallet.pubkey_str}"
            )
            return False
        return True

    # ─── Event callbacks ─────────────────────────────────────────────

    async def on_pool_discovered(self, event: PoolDiscovered) -> None:
        pool = event.pool.oriented(self._quote_mint)
        mint = pool.base_mint
        if pool.quote_mint != self._quote_mint:
            logger.debug(f"[SNIPER] Pool {pool.pool_id[:12]} not paired with quote mint, skip")
            return
        if pool.pool_open_time <= self._run_started_at:
            return

        if self._circuit.is_tripped:
            logger.info(
                f"[CIRCUIT] Log-only: pool {pool.pool_id[:12]} mint {mint} "
                f"(breaker {self._circuit.describe()})"
            )
            return
        if self._one_token and self._gate.locked():
            logger.info(f"[SNIPER] Busy with another token, skipping {mint[:12]}")
            return
        if not self._dedup.claim(mint, pool.pool_id):
            logger.debug(f"[SNIPER] {mint[:12]} already in flight, duplicate discovery ignored")
            return

        if self._one_token:
            await self._gate.acquire()
        logger.info(f"[SNIPER] New pool {pool.pool_id} for {mint}")
        self._spawn(pool)

    async def on_wallet_changed(self, event: WalletBalanceChanged) -> None:
        if event.mint == self._quote_mint or event.amount != 0:
            return
        lifecycle = self._active.get(event.mint)
        if lifecycle is not None:
            lifecycle.notify_balance_zero()

    async def on_reconnect(self) -> None:
        self._circuit.reset()

    # ─── Lifecycle tasks ─────────────────────────────────────────────

    def _spawn(self, pool: PoolRecord) -> None:
        lifecycle = PositionLifecycle(
            Position(pool=pool, quote_amount=self._config.quote_amount),
            config=self._config,
            dedup=self._dedup,
            wallet=self._wallet,
            executor=self._executor,
            swap_builder=self._swap,
            price_source=self._price_source,
            monitor=self._monitor,
            fee=self._fee,
            pipeline=self._pipeline,
            snipe_list=self._snipe_list,
            circuit=self._circuit,
        )
        self._active[pool.base_mint] = lifecycle
        task = asyncio.create_task(self._run(lifecycle), name=f"position-{pool.base_mint[:8]}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, lifecycle: PositionLifecycle) -> None:
        try:
            position = await lifecycle.run()
            self.finished.append(position)
            logger.info(
                f"[SNIPER] {position.mint[:12]} finished {position.state}"
                + (f" ({position.exit_reason})" if position.exit_reason else "")
            )
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"[SNIPER] Lifecycle for {lifecycle.mint[:12]} crashed")
        finally:
            self._active.pop(lifecycle.mint, None)
            if self._one_token and self._gate.locked():
                self._gate.release()

    async def join(self) -> None:
        """Wait for every running lifecycle to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every running lifecycle; their dedup slots are released."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"[SNIPER] Shutdown: {len(tasks)} lifecycle(s) cancelled")
