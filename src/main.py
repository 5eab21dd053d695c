"""Entry point for the Raydium pool sniper."""

import asyncio
import signal
import sys
from pathlib import Path

from loguru import logger

from config.settings import Settings, settings
from src.listeners.event_source import ChainEventSource
from src.rpc.client import SolanaRpcClient
from src.trading.circuit_breaker import ChannelCircuitBreaker
from src.trading.dedup_cache import DedupCache
from src.trading.executor import FeeConfig, create_executor
from src.trading.filters import FilterPipeline, build_filters
from src.trading.lifecycle import TradeConfig
from src.trading.price_monitor import PriceMonitor
from src.trading.price_source import ReservePriceSource
from src.trading.snipe_list import SnipeList
from src.trading.sniper import Sniper
from src.trading.swap_builder import JupiterSwapBuilder
from src.trading.wallet import QUOTE_MINTS, SolanaWallet
from src.utils.logger import setup_logger


def print_details(cfg: Settings, wallet: SolanaWallet, pipeline: FilterPipeline) -> None:
    """Effective configuration banner. The private key is never printed."""
    logger.info("------- CONFIGURATION START -------")
    logger.info(f"Wallet: {wallet.pubkey_str}")

    logger.info("- Bot -")
    logger.info(f"Executor: {cfg.transaction_executor}")
    if cfg.transaction_executor == "default":
        logger.info(f"Compute unit limit: {cfg.compute_unit_limit}")
        logger.info(f"Compute unit price (micro lamports): {cfg.compute_unit_price}")
    else:
        logger.info(f"Relay fee: {cfg.custom_fee} SOL")
    logger.info(f"Single token at a time: {cfg.one_token_at_a_time}")
    logger.info(f"Commitment: {cfg.commitment}")

    logger.info("- Buy -")
    logger.info(f"Buy amount: {cfg.quote_amount} {cfg.quote_mint}")
    logger.info(f"Auto buy delay: {cfg.auto_buy_delay_sec}s")
    logger.info(f"Max buy retries: {cfg.max_buy_retries}")
    logger.info(f"Buy slippage: {cfg.buy_slippage}%")

    logger.info("- Sell -")
    logger.info(f"Auto sell: {cfg.auto_sell}")
    logger.info(f"Auto sell delay: {cfg.auto_sell_delay_sec}s")
    logger.info(f"Max sell retries: {cfg.max_sell_retries}")
    logger.info(f"Sell slippage: {cfg.sell_slippage}%")
    logger.info(f"Price check interval: {cfg.price_check_interval_sec}s")
    logger.info(f"Price check duration: {cfg.price_check_duration_sec}s")
    logger.info(f"Take profit: {cfg.take_profit}%")
    logger.info(f"Stop loss: {cfg.stop_loss}%")

    logger.info("- Snipe list -")
    logger.info(f"Snipe list: {cfg.use_snipe_list}")
    if cfg.use_snipe_list:
        logger.info(f"Snipe list file: {cfg.snipe_list_path}")
    else:
        logger.info("- Filters -")
        logger.info(f"Enabled filters: {', '.join(pipeline.filter_names) or 'none'}")
        logger.info(f"Filter check interval: {cfg.filter_check_interval_sec}s")
        logger.info(f"Filter check duration: {cfg.filter_check_duration_sec}s")
        logger.info(f"Consecutive filter matches: {cfg.consecutive_filter_matches}")
        logger.info(f"Min pool size: {cfg.min_pool_size} {cfg.quote_mint}")
        logger.info(f"Max pool size: {cfg.max_pool_size} {cfg.quote_mint}")

    logger.info("------- CONFIGURATION END -------")


async def main() -> None:
    setup_logger(
        json_logs=settings.json_logs,
        level=settings.log_level,
        secrets=[settings.wallet_private_key],
    )
    logger.info("Starting raydium-sniper...")

    quote_mint = QUOTE_MINTS[settings.quote_mint]
    rpc = SolanaRpcClient(settings.rpc_url, commitment=settings.commitment)
    try:
        wallet = SolanaWallet.from_base58(settings.wallet_private_key, rpc)
    except ValueError as e:
        logger.error(f"Invalid wallet key: {e}")
        await rpc.close()
        sys.exit(1)

    executor = create_executor(settings, rpc)
    swap_builder = JupiterSwapBuilder(
        rpc=rpc,
        owner=wallet.pubkey,
        api_key=settings.jupiter_api_key,
        max_rps=settings.jupiter_max_rps,
    )
    price_source = ReservePriceSource(rpc)
    pipeline = FilterPipeline(
        build_filters(settings, rpc),
        check_interval=settings.filter_check_interval_sec,
        check_duration=settings.filter_check_duration_sec,
        consecutive_matches=settings.consecutive_filter_matches,
    )
    snipe_list = SnipeList.load(Path(settings.snipe_list_path)) if settings.use_snipe_list else None

    sniper = Sniper(
        quote_mint=quote_mint,
        config=TradeConfig.from_settings(settings),
        dedup=DedupCache(),
        wallet=wallet,
        executor=executor,
        swap_builder=swap_builder,
        price_source=price_source,
        monitor=PriceMonitor(
            price_source,
            check_interval=settings.price_check_interval_sec,
            check_duration=settings.price_check_duration_sec,
            take_profit=settings.take_profit,
            stop_loss=settings.stop_loss,
        ),
        fee=FeeConfig.from_settings(settings),
        pipeline=None if snipe_list is not None else pipeline,
        snipe_list=snipe_list,
        circuit=ChannelCircuitBreaker(
            threshold=settings.channel_failure_threshold,
            cooldown_sec=settings.channel_cooldown_sec,
        ),
        one_token_at_a_time=settings.one_token_at_a_time,
    )

    async def close_clients() -> None:
        await swap_builder.close()
        await executor.close()
        await rpc.close()

    if not await sniper.validate():
        await close_clients()
        sys.exit(1)

    print_details(settings, wallet, pipeline)

    source = ChainEventSource(
        settings.rpc_ws_url,
        quote_mint=quote_mint,
        wallet_owner=wallet.pubkey_str,
        commitment=settings.commitment,
    )
    source.on_pool_discovered = sniper.on_pool_discovered
    source.on_wallet_changed = sniper.on_wallet_changed
    source.on_reconnect = sniper.on_reconnect

    # Graceful shutdown on SIGINT/SIGTERM
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    logger.info("Bot is running! Press CTRL + C to stop it.")
    source_task = asyncio.create_task(source.connect())

    # Wait for either the listener to finish or shutdown signal
    done, pending = await asyncio.wait(
        [source_task, asyncio.create_task(shutdown_event.wait())],
        return_when=asyncio.FIRST_COMPLETED,
    )

    await source.stop()
    for task in pending:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    await sniper.shutdown()
    await close_clients()
    logger.info("Shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
