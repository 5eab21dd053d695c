from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", frozen=True
    )

    # Solana RPC + WebSocket
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    rpc_ws_url: str = "wss://api.mainnet-beta.solana.com"
    commitment: Literal["processed", "confirmed", "finalized"] = "confirmed"

    # Wallet
    wallet_private_key: str = ""  # Base58 secret key, NEVER LOG THIS

    # Quote token (what we pay with)
    quote_mint: Literal["WSOL", "USDC"] = "WSOL"
    quote_amount: float = 0.001

    # Jupiter (swap instruction building)
    jupiter_api_key: str = ""
    jupiter_max_rps: float = 1.0

    # Transaction executor: "default" (RPC + compute budget), "warp", "jito"
    transaction_executor: Literal["default", "warp", "jito"] = "default"
    compute_unit_limit: int = 101337
    compute_unit_price: int = 421197  # micro-lamports
    custom_fee: float = 0.006  # SOL paid to warp / tipped to jito
    confirm_timeout_sec: float = 60.0

    # Bot
    one_token_at_a_time: bool = True

    # Buy
    auto_buy_delay_sec: float = 0.0
    max_buy_retries: int = 10
    buy_slippage: float = 20.0  # percent

    # Sell
    auto_sell: bool = True
    auto_sell_delay_sec: float = 0.0
    max_sell_retries: int = 10
    sell_retry_delay_sec: float = 0.5
    sell_slippage: float = 20.0  # percent
    take_profit: float = 40.0  # percent above entry
    stop_loss: float = 20.0  # percent below entry
    price_check_interval_sec: float = 2.0
    price_check_duration_sec: float = 600.0

    # Snipe list (bypasses filters when enabled)
    use_snipe_list: bool = False
    snipe_list_path: str = "snipe-list.txt"

    # Filters
    filter_check_interval_sec: float = 2.0
    filter_check_duration_sec: float = 60.0
    consecutive_filter_matches: int = 3
    check_if_mint_is_renounced: bool = True
    check_if_freezable: bool = False
    check_if_burned: bool = True
    check_if_mutable: bool = False
    min_pool_size: float = 5.0  # in quote token, 0 = no lower bound
    max_pool_size: float = 50.0  # in quote token, 0 = no upper bound

    # Channel circuit breaker (degrade to log-only when RPC is down)
    channel_failure_threshold: int = 3
    channel_cooldown_sec: int = 300

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False


settings = Settings()
