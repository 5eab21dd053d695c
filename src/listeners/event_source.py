"""Chain event source over Solana websocket programSubscribe.

Two kinds of subscription on one connection:
  pool    Raydium AMM v4 accounts that are initialised, on the OpenBook
          market program and paired with our quote token (either side)
  wallet  SPL token accounts owned by our wallet

Notifications are decoded and delivered, in arrival order, to callbacks
registered once. A malformed account is logged and dropped. After a dropped
connection the client reconnects with exponential backoff, re-subscribes,
and fires on_reconnect.
"""

import asyncio
import base64
import json
import struct
from collections.abc import Awaitable, Callable
from enum import Enum

import base58
import websockets
from loguru import logger
from pydantic import ValidationError

from src.listeners.decoder import (
    POOL_BASE_MINT_OFFSET,
    POOL_MARKET_PROGRAM_OFFSET,
    POOL_QUOTE_MINT_OFFSET,
    POOL_STATE_SIZE,
    POOL_STATUS_OFFSET,
    TOKEN_ACCOUNT_OWNER_OFFSET,
    TOKEN_ACCOUNT_SIZE,
    decode_pool_state,
    decode_token_account,
)
from src.listeners.models import (
    PoolDiscovered,
    ProgramNotification,
    SubscribeAck,
    WalletBalanceChanged,
)
from src.trading.errors import DecodeError

RAYDIUM_AMM_V4_PROGRAM_ID = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"
OPENBOOK_PROGRAM_ID = "srmqPvymJeFKQ4zGQed1GFppgkRHB9kZLPmgs2MA3y"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

POOL_STATUS_INITIALIZED = 6


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ACTIVE = "active"


class SubscriptionKind(Enum):
    POOL = "pool"
    WALLET = "wallet"


def _pool_filters(quote_mint: str, mint_offset: int) -> list[dict]:
    status = base58.b58encode(struct.pack("<Q", POOL_STATUS_INITIALIZED)).decode("ascii")
    return [
        {"dataSize": POOL_STATE_SIZE},
        {"memcmp": {"offset": mint_offset, "bytes": quote_mint}},
        {"memcmp": {"offset": POOL_MARKET_PROGRAM_OFFSET, "bytes": OPENBOOK_PROGRAM_ID}},
        {"memcmp": {"offset": POOL_STATUS_OFFSET, "bytes": status}},
    ]


def _wallet_filters(owner: str) -> list[dict]:
    return [
        {"dataSize": TOKEN_ACCOUNT_SIZE},
        {"memcmp": {"offset": TOKEN_ACCOUNT_OWNER_OFFSET, "bytes": owner}},
    ]


class ChainEventSource:
    """Websocket listener for new pools and wallet token-account changes."""

    def __init__(
        self,
        ws_url: str,
        *,
        quote_mint: str,
        wallet_owner: str,
        commitment: str = "confirmed",
    ) -> None:
        self._ws_url = ws_url
        self._quote_mint = quote_mint
        self._wallet_owner = wallet_owner
        self._commitment = commitment
        self._ws: websockets.ClientConnection | None = None
        self._state = ConnectionState.DISCONNECTED
        self._running = False
        self._reconnect_delay = 1.0
        self._max_reconnect_delay = 60.0
        self._message_count = 0
        self._connections = 0

        # request id → kind, then subscription id → kind once acknowledged
        self._requests: dict[int, SubscriptionKind] = {}
        self._subscriptions: dict[int, SubscriptionKind] = {}

        # Typed callbacks
        self.on_pool_discovered: Callable[[PoolDiscovered], Awaitable[None]] | None = None
        self.on_wallet_changed: Callable[[WalletBalanceChanged], Awaitable[None]] | None = None
        self.on_reconnect: Callable[[], Awaitable[None]] | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def message_count(self) -> int:
        return self._message_count

    async def connect(self) -> None:
        """Connect and listen. Auto-reconnects on disconnect."""
        self._running = True
        while self._running:
            try:
                self._state = ConnectionState.CONNECTING
                async with websockets.connect(
                    self._ws_url,
                    ping_interval=30,
                    ping_timeout=10,
                    close_timeout=5,
                ) as ws:
                    self._ws = ws
                    self._state = ConnectionState.CONNECTED
                    self._reconnect_delay = 1.0
                    await self._subscribe()
                    self._state = ConnectionState.ACTIVE
                    self._connections += 1
                    logger.info("[WS] Connected, programSubscribe active")
                    if self._connections > 1 and self.on_reconnect:
                        await self._safe_callback(self.on_reconnect)
                    await self._listen()
            except (
                websockets.ConnectionClosed,
                websockets.InvalidHandshake,
                ConnectionError,
                OSError,
                TimeoutError,
            ) as e:
                logger.warning(f"[WS] Disconnected: {e}")
            finally:
                self._state = ConnectionState.DISCONNECTED
                self._ws = None
                self._subscriptions.clear()

            if self._running:
                logger.info(f"[WS] Reconnecting in {self._reconnect_delay:.0f}s...")
                await asyncio.sleep(self._reconnect_delay)
                self._reconnect_delay = min(self._reconnect_delay * 2, self._max_reconnect_delay)

    def subscription_requests(self) -> list[dict]:
        """programSubscribe payloads, keyed by request id."""
        config = {"encoding": "base64", "commitment": self._commitment}
        requests = [
            (SubscriptionKind.POOL, RAYDIUM_AMM_V4_PROGRAM_ID,
             _pool_filters(self._quote_mint, POOL_QUOTE_MINT_OFFSET)),
            (SubscriptionKind.POOL, RAYDIUM_AMM_V4_PROGRAM_ID,
             _pool_filters(self._quote_mint, POOL_BASE_MINT_OFFSET)),
            (SubscriptionKind.WALLET, TOKEN_PROGRAM_ID, _wallet_filters(self._wallet_owner)),
        ]
        self._requests.clear()
        payloads = []
        for request_id, (kind, program, filters) in enumerate(requests, start=1):
            self._requests[request_id] = kind
            payloads.append({
                "jsonrpc": "2.0",
                "id": request_id,
                "method": "programSubscribe",
                "params": [program, {**config, "filters": filters}],
            })
        return payloads

    async def _subscribe(self) -> None:
        if not self._ws:
            return
        for payload in self.subscription_requests():
            await self._ws.send(json.dumps(payload))

    async def _listen(self) -> None:
        if not self._ws:
            return
        async for message in self._ws:
            self._message_count += 1
            await self.handle_message(message)

    async def handle_message(self, message: str | bytes) -> None:
        """Route one raw websocket frame."""
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.debug("[WS] Non-JSON frame dropped")
            return
        if not isinstance(data, dict):
            return

        if "id" in data:
            self._handle_ack(data)
            return
        if data.get("method") != "programNotification":
            return

        try:
            notification = ProgramNotification.model_validate(data)
        except ValidationError as e:
            logger.warning(f"[WS] Malformed notification dropped: {e.error_count()} errors")
            return

        kind = self._subscriptions.get(notification.params.subscription)
        value = notification.params.result.value
        slot = notification.params.result.context.slot
        try:
            raw = base64.b64decode(value.account.data[0])
            if kind is SubscriptionKind.POOL:
                pool = decode_pool_state(value.pubkey, raw)
                if self.on_pool_discovered:
                    await self._safe_callback(self.on_pool_discovered, PoolDiscovered(pool, slot))
            elif kind is SubscriptionKind.WALLET:
                account = decode_token_account(value.pubkey, raw)
                event = WalletBalanceChanged(
                    mint=account.mint, amount=account.amount, account=account.address, slot=slot
                )
                if self.on_wallet_changed:
                    await self._safe_callback(self.on_wallet_changed, event)
            else:
                logger.debug(f"[WS] Notification for unknown subscription {notification.params.subscription}")
        except (DecodeError, IndexError, ValueError) as e:
            logger.warning(f"[WS] Undecodable account {value.pubkey[:12]} dropped: {e}")

    def _handle_ack(self, data: dict) -> None:
        try:
            ack = SubscribeAck.model_validate(data)
        except ValidationError:
            return
        kind = self._requests.get(ack.id)
        if kind is None:
            return
        if isinstance(ack.result, int):
            self._subscriptions[ack.result] = kind
            logger.debug(f"[WS] {kind.value} subscription id={ack.result}")
        else:
            logger.error(f"[WS] {kind.value} subscribe rejected: {data.get('error')}")

    async def _safe_callback(self, callback: Callable[..., Awaitable[None]], *args: object) -> None:
        """Run a callback; its failures are logged, never break the listener."""
        try:
            await asyncio.wait_for(callback(*args), timeout=30.0)
        except TimeoutError:
            logger.error(f"[WS] Callback {getattr(callback, '__name__', callback)} timed out")
        except Exception as e:
            logger.exception(f"[WS] Callback error: {e}")

    async def stop(self) -> None:
        self._running = False
        if self._ws:
            await self._ws.close()
            self._ws = None
        self._state = ConnectionState.DISCONNECTED
