"""Tests for ChainEventSource message routing.

No websocket is opened: frames are fed straight into handle_message().
"""

from __future__ import annotations

import base64
import json
import struct
from unittest.mock import AsyncMock

import base58
import pytest
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.listeners.decoder import (
    POOL_BASE_MINT_OFFSET,
    POOL_QUOTE_MINT_OFFSET,
    POOL_STATE_SIZE,
)
from src.listeners.event_source import (
    OPENBOOK_PROGRAM_ID,
    RAYDIUM_AMM_V4_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    ChainEventSource,
)
from src.listeners.models import PoolDiscovered, WalletBalanceChanged
from src.trading.wallet import WSOL_MINT

OWNER = str(Pubkey.new_unique())


# ── Helpers ────────────────────────────────────────────────────────────


def _pool_data(base_mint: Pubkey) -> str:
    raw = bytearray(POOL_STATE_SIZE)
    struct.pack_into("<Q", raw, 0, 6)
    for offset in range(336, 720, 32):
        raw[offset : offset + 32] = bytes(Pubkey.new_unique())
    raw[POOL_BASE_MINT_OFFSET : POOL_BASE_MINT_OFFSET + 32] = bytes(base_mint)
    raw[POOL_QUOTE_MINT_OFFSET : POOL_QUOTE_MINT_OFFSET + 32] = bytes(Pubkey.from_string(WSOL_MINT))
    return base64.b64encode(bytes(raw)).decode()


def _token_account_data(mint: Pubkey, amount: int) -> str:
    raw = bytearray(165)
    raw[0:32] = bytes(mint)
    raw[32:64] = bytes(Pubkey.from_string(OWNER))
    struct.pack_into("<Q", raw, 64, amount)
    return base64.b64encode(bytes(raw)).decode()


def _notification(subscription: int, pubkey: str, data: str, slot: int = 99) -> str:
    return json.dumps({
        "jsonrpc": "2.0",
        "method": "programNotification",
        "params": {
            "subscription": subscription,
            "result": {
                "context": {"slot": slot},
                "value": {
                    "pubkey": pubkey,
                    "account": {"data": [data, "base64"], "owner": "x", "lamports": 1},
                },
            },
        },
    })


@pytest.fixture
async def source() -> ChainEventSource:
    src = ChainEventSource("ws://test", quote_mint=WSOL_MINT, wallet_owner=OWNER)
    src.on_pool_discovered = AsyncMock()
    src.on_wallet_changed = AsyncMock()
    # request ids 1-2 are pool subscriptions, 3 is the wallet
    src.subscription_requests()
    for request_id, sub_id in ((1, 100), (2, 101), (3, 200)):
        await src.handle_message(json.dumps({"jsonrpc": "2.0", "id": request_id, "result": sub_id}))
    return src


# ── Subscriptions ──────────────────────────────────────────────────────


class TestSubscriptionRequests:
    def test_pool_and_wallet_filters(self):
        src = ChainEventSource("ws://test", quote_mint=WSOL_MINT, wallet_owner=OWNER)
        quote_side, base_side, wallet = src.subscription_requests()

        assert quote_side["params"][0] == RAYDIUM_AMM_V4_PROGRAM_ID
        filters = quote_side["params"][1]["filters"]
        assert {"dataSize": 752} in filters
        assert {"memcmp": {"offset": 432, "bytes": WSOL_MINT}} in filters
        assert {"memcmp": {"offset": 560, "bytes": OPENBOOK_PROGRAM_ID}} in filters
        status = next(f for f in filters if "memcmp" in f and f["memcmp"]["offset"] == 0)
        assert base58.b58decode(status["memcmp"]["bytes"]) == struct.pack("<Q", 6)

        assert {"memcmp": {"offset": 400, "bytes": WSOL_MINT}} in base_side["params"][1]["filters"]

        assert wallet["params"][0] == TOKEN_PROGRAM_ID
        assert wallet["params"][1]["filters"] == [
            {"dataSize": 165},
            {"memcmp": {"offset": 32, "bytes": OWNER}},
        ]
        assert [r["id"] for r in (quote_side, base_side, wallet)] == [1, 2, 3]


# ── Routing ────────────────────────────────────────────────────────────


class TestHandleMessage:
    async def test_pool_notification(self, source):
        mint = Pubkey.new_unique()
        pool_id = str(Pubkey.new_unique())
        await source.handle_message(_notification(100, pool_id, _pool_data(mint)))

        source.on_pool_discovered.assert_awaited_once()
        event = source.on_pool_discovered.await_args.args[0]
        assert isinstance(event, PoolDiscovered)
        assert event.pool.pool_id == pool_id
        assert event.pool.base_mint == str(mint)
        assert event.slot == 99

    async def test_wallet_notification(self, source):
        mint = Pubkey.new_unique()
        account = str(Pubkey.new_unique())
        await source.handle_message(_notification(200, account, _token_account_data(mint, 0)))

        event = source.on_wallet_changed.await_args.args[0]
        assert event == WalletBalanceChanged(mint=str(mint), amount=0, account=account, slot=99)
        source.on_pool_discovered.assert_not_awaited()

    async def test_malformed_pool_dropped(self, source):
        bad = base64.b64encode(b"\x00" * 100).decode()
        await source.handle_message(_notification(100, str(Pubkey.new_unique()), bad))
        source.on_pool_discovered.assert_not_awaited()

    async def test_unknown_subscription_ignored(self, source):
        await source.handle_message(_notification(999, "x", _pool_data(Pubkey.new_unique())))
        source.on_pool_discovered.assert_not_awaited()
        source.on_wallet_changed.assert_not_awaited()

    @pytest.mark.parametrize(
        "frame",
        ["not json", "[]", json.dumps({"method": "programNotification", "params": {}})],
    )
    async def test_garbage_frames_ignored(self, source, frame):
        await source.handle_message(frame)
        source.on_pool_discovered.assert_not_awaited()

    async def test_callback_error_does_not_propagate(self, source):
        source.on_pool_discovered.side_effect = RuntimeError("boom")
        await source.handle_message(_notification(100, "Pool", _pool_data(Pubkey.new_unique())))
        source.on_pool_discovered.assert_awaited_once()
