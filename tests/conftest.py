"""Shared test fixtures."""

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.models.pool import PoolRecord
from src.rpc.client import SolanaRpcClient
from src.trading.wallet import WSOL_MINT


def _address() -> str:
    return str(Pubkey.new_unique())


@pytest.fixture
def make_pool() -> Callable[..., PoolRecord]:
    """Factory for WSOL-quoted pools with fresh addresses."""

    def _make(**overrides: Any) -> PoolRecord:
        fields: dict[str, Any] = {
            "pool_id": _address(),
            "base_mint": _address(),
            "quote_mint": WSOL_MINT,
            "base_vault": _address(),
            "quote_vault": _address(),
            "lp_mint": _address(),
            "market_id": _address(),
            "base_decimals": 6,
            "quote_decimals": 9,
            "pool_open_time": 2_000_000_000,
        }
        fields.update(overrides)
        return PoolRecord(**fields)

    return _make


@pytest.fixture
def pool(make_pool: Callable[..., PoolRecord]) -> PoolRecord:
    return make_pool()


@pytest.fixture
def mock_rpc() -> Callable[[Callable[[str, list], Any]], SolanaRpcClient]:
    """SolanaRpcClient backed by httpx.MockTransport.

    The handler gets (method, params) and returns either a JSON body dict or
    an httpx.Response.
    """

    def _make(handler: Callable[[str, list], Any]) -> SolanaRpcClient:
        def transport(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            out = handler(body["method"], body.get("params", []))
            if isinstance(out, httpx.Response):
                return out
            return httpx.Response(200, json=out)

        http = httpx.AsyncClient(transport=httpx.MockTransport(transport))
        return SolanaRpcClient("http://rpc.test", http=http)

    return _make
