"""Async Solana JSON-RPC client.

Thin wrapper over httpx: every response is validated against the schemas in
src.rpc.models. Transport failures become ChannelUnavailable, RPC-level
errors become RpcError, malformed payloads become DecodeError.
"""

from __future__ import annotations

import base64
import itertools
from typing import Any, TypeVar

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError

from src.rpc.models import (
    AccountInfoResult,
    BalanceResult,
    BlockhashResult,
    BlockhashValue,
    KeyedAccount,
    RpcResponse,
    SignatureStatus,
    SignatureStatusesResult,
    TokenAccountsResult,
    TokenAmountResult,
    UiTokenAmount,
)
from src.trading.errors import ChannelUnavailable, DecodeError, InsufficientBalance, SubmitError

T = TypeVar("T", bound=BaseModel)

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

# sendTransaction errors that will never succeed on resubmit
_INSUFFICIENT_MARKERS = ("insufficient funds", "insufficient lamports")


class RpcError(SubmitError):
    def __init__(self, method: str, code: int, message: str) -> None:
        self.method = method
        self.code = code
        self.message = message
        super().__init__(f"{method} RPC error {code}: {message}")


class SolanaRpcClient:
    """JSON-RPC over HTTP against a single endpoint."""

    def __init__(
        self,
        rpc_url: str,
        *,
        commitment: str = "confirmed",
        timeout: float = 10.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        if not rpc_url:
            raise ValueError("RPC URL is empty")
        self._rpc_url = rpc_url
        self._commitment = commitment
        self._http = http or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    @property
    def commitment(self) -> str:
        return self._commitment

    async def call(self, method: str, params: list[Any]) -> Any:
        """Raw JSON-RPC call. Returns the ``result`` field."""
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = await self._http.post(self._rpc_url, json=payload)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise ChannelUnavailable(f"{method}: {type(e).__name__}: {e}") from e

        if resp.status_code == 429 or resp.status_code >= 500:
            raise ChannelUnavailable(f"{method}: HTTP {resp.status_code}")
        if resp.status_code != 200:
            raise RpcError(method, resp.status_code, f"HTTP {resp.status_code}")

        try:
            body = RpcResponse.model_validate(resp.json())
        except (ValidationError, ValueError) as e:
            raise DecodeError(f"{method}: malformed response: {e}") from e

        if body.error is not None:
            raise RpcError(method, body.error.code, body.error.message)
        return body.result

    async def _call_model(self, method: str, params: list[Any], model: type[T]) -> T:
        result = await self.call(method, params)
        try:
            return model.model_validate(result)
        except ValidationError as e:
            raise DecodeError(f"{method}: unexpected result shape: {e}") from e

    # ─── Reads ───────────────────────────────────────────────────────

    async def get_account_info(self, address: str) -> bytes | None:
        """Raw account data, or None if the account does not exist."""
        info = await self._call_model(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self._commitment}],
            AccountInfoResult,
        )
        if info.value is None:
            return None
        try:
            return base64.b64decode(info.value.data[0])
        except (IndexError, ValueError) as e:
            raise DecodeError(f"getAccountInfo {address[:12]}: bad data: {e}") from e

    async def get_balance(self, address: str) -> int:
        """Lamport balance."""
        result = await self._call_model(
            "getBalance", [address, {"commitment": self._commitment}], BalanceResult
        )
        return result.value

    async def get_token_account_balance(self, address: str) -> UiTokenAmount:
        result = await self._call_model(
            "getTokenAccountBalance",
            [address, {"commitment": self._commitment}],
            TokenAmountResult,
        )
        return result.value

    async def get_token_supply(self, mint: str) -> UiTokenAmount:
        result = await self._call_model(
            "getTokenSupply", [mint, {"commitment": self._commitment}], TokenAmountResult
        )
        return result.value

    async def get_token_accounts_by_owner(self, owner: str, mint: str) -> list[KeyedAccount]:
        result = await self._call_model(
            "getTokenAccountsByOwner",
            [owner, {"mint": mint}, {"encoding": "base64", "commitment": self._commitment}],
            TokenAccountsResult,
        )
        return result.value

    async def get_latest_blockhash(self) -> BlockhashValue:
        result = await self._call_model(
            "getLatestBlockhash", [{"commitment": self._commitment}], BlockhashResult
        )
        return result.value

    async def get_signature_statuses(self, signatures: list[str]) -> list[SignatureStatus | None]:
        result = await self._call_model(
            "getSignatureStatuses",
            [signatures, {"searchTransactionHistory": True}],
            SignatureStatusesResult,
        )
        return result.value

    # ─── Writes ──────────────────────────────────────────────────────

    async def send_transaction(self, tx_b64: str, *, max_retries: int | None = None) -> str:
        """Send a signed, base64-encoded transaction. Returns its signature."""
        options: dict[str, Any] = {
            "encoding": "base64",
            "skipPreflight": True,
            "preflightCommitment": self._commitment,
        }
        if max_retries is not None:
            options["maxRetries"] = max_retries
        try:
            result = await self.call("sendTransaction", [tx_b64, options])
        except RpcError as e:
            if any(marker in e.message.lower() for marker in _INSUFFICIENT_MARKERS):
                raise InsufficientBalance(e.message) from e
            raise

        if not isinstance(result, str) or not result:
            raise SubmitError(f"sendTransaction returned no signature: {result!r}")
        logger.debug(f"[RPC] TX sent: {result}")
        return result

    async def close(self) -> None:
        await self._http.aclose()
