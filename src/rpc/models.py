"""Schemas for Solana JSON-RPC responses.

Every RPC payload is validated here before the core sees it; a payload that
does not match surfaces as DecodeError instead of a KeyError deep in the
trading logic.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _RpcModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class RpcErrorBody(_RpcModel):
    code: int = 0
    message: str = ""
    data: Any = None


class RpcResponse(_RpcModel):
    jsonrpc: str = "2.0"
    id: int | str | None = None
    result: Any = None
    error: RpcErrorBody | None = None


class RpcContext(_RpcModel):
    slot: int


class AccountValue(_RpcModel):
    data: list[str]
    owner: str
    lamports: int
    executable: bool = False


class AccountInfoResult(_RpcModel):
    context: RpcContext
    value: AccountValue | None = None


class UiTokenAmount(_RpcModel):
    amount: str
    decimals: int
    ui_amount_string: str | None = Field(default=None, alias="uiAmountString")

    @property
    def raw(self) -> int:
        return int(self.amount)


class TokenAmountResult(_RpcModel):
    context: RpcContext
    value: UiTokenAmount


class BalanceResult(_RpcModel):
    context: RpcContext
    value: int


class BlockhashValue(_RpcModel):
    blockhash: str
    last_valid_block_height: int = Field(alias="lastValidBlockHeight")


class BlockhashResult(_RpcModel):
    context: RpcContext
    value: BlockhashValue


class SignatureStatus(_RpcModel):
    slot: int
    confirmations: int | None = None
    err: Any = None
    confirmation_status: str | None = Field(default=None, alias="confirmationStatus")


class SignatureStatusesResult(_RpcModel):
    context: RpcContext
    value: list[SignatureStatus | None]


class KeyedAccount(_RpcModel):
    pubkey: str
    account: AccountValue


class TokenAccountsResult(_RpcModel):
    context: RpcContext
    value: list[KeyedAccount]


# ─── Relay responses ─────────────────────────────────────────────────


class WarpExecuteResponse(_RpcModel):
    confirmed: bool = False
    signature: str | None = None
    error: str | None = None


class BundleStatus(_RpcModel):
    bundle_id: str
    transactions: list[str] = Field(default_factory=list)
    slot: int | None = None
    confirmation_status: str | None = None
    err: Any = None

    @property
    def succeeded(self) -> bool:
        return self.err is None or self.err == {"Ok": None}


class BundleStatusesResult(_RpcModel):
    context: RpcContext
    value: list[BundleStatus | None] | None = None
