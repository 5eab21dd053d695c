"""Websocket notification schemas and the typed events built from them."""

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict

from src.models.pool import PoolRecord


class _WsModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class NotifiedAccount(_WsModel):
    data: list[str]
    owner: str
    lamports: int = 0


class KeyedNotification(_WsModel):
    pubkey: str
    account: NotifiedAccount


class NotificationContext(_WsModel):
    slot: int = 0


class NotificationResult(_WsModel):
    context: NotificationContext
    value: KeyedNotification


class NotificationParams(_WsModel):
    subscription: int
    result: NotificationResult


class ProgramNotification(_WsModel):
    """programSubscribe push message."""

    method: str
    params: NotificationParams


class SubscribeAck(_WsModel):
    id: int
    result: Any = None


@dataclass(frozen=True)
class PoolDiscovered:
    pool: PoolRecord
    slot: int = 0


@dataclass(frozen=True)
class WalletBalanceChanged:
    mint: str
    amount: int
    account: str
    slot: int = 0
