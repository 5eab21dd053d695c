"""Transaction executors — one contract, three submission channels.

  default  sign + sendTransaction against our RPC, compute budget attached,
           poll getSignatureStatuses with periodic resend
  warp     priority relay: swap tx + flat fee transfer posted to the relay,
           which answers with a confirmation flag
  jito     bundle relay: tip transfer + swap tx as one atomic bundle to every
           block engine region, landing checked with getBundleStatuses

The variant is chosen once by create_executor(); callers only ever use
submit / confirm / execute. Every failure leaves here as an ExecutionError
subclass (SubmitError, ChannelUnavailable, InsufficientBalance, ...).
"""

from __future__ import annotations

import asyncio
import base64
import random
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, ClassVar

import base58
import httpx
from loguru import logger
from pydantic import ValidationError
from solders.address_lookup_table_account import AddressLookupTableAccount  # type: ignore[import-untyped]
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price  # type: ignore[import-untyped]
from solders.hash import Hash  # type: ignore[import-untyped]
from solders.instruction import Instruction  # type: ignore[import-untyped]
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.message import MessageV0  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]
from solders.system_program import TransferParams, transfer  # type: ignore[import-untyped]
from solders.transaction import VersionedTransaction  # type: ignore[import-untyped]

from config.settings import Settings
from src.rpc.client import SolanaRpcClient
from src.rpc.models import BlockhashValue, BundleStatusesResult, WarpExecuteResponse
from src.trading.errors import (
    ChannelUnavailable,
    ConfirmTimeout,
    DecodeError,
    ExecutionError,
    SubmitError,
    TransactionRejected,
)

LAMPORTS_PER_SOL = 1_000_000_000

# Confirmation polling
CONFIRM_POLL_INTERVAL = 2.0  # seconds
RESEND_INTERVAL = 4.0  # seconds

WARP_EXECUTE_URL = "https://tx.warp.id/transaction/execute"
WARP_FEE_WALLET = "WARPzUMPnycu9eeCZ95rcAUxorqpBqHndfV3ZP5FSyS"

JITO_BLOCK_ENGINES = [
    "https://mainnet.block-engine.jito.wtf/api/v1/bundles",
    "https://amsterdam.mainnet.block-engine.jito.wtf/api/v1/bundles",
    "https://frankfurt.mainnet.block-engine.jito.wtf/api/v1/bundles",
    "https://ny.mainnet.block-engine.jito.wtf/api/v1/bundles",
    "https://tokyo.mainnet.block-engine.jito.wtf/api/v1/bundles",
]

# 8 static Jito tip accounts
JITO_TIP_ACCOUNTS = [
    "96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5",
    "HFqU5x63VTqvQss8hp11i4wVV8bD44PvwucfZ2bU7gRe",
    "Cw8CFyM9FkoMi7K7Crf6HNQqf4uEMzpKw6QNghXLvLkY",
    "ADaUMid9yfUytqMBgopwjb2DTLSokTSzL1zt6iGPaS49",
    "DfXygSm4jCyNCybVYYK6DwvWqjKee8pbDmJGcLWNDXjh",
    "ADuUkR4vqLUMWXxW9gh6D6L8pMSawimctcNZ5pGwDcEt",
    "DttWaMuVvTiduZRnguLF7jNxTgiMBZ1hyAumKUiL2KRL",
    "3AVi9Tg9Uo68tJfuvoKvqKNWKkC5wPdSSdeBnizKZ6jT",
]

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


class ExecutorKind(StrEnum):
    DEFAULT = "default"
    PRIORITY_RELAY = "warp"
    BUNDLE_RELAY = "jito"


class ExecutionStatus(StrEnum):
    CONFIRMED = "confirmed"
    TIMED_OUT = "timed_out"
    REJECTED = "rejected"


@dataclass(frozen=True)
class FeeConfig:
    compute_unit_limit: int
    compute_unit_price: int  # micro-lamports
    relay_fee_lamports: int

    @classmethod
    def from_settings(cls, settings: Settings) -> FeeConfig:
        return cls(
            compute_unit_limit=settings.compute_unit_limit,
            compute_unit_price=settings.compute_unit_price,
            relay_fee_lamports=int(settings.custom_fee * LAMPORTS_PER_SOL),
        )


@dataclass(frozen=True)
class Submission:
    """What submit() hands to confirm()."""

    signature: str
    tx_b64: str
    bundle_id: str | None = None
    relay_url: str | None = None
    relay_confirmed: bool = False


@dataclass(frozen=True)
class ExecutionResult:
    signature: str
    status: ExecutionStatus
    slot: int | None = None
    error: str | None = None
    bundle_id: str | None = None

    @property
    def confirmed(self) -> bool:
        return self.status is ExecutionStatus.CONFIRMED


def _b58(tx: VersionedTransaction) -> str:
    return base58.b58encode(bytes(tx)).decode("ascii")


def _b64(tx: VersionedTransaction) -> str:
    return base64.b64encode(bytes(tx)).decode("ascii")


class TransactionExecutor(ABC):
    kind: ClassVar[ExecutorKind]

    def __init__(
        self,
        rpc: SolanaRpcClient,
        *,
        poll_interval: float = CONFIRM_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rpc = rpc
        self._poll_interval = poll_interval
        self._clock = clock

    @abstractmethod
    async def submit(
        self,
        instructions: Sequence[Instruction],
        signer: Keypair,
        fee: FeeConfig,
        lookup_tables: Sequence[AddressLookupTableAccount] = (),
    ) -> Submission: ...

    @abstractmethod
    async def confirm(self, submission: Submission, timeout: float) -> ExecutionResult: ...

    async def execute(
        self,
        instructions: Sequence[Instruction],
        signer: Keypair,
        fee: FeeConfig,
        lookup_tables: Sequence[AddressLookupTableAccount] = (),
        *,
        timeout: float,
    ) -> ExecutionResult:
        """submit + confirm. Anything short of CONFIRMED is raised."""
        submission = await self.submit(instructions, signer, fee, lookup_tables)
        result = await self.confirm(submission, timeout)
        if result.status is ExecutionStatus.TIMED_OUT:
            raise ConfirmTimeout(f"{result.signature[:16]} not confirmed within {timeout:.0f}s")
        if result.status is ExecutionStatus.REJECTED:
            raise TransactionRejected(f"{result.signature[:16]} failed on-chain: {result.error}")
        return result

    async def _latest_blockhash(self) -> BlockhashValue:
        try:
            return await self._rpc.get_latest_blockhash()
        except DecodeError as e:
            raise SubmitError(f"getLatestBlockhash: {e}") from e

    @staticmethod
    def _compile(
        instructions: Sequence[Instruction],
        signer: Keypair,
        blockhash: BlockhashValue,
        lookup_tables: Sequence[AddressLookupTableAccount] = (),
    ) -> VersionedTransaction:
        msg = MessageV0.try_compile(
            payer=signer.pubkey(),
            instructions=list(instructions),
            address_lookup_table_accounts=list(lookup_tables),
            recent_blockhash=Hash.from_string(blockhash.blockhash),
        )
        return VersionedTransaction(msg, [signer])

    @classmethod
    def _transfer_tx(
        cls, signer: Keypair, to: str, lamports: int, blockhash: BlockhashValue
    ) -> VersionedTransaction:
        ix = transfer(
            TransferParams(
                from_pubkey=signer.pubkey(),
                to_pubkey=Pubkey.from_string(to),
                lamports=lamports,
            )
        )
        return cls._compile([ix], signer, blockhash)

    def _elapsed(self, started: float, ticked: float) -> float:
        """Time spent polling: one interval per tick, or wall time if the calls were slower."""
        return max(ticked + self._poll_interval, self._clock() - started)

    async def _poll_signature(
        self,
        signature: str,
        timeout: float,
        resend_b64: str | None = None,
    ) -> ExecutionResult:
        """Poll getSignatureStatuses until the configured commitment is reached.

        When ``resend_b64`` is given the same signed TX is re-sent every few
        seconds; duplicate sends share a signature, so they are idempotent.
        """
        wanted = _COMMITMENT_RANK.get(self._rpc.commitment, 1)
        started = self._clock()
        elapsed = 0.0
        last_resend = 0.0
        while elapsed < timeout:
            try:
                statuses = await self._rpc.get_signature_statuses([signature])
                status = statuses[0] if statuses else None
                if status is not None:
                    if status.err:
                        logger.warning(f"[EXEC] TX {signature[:16]} error on-chain: {status.err}")
                        return ExecutionResult(
                            signature, ExecutionStatus.REJECTED, slot=status.slot, error=str(status.err)
                        )
                    rank = _COMMITMENT_RANK.get(status.confirmation_status or "", -1)
                    if rank >= wanted:
                        logger.debug(
                            f"[EXEC] TX {signature[:16]} {status.confirmation_status} in {elapsed:.1f}s"
                        )
                        return ExecutionResult(signature, ExecutionStatus.CONFIRMED, slot=status.slot)
            except (ExecutionError, DecodeError) as e:
                logger.debug(f"[EXEC] status poll for {signature[:16]} failed: {e}")

            if resend_b64 and elapsed - last_resend >= RESEND_INTERVAL:
                try:
                    await self._rpc.send_transaction(resend_b64, max_retries=0)
                    last_resend = elapsed
                except ExecutionError as e:
                    logger.debug(f"[EXEC] resend of {signature[:16]} failed: {e}")

            await asyncio.sleep(self._poll_interval)
            elapsed = self._elapsed(started, elapsed)

        logger.warning(f"[EXEC] TX {signature[:16]} confirmation timeout after {timeout:.0f}s")
        return ExecutionResult(signature, ExecutionStatus.TIMED_OUT)

    async def close(self) -> None:
        """Release HTTP resources owned by the executor (the RPC client is shared)."""


class DefaultExecutor(TransactionExecutor):
    """Direct RPC submission with an explicit compute-unit limit and price."""

    kind = ExecutorKind.DEFAULT

    async def submit(
        self,
        instructions: Sequence[Instruction],
        signer: Keypair,
        fee: FeeConfig,
        lookup_tables: Sequence[AddressLookupTableAccount] = (),
    ) -> Submission:
        budget = [
            set_compute_unit_limit(fee.compute_unit_limit),
            set_compute_unit_price(fee.compute_unit_price),
        ]
        blockhash = await self._latest_blockhash()
        tx = self._compile([*budget, *instructions], signer, blockhash, lookup_tables)
        tx_b64 = _b64(tx)
        signature = await self._rpc.send_transaction(tx_b64)
        return Submission(signature=signature, tx_b64=tx_b64)

    async def confirm(self, submission: Submission, timeout: float) -> ExecutionResult:
        return await self._poll_signature(submission.signature, timeout, resend_b64=submission.tx_b64)


class _RelayExecutor(TransactionExecutor):
    def __init__(
        self,
        rpc: SolanaRpcClient,
        *,
        http: httpx.AsyncClient | None = None,
        poll_interval: float = CONFIRM_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(rpc, poll_interval=poll_interval, clock=clock)
        self._http = http or httpx.AsyncClient(timeout=15.0)

    async def _post(self, url: str, payload: dict[str, Any]) -> Any:
        try:
            resp = await self._http.post(url, json=payload)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise ChannelUnavailable(f"{url}: {type(e).__name__}: {e}") from e
        if resp.status_code == 429 or resp.status_code >= 500:
            raise ChannelUnavailable(f"{url}: HTTP {resp.status_code}")
        if resp.status_code != 200:
            raise SubmitError(f"{url}: HTTP {resp.status_code}: {resp.text[:200]}")
        try:
            return resp.json()
        except ValueError as e:
            raise SubmitError(f"{url}: non-JSON response") from e

    async def close(self) -> None:
        await self._http.aclose()


class PriorityRelayExecutor(_RelayExecutor):
    """Warp relay: flat fee transfer rides along with the swap transaction."""

    kind = ExecutorKind.PRIORITY_RELAY

    def __init__(
        self,
        rpc: SolanaRpcClient,
        *,
        http: httpx.AsyncClient | None = None,
        relay_url: str = WARP_EXECUTE_URL,
        poll_interval: float = CONFIRM_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(rpc, http=http, poll_interval=poll_interval, clock=clock)
        self._relay_url = relay_url

    async def submit(
        self,
        instructions: Sequence[Instruction],
        signer: Keypair,
        fee: FeeConfig,
        lookup_tables: Sequence[AddressLookupTableAccount] = (),
    ) -> Submission:
        blockhash = await self._latest_blockhash()
        tx = self._compile(instructions, signer, blockhash, lookup_tables)
        fee_tx = self._transfer_tx(signer, WARP_FEE_WALLET, fee.relay_fee_lamports, blockhash)
        payload = {
            "transactions": [_b58(fee_tx), _b58(tx)],
            "latestBlockhash": {
                "blockhash": blockhash.blockhash,
                "lastValidBlockHeight": blockhash.last_valid_block_height,
            },
        }
        data = await self._post(self._relay_url, payload)
        try:
            body = WarpExecuteResponse.model_validate(data)
        except ValidationError as e:
            raise SubmitError(f"warp: unexpected response: {e}") from e

        if body.error and not body.confirmed:
            raise SubmitError(f"warp: {body.error}")

        signature = body.signature or str(tx.signatures[0])
        logger.debug(f"[EXEC] warp accepted {signature[:16]} confirmed={body.confirmed}")
        return Submission(signature=signature, tx_b64=_b64(tx), relay_confirmed=body.confirmed)

    async def confirm(self, submission: Submission, timeout: float) -> ExecutionResult:
        if submission.relay_confirmed:
            return ExecutionResult(submission.signature, ExecutionStatus.CONFIRMED)
        return await self._poll_signature(submission.signature, timeout)


class BundleRelayExecutor(_RelayExecutor):
    """Jito bundle: tip transfer + swap land together or not at all."""

    kind = ExecutorKind.BUNDLE_RELAY

    def __init__(
        self,
        rpc: SolanaRpcClient,
        *,
        http: httpx.AsyncClient | None = None,
        block_engines: Sequence[str] = tuple(JITO_BLOCK_ENGINES),
        poll_interval: float = CONFIRM_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(rpc, http=http, poll_interval=poll_interval, clock=clock)
        self._block_engines = list(block_engines)

    async def submit(
        self,
        instructions: Sequence[Instruction],
        signer: Keypair,
        fee: FeeConfig,
        lookup_tables: Sequence[AddressLookupTableAccount] = (),
    ) -> Submission:
        blockhash = await self._latest_blockhash()
        tx = self._compile(instructions, signer, blockhash, lookup_tables)
        tip_account = random.choice(JITO_TIP_ACCOUNTS)
        tip_tx = self._transfer_tx(signer, tip_account, fee.relay_fee_lamports, blockhash)
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "sendBundle",
            "params": [[_b58(tip_tx), _b58(tx)]],
        }

        results = await asyncio.gather(
            *(self._post(url, payload) for url in self._block_engines),
            return_exceptions=True,
        )

        errors: list[BaseException] = []
        for url, result in zip(self._block_engines, results):
            if isinstance(result, BaseException):
                if not isinstance(result, ExecutionError):
                    raise result
                errors.append(result)
                continue
            bundle_id = result.get("result") if isinstance(result, dict) else None
            if isinstance(bundle_id, str) and bundle_id:
                logger.debug(f"[EXEC] jito bundle {bundle_id[:16]} accepted by {url}")
                return Submission(
                    signature=str(tx.signatures[0]),
                    tx_b64=_b64(tx),
                    bundle_id=bundle_id,
                    relay_url=url,
                )
            errors.append(SubmitError(f"{url}: {result.get('error') if isinstance(result, dict) else result}"))

        if errors and all(isinstance(e, ChannelUnavailable) for e in errors):
            raise ChannelUnavailable(f"jito: all block engines unreachable ({errors[0]})")
        raise SubmitError(f"jito: bundle rejected by all block engines ({'; '.join(map(str, errors))})")

    async def confirm(self, submission: Submission, timeout: float) -> ExecutionResult:
        """Bundle-level landing: poll getBundleStatuses on the engine that took it."""
        if submission.bundle_id is None or submission.relay_url is None:
            raise SubmitError("jito submission without bundle id")

        wanted = _COMMITMENT_RANK.get(self._rpc.commitment, 1)
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getBundleStatuses",
            "params": [[submission.bundle_id]],
        }
        started = self._clock()
        elapsed = 0.0
        while elapsed < timeout:
            try:
                data = await self._post(submission.relay_url, payload)
                statuses = BundleStatusesResult.model_validate(data.get("result"))
                status = statuses.value[0] if statuses.value else None
                if status is not None:
                    if not status.succeeded:
                        return ExecutionResult(
                            submission.signature,
                            ExecutionStatus.REJECTED,
                            slot=status.slot,
                            error=str(status.err),
                            bundle_id=submission.bundle_id,
                        )
                    if _COMMITMENT_RANK.get(status.confirmation_status or "", -1) >= wanted:
                        return ExecutionResult(
                            submission.signature,
                            ExecutionStatus.CONFIRMED,
                            slot=status.slot,
                            bundle_id=submission.bundle_id,
                        )
            except (ExecutionError, ValidationError, AttributeError) as e:
                logger.debug(f"[EXEC] bundle status poll {submission.bundle_id[:16]} failed: {e}")

            await asyncio.sleep(self._poll_interval)
            elapsed = self._elapsed(started, elapsed)

        logger.warning(f"[EXEC] bundle {submission.bundle_id[:16]} not landed after {timeout:.0f}s")
        return ExecutionResult(
            submission.signature, ExecutionStatus.TIMED_OUT, bundle_id=submission.bundle_id
        )


def create_executor(settings: Settings, rpc: SolanaRpcClient) -> TransactionExecutor:
    """Pick the executor variant once, at startup."""
    kind = ExecutorKind(settings.transaction_executor)
    if kind is ExecutorKind.PRIORITY_RELAY:
        return PriorityRelayExecutor(rpc)
    if kind is ExecutorKind.BUNDLE_RELAY:
        return BundleRelayExecutor(rpc)
    return DefaultExecutor(rpc)
