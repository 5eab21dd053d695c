"""Swap instruction building via Jupiter.

Pipeline per swap:
  1. GET /swap/v1/quote — direct Raydium route for the pool's pair
  2. POST /swap/v1/swap-instructions — setup / swap / cleanup instructions
  3. fetch address lookup tables referenced by the route

Compute-budget instructions from Jupiter are dropped: fees belong to the
executor. The same SwapPlan is resubmitted unchanged on every retry, only
the blockhash is refreshed by the executor.
"""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass, field
from decimal import Decimal

import httpx
from loguru import logger
from solders.address_lookup_table_account import AddressLookupTableAccount  # type: ignore[import-untyped]
from solders.instruction import AccountMeta, Instruction  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.listeners.decoder import decode_lookup_table
from src.models.pool import PoolRecord
from src.rpc.client import SolanaRpcClient
from src.trading.errors import DecodeError, ExecutionError, InstructionBuildError
from src.utils.rate_limiter import RateLimiter

QUOTE_URL = "https://api.jup.ag/swap/v1/quote"
SWAP_INSTRUCTIONS_URL = "https://api.jup.ag/swap/v1/swap-instructions"

MAX_RETRIES = 2
RETRY_DELAYS = [1.0, 3.0]


@dataclass(frozen=True)
class SwapPlan:
    """Everything an executor needs to submit one swap."""

    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    min_out_amount: int
    price_impact_pct: float
    instructions: list[Instruction] = field(default_factory=list)
    lookup_tables: list[AddressLookupTableAccount] = field(default_factory=list)


def _parse_instruction(ix_data: dict) -> Instruction:
    """Parse a Jupiter instruction JSON into solders Instruction."""
    program_id = Pubkey.from_string(ix_data["programId"])
    accounts = [
        AccountMeta(
            pubkey=Pubkey.from_string(a["pubkey"]),
            is_signer=a["isSigner"],
            is_writable=a["isWritable"],
        )
        for a in ix_data["accounts"]
    ]
    data = base64.b64decode(ix_data["data"])
    return Instruction(program_id, data, accounts)


def slippage_to_bps(slippage_pct: float) -> int:
    return max(0, int(round(slippage_pct * 100)))


class JupiterSwapBuilder:
    """Builds buy/sell instructions for a pool through Jupiter's API.

    Trades from the wallet's quote-token ATA (no SOL wrap/unwrap), so a WSOL
    or USDC account must already exist.
    """

    def __init__(
        self,
        *,
        rpc: SolanaRpcClient,
        owner: Pubkey,
        api_key: str = "",
        max_rps: float = 1.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            headers["x-api-key"] = api_key

        self._http = http or httpx.AsyncClient(timeout=15.0, headers=headers)
        self._rpc = rpc
        self._owner = owner
        self._rate_limiter = RateLimiter(max_rps)

    async def build_buy(self, pool: PoolRecord, quote_amount_raw: int, slippage_pct: float) -> SwapPlan:
        """Quote token → pool token."""
        return await self._build(
            input_mint=pool.quote_mint,
            output_mint=pool.base_mint,
            amount=quote_amount_raw,
            slippage_bps=slippage_to_bps(slippage_pct),
        )

    async def build_sell(self, pool: PoolRecord, token_amount_raw: int, slippage_pct: float) -> SwapPlan:
        """Pool token → quote token."""
        return await self._build(
            input_mint=pool.base_mint,
            output_mint=pool.quote_mint,
            amount=token_amount_raw,
            slippage_bps=slippage_to_bps(slippage_pct),
        )

    async def _build(self, *, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> SwapPlan:
        if amount <= 0:
            raise InstructionBuildError(f"swap amount must be positive, got {amount}")

        quote = await self._get_quote(input_mint, output_mint, amount, slippage_bps)
        ix_data = await self._get_swap_instructions(quote)

        try:
            instructions = [_parse_instruction(ix) for ix in ix_data.get("setupInstructions", [])]
            instructions.append(_parse_instruction(ix_data["swapInstruction"]))
            cleanup = ix_data.get("cleanupInstruction")
            if cleanup:
                instructions.append(_parse_instruction(cleanup))
        except (KeyError, TypeError, ValueError) as e:
            raise InstructionBuildError(f"malformed swap instructions: {e}") from e

        lookup_tables = [
            await self._fetch_alt(addr) for addr in ix_data.get("addressLookupTableAddresses", [])
        ]

        try:
            plan = SwapPlan(
                input_mint=input_mint,
                output_mint=output_mint,
                in_amount=int(quote["inAmount"]),
                out_amount=int(quote["outAmount"]),
                min_out_amount=int(quote.get("otherAmountThreshold", 0) or 0),
                price_impact_pct=float(quote.get("priceImpactPct", 0) or 0),
                instructions=instructions,
                lookup_tables=lookup_tables,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InstructionBuildError(f"malformed quote: {e}") from e

        logger.debug(
            f"[SWAP] Plan {input_mint[:8]}→{output_mint[:8]}: in={plan.in_amount} "
            f"out={plan.out_amount} impact={plan.price_impact_pct:.2f}% "
            f"{len(instructions)} ixs, {len(lookup_tables)} ALTs"
        )
        return plan

    # ─── Jupiter API methods ─────────────────────────────────────────

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        """HTTP call with rate limiting and retry on 429/5xx/transport errors."""
        for attempt in range(MAX_RETRIES + 1):
            delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
            try:
                await self._rate_limiter.acquire()
                resp = await self._http.request(method, url, **kwargs)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                if attempt < MAX_RETRIES:
                    logger.debug(f"[SWAP] {url} {type(e).__name__}, retry in {delay}s")
                    await asyncio.sleep(delay)
                    continue
                raise InstructionBuildError(f"{url}: {type(e).__name__} after retries") from e

            if resp.status_code == 429 or resp.status_code >= 500:
                if attempt < MAX_RETRIES:
                    logger.debug(f"[SWAP] {url} HTTP {resp.status_code}, retry in {delay}s")
                    await asyncio.sleep(delay)
                    continue
                raise InstructionBuildError(f"{url}: HTTP {resp.status_code} after retries")

            if resp.status_code != 200:
                try:
                    data = resp.json()
                    error_msg = data.get("error", data.get("message", "Bad request"))
                except ValueError:
                    error_msg = resp.text[:200]
                raise InstructionBuildError(f"{url}: HTTP {resp.status_code}: {error_msg}")

            try:
                return resp.json()
            except ValueError as e:
                raise InstructionBuildError(f"{url}: non-JSON response") from e

        raise InstructionBuildError(f"{url}: retries exhausted")

    async def _get_quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> dict:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
            "onlyDirectRoutes": "true",
            "dexes": "Raydium",
        }
        quote = await self._request("GET", QUOTE_URL, params=params)
        if "outAmount" not in quote:
            raise InstructionBuildError(f"quote without outAmount: {quote}")
        return quote

    async def _get_swap_instructions(self, quote: dict) -> dict:
        payload = {
            "quoteResponse": quote,
            "userPublicKey": str(self._owner),
            "wrapAndUnwrapSol": False,
            "dynamicComputeUnitLimit": False,
        }
        data = await self._request("POST", SWAP_INSTRUCTIONS_URL, json=payload)
        if "swapInstruction" not in data:
            raise InstructionBuildError("no swapInstruction in response")
        return data

    async def _fetch_alt(self, alt_key: str) -> AddressLookupTableAccount:
        try:
            raw = await self._rpc.get_account_info(alt_key)
        except (ExecutionError, DecodeError) as e:
            raise InstructionBuildError(f"ALT fetch failed for {alt_key[:12]}: {e}") from e
        if raw is None:
            raise InstructionBuildError(f"ALT {alt_key[:12]} not found")
        try:
            return decode_lookup_table(alt_key, raw)
        except DecodeError as e:
            raise InstructionBuildError(str(e)) from e

    async def close(self) -> None:
        await self._http.aclose()


def effective_price(plan: SwapPlan, *, base_decimals: int, quote_decimals: int) -> Decimal:
    """Quote paid per whole base token for a buy plan."""
    tokens = Decimal(plan.out_amount) / (Decimal(10) ** base_decimals)
    if tokens <= 0:
        return Decimal(0)
    return (Decimal(plan.in_amount) / (Decimal(10) ** quote_decimals)) / tokens
