"""Binary account decoders — Raydium AMM v4 pool, SPL mint/token, Metaplex.

Pure functions: raw account bytes in, typed record out. Any malformed input
raises DecodeError; callers drop the event and move on.
"""

from __future__ import annotations

import struct
from decimal import Decimal

from solders.address_lookup_table_account import AddressLookupTableAccount  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.models.pool import MetadataInfo, MintInfo, PoolRecord, TokenAccount
from src.trading.errors import DecodeError

# Raydium AMM v4 liquidity state: 752 bytes
# [0:256]    32 x u64 (status, nonce, ..., baseDecimal @32, quoteDecimal @40, poolOpenTime @224)
# [256:336]  swap accounting (u128/u64 counters)
# [336:720]  12 pubkeys (baseVault, quoteVault, baseMint, quoteMint, lpMint, openOrders,
#            marketId, marketProgramId, targetOrders, withdrawQueue, lpVault, owner)
# [720:752]  lpReserve u64 + 3 x u64 padding
POOL_STATE_SIZE = 752
POOL_STATUS_OFFSET = 0
POOL_BASE_DECIMAL_OFFSET = 32
POOL_QUOTE_DECIMAL_OFFSET = 40
POOL_OPEN_TIME_OFFSET = 224
POOL_BASE_VAULT_OFFSET = 336
POOL_QUOTE_VAULT_OFFSET = 368
POOL_BASE_MINT_OFFSET = 400
POOL_QUOTE_MINT_OFFSET = 432
POOL_LP_MINT_OFFSET = 464
POOL_MARKET_ID_OFFSET = 528
POOL_MARKET_PROGRAM_OFFSET = 560

# SPL Token mint layout: 82 bytes
SPL_MINT_SIZE = 82
# SPL Token account layout: 165 bytes (mint, owner, amount, ...)
TOKEN_ACCOUNT_SIZE = 165
TOKEN_ACCOUNT_OWNER_OFFSET = 32

# Address lookup table header
ALT_HEADER_SIZE = 56

NULL_ADDRESS = "11111111111111111111111111111111"


def _pubkey_at(raw: bytes, offset: int) -> str:
    return str(Pubkey.from_bytes(raw[offset : offset + 32]))


def decode_pool_state(pool_id: str, raw: bytes) -> PoolRecord:
    """Decode a Raydium AMM v4 liquidity state account."""
    if len(raw) != POOL_STATE_SIZE:
        raise DecodeError(f"pool {pool_id[:12]}: expected {POOL_STATE_SIZE} bytes, got {len(raw)}")

    try:
        base_decimals = struct.unpack_from("<Q", raw, POOL_BASE_DECIMAL_OFFSET)[0]
        quote_decimals = struct.unpack_from("<Q", raw, POOL_QUOTE_DECIMAL_OFFSET)[0]
        open_time = struct.unpack_from("<Q", raw, POOL_OPEN_TIME_OFFSET)[0]
        return PoolRecord(
            pool_id=pool_id,
            base_mint=_pubkey_at(raw, POOL_BASE_MINT_OFFSET),
            quote_mint=_pubkey_at(raw, POOL_QUOTE_MINT_OFFSET),
            base_vault=_pubkey_at(raw, POOL_BASE_VAULT_OFFSET),
            quote_vault=_pubkey_at(raw, POOL_QUOTE_VAULT_OFFSET),
            lp_mint=_pubkey_at(raw, POOL_LP_MINT_OFFSET),
            market_id=_pubkey_at(raw, POOL_MARKET_ID_OFFSET),
            base_decimals=int(base_decimals),
            quote_decimals=int(quote_decimals),
            pool_open_time=int(open_time),
        )
    except (struct.error, ValueError) as e:
        raise DecodeError(f"pool {pool_id[:12]}: {e}") from e


def decode_mint(raw: bytes) -> MintInfo:
    """Decode an SPL Token (or Token2022 base) mint account."""
    if len(raw) < SPL_MINT_SIZE:
        raise DecodeError(f"mint data too short: {len(raw)} bytes")

    # COption<Pubkey>: u32 tag + 32 bytes
    mint_auth_option = struct.unpack_from("<I", raw, 0)[0]
    mint_authority: str | None = None
    if mint_auth_option == 1:
        mint_authority = _pubkey_at(raw, 4)
        if mint_authority == NULL_ADDRESS:
            mint_authority = None

    supply = struct.unpack_from("<Q", raw, 36)[0]
    decimals = raw[44]
    is_initialized = raw[45] == 1

    freeze_auth_option = struct.unpack_from("<I", raw, 46)[0]
    freeze_authority: str | None = None
    if freeze_auth_option == 1:
        freeze_authority = _pubkey_at(raw, 50)
        if freeze_authority == NULL_ADDRESS:
            freeze_authority = None

    return MintInfo(
        supply=supply,
        decimals=decimals,
        mint_authority=mint_authority,
        freeze_authority=freeze_authority,
        is_initialized=is_initialized,
    )


def decode_token_account(address: str, raw: bytes) -> TokenAccount:
    """Decode an SPL token account."""
    if len(raw) < TOKEN_ACCOUNT_SIZE:
        raise DecodeError(f"token account {address[:12]}: {len(raw)} bytes")
    return TokenAccount(
        address=address,
        mint=_pubkey_at(raw, 0),
        owner=_pubkey_at(raw, TOKEN_ACCOUNT_OWNER_OFFSET),
        amount=struct.unpack_from("<Q", raw, 64)[0],
    )


def decode_metadata(raw: bytes) -> MetadataInfo:
    """Decode a Metaplex metadata account (borsh).

    Layout: key u8, update_authority, mint, name/symbol/uri (u32-prefixed,
    null padded), seller_fee_basis_points u16, Option<Vec<Creator>>,
    primary_sale_happened bool, is_mutable bool.
    """
    offset = 1

    def read_string() -> str:
        nonlocal offset
        length = struct.unpack_from("<I", raw, offset)[0]
        offset += 4
        if offset + length > len(raw):
            raise DecodeError(f"metadata string overruns buffer ({length} bytes)")
        value = raw[offset : offset + length].decode("utf-8", errors="replace")
        offset += length
        return value.rstrip("\x00")

    try:
        update_authority = _pubkey_at(raw, offset)
        offset += 32
        mint = _pubkey_at(raw, offset)
        offset += 32
        name = read_string()
        symbol = read_string()
        uri = read_string()
        offset += 2  # seller_fee_basis_points

        has_creators = raw[offset]
        offset += 1
        if has_creators:
            count = struct.unpack_from("<I", raw, offset)[0]
            offset += 4 + count * 34  # pubkey + verified + share

        offset += 1  # primary_sale_happened
        is_mutable = raw[offset] == 1
    except (struct.error, IndexError, ValueError) as e:
        raise DecodeError(f"metadata: {e}") from e

    return MetadataInfo(
        update_authority=update_authority,
        mint=mint,
        name=name,
        symbol=symbol,
        uri=uri,
        is_mutable=is_mutable,
    )


def decode_lookup_table(key: str, raw: bytes) -> AddressLookupTableAccount:
    """Decode an address lookup table: 56-byte header, then 32-byte addresses."""
    if len(raw) < ALT_HEADER_SIZE:
        raise DecodeError(f"lookup table {key[:12]}: {len(raw)} bytes")
    addresses = [
        Pubkey.from_bytes(raw[i : i + 32])
        for i in range(ALT_HEADER_SIZE, len(raw) - 31, 32)
    ]
    return AddressLookupTableAccount(key=Pubkey.from_string(key), addresses=addresses)


def ui_amount(raw_amount: int, decimals: int) -> Decimal:
    """Convert raw token units to a decimal amount."""
    return Decimal(raw_amount) / (Decimal(10) ** decimals)
