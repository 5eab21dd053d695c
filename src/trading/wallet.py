"""Sniper wallet: signing keypair plus quote/token balance lookups.

The secret key is read once at startup; only the public key ever reaches
logs or repr().
"""

from __future__ import annotations

import base64

from loguru import logger
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.listeners.decoder import decode_token_account
from src.rpc.client import SolanaRpcClient

# SPL Token constants
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string(
    "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
)
WSOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

QUOTE_MINTS = {"WSOL": WSOL_MINT, "USDC": USDC_MINT}


class SolanaWallet:
    """Holds the signing keypair and answers balance questions.

    The keypair is exposed to executors for signing and nothing else.
    """

    def __init__(self, keypair: Keypair, rpc: SolanaRpcClient) -> None:
        self._keypair = keypair
        self._rpc = rpc
        logger.info(f"[WALLET] Loaded wallet: {self.pubkey_str}")

    @classmethod
    def from_base58(cls, private_key_base58: str, rpc: SolanaRpcClient) -> SolanaWallet:
        if not private_key_base58:
            raise ValueError("Wallet private key is empty")
        return cls(Keypair.from_base58_string(private_key_base58.strip()), rpc)

    def __repr__(self) -> str:
        return f"SolanaWallet(pubkey={self.pubkey_str})"

    @property
    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    @property
    def pubkey_str(self) -> str:
        return str(self._keypair.pubkey())

    @property
    def keypair(self) -> Keypair:
        return self._keypair

    def get_ata_address(self, mint_str: str) -> Pubkey:
        """Derive Associated Token Account address for a mint."""
        mint = Pubkey.from_string(mint_str)
        ata, _bump = Pubkey.find_program_address(
            [bytes(self.pubkey), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
            ASSOCIATED_TOKEN_PROGRAM_ID,
        )
        return ata

    async def has_token_account(self, mint: str) -> bool:
        """True if the ATA for ``mint`` exists on-chain."""
        data = await self._rpc.get_account_info(str(self.get_ata_address(mint)))
        return data is not None

    async def get_token_balance(self, mint: str) -> int:
        """Raw token balance across all accounts the wallet holds for ``mint``."""
        accounts = await self._rpc.get_token_accounts_by_owner(self.pubkey_str, mint)
        total = 0
        for keyed in accounts:
            raw = base64.b64decode(keyed.account.data[0])
            total += decode_token_account(keyed.pubkey, raw).amount
        return total
