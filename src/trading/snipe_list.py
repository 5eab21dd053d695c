"""Allow-list of mints that skip the filter pipeline.

When the snipe list is on it is the only gate: listed mints pass, every
other mint is rejected, and no filter timer runs.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from src.models.pool import PoolRecord
from src.trading.filters import FilterVerdict, VerdictOutcome


class SnipeList:
    def __init__(self, mints: frozenset[str] = frozenset()) -> None:
        self._mints = mints

    @classmethod
    def load(cls, path: Path) -> SnipeList:
        """One mint per line; blank lines and ``#`` comments are skipped."""
        if not path.exists():
            logger.warning(f"[SNIPE] Snipe list {path} not found, nothing will be bought")
            return cls()
        mints = frozenset(
            line.strip()
            for line in path.read_text(encoding="utf-8").splitlines()
            if line.strip() and not line.strip().startswith("#")
        )
        logger.info(f"[SNIPE] Loaded {len(mints)} mints from {path}")
        return cls(mints)

    def __len__(self) -> int:
        return len(self._mints)

    def __contains__(self, mint: object) -> bool:
        return mint in self._mints

    def check(self, pool: PoolRecord) -> FilterVerdict:
        if pool.base_mint in self._mints:
            return FilterVerdict(VerdictOutcome.PASS)
        return FilterVerdict(
            VerdictOutcome.FAIL, failed_predicate="snipe_list", message="mint not in snipe list"
        )
