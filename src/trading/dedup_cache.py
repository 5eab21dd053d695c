"""In-memory mint → record cache guarding against double buys.

Scoped to one run and injected into the sniper. ``claim`` is the only way a
mint enters the active set and is atomic: two lifecycles racing on the same
mint see exactly one winner.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import StrEnum

from loguru import logger


class SlotStatus(StrEnum):
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(frozen=True)
class DedupRecord:
    mint: str
    pool_id: str
    status: SlotStatus = SlotStatus.ACTIVE


class DedupCache:
    def __init__(self) -> None:
        self._records: dict[str, DedupRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, mint: object) -> bool:
        return mint in self._records

    def get(self, mint: str) -> DedupRecord | None:
        return self._records.get(mint)

    def save(self, mint: str, record: DedupRecord) -> None:
        """Store ``record`` for ``mint``. Saving the same record twice is a no-op."""
        with self._lock:
            self._records[mint] = record

    def remove(self, mint: str) -> None:
        with self._lock:
            self._records.pop(mint, None)

    def claim(self, mint: str, pool_id: str) -> bool:
        """Insert an ACTIVE record unless one already exists.

        A CLOSED record does not block: a mint whose position closed may be
        traded again on rediscovery.
        """
        with self._lock:
            existing = self._records.get(mint)
            if existing is not None and existing.status is SlotStatus.ACTIVE:
                return False
            self._records[mint] = DedupRecord(mint=mint, pool_id=pool_id)
            return True

    def mark_closed(self, mint: str) -> None:
        with self._lock:
            existing = self._records.get(mint)
            if existing is None:
                logger.debug(f"[DEDUP] mark_closed on unknown mint {mint[:12]}")
                return
            self._records[mint] = DedupRecord(
                mint=mint, pool_id=existing.pool_id, status=SlotStatus.CLOSED
            )

    def active_mints(self) -> list[str]:
        return [m for m, r in self._records.items() if r.status is SlotStatus.ACTIVE]
