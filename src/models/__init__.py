from src.models.pool import MetadataInfo, MintInfo, PoolRecord, TokenAccount
from src.models.position import Position, PositionState, TERMINAL_STATES

__all__ = [
    "PoolRecord",
    "MintInfo",
    "TokenAccount",
    "MetadataInfo",
    "Position",
    "PositionState",
    "TERMINAL_STATES",
]
