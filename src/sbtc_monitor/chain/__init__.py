"""Chain-status providers consumed by the confirmation monitor."""

from .interfaces import (
    ABORT_STATUSES,
    TX_NOT_FOUND,
    TX_PENDING,
    TX_SUCCESS,
    ChainQueryError,
    ChainStatusProvider,
    TransactionStatus,
    TransferDetails,
    normalize_tx_id,
)
from .stacks_provider import HiroStacksProvider

__all__ = [
    "ABORT_STATUSES",
    "TX_NOT_FOUND",
    "TX_PENDING",
    "TX_SUCCESS",
    "ChainQueryError",
    "ChainStatusProvider",
    "HiroStacksProvider",
    "TransactionStatus",
    "TransferDetails",
    "normalize_tx_id",
]
