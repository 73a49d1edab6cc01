"""
Protocol-based interface for chain-status providers.
The monitor only observes transactions, so a provider needs two reads:
the status of one transaction and the current chain tip.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

# Stacks API tx_status values
TX_SUCCESS = "success"
TX_PENDING = "pending"
TX_NOT_FOUND = "not_found"  # Reported by providers on 404, not by the API itself
ABORT_STATUSES = frozenset({"abort_by_post_condition", "abort_by_response"})


@dataclass
class TransferDetails:
    """Amount (base units) and parties of a transfer, when the payload carries one."""

    amount: int | None = None
    sender: str | None = None
    recipient: str | None = None


class ChainQueryError(Exception):
    """Transient failure talking to the chain API. Always safe to retry."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class TransactionStatus:
    """
    Snapshot of a transaction as reported by the chain API.
    `raw` keeps the full payload for the audit record; only the fields
    the monitor acts on are lifted out.
    """

    tx_id: str
    tx_status: str
    block_height: int | None = None
    sender_address: str | None = None
    tx_type: str | None = None
    token_transfer: dict[str, Any] | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.tx_status == TX_SUCCESS

    @property
    def is_aborted(self) -> bool:
        return self.tx_status in ABORT_STATUSES

    def transfer_details(self) -> TransferDetails:
        details = TransferDetails(sender=self.sender_address)
        if self.token_transfer:
            details.amount = _parse_uint(self.token_transfer.get("amount"))
            details.recipient = self.token_transfer.get("recipient_address")
            return details

        # sBTC moves through the token contract's transfer function
        call = self.raw.get("contract_call") or {}
        if call.get("function_name") != "transfer":
            return details
        for arg in call.get("function_args") or []:
            name, value = arg.get("name"), arg.get("repr")
            if name == "amount":
                details.amount = _parse_uint(value)
            elif name in ("recipient", "to"):
                details.recipient = _parse_principal(value)
        return details

    @classmethod
    def from_api(cls, tx_id: str, payload: dict[str, Any]) -> "TransactionStatus":
        block_height = payload.get("block_height")
        return cls(
            tx_id=payload.get("tx_id", tx_id),
            tx_status=payload.get("tx_status", TX_PENDING),
            # Mempool entries carry no height; some API versions report -1
            block_height=block_height if isinstance(block_height, int) and block_height > 0 else None,
            sender_address=payload.get("sender_address"),
            tx_type=payload.get("tx_type"),
            token_transfer=payload.get("token_transfer"),
            raw=payload,
        )

    @classmethod
    def not_found(cls, tx_id: str) -> "TransactionStatus":
        return cls(tx_id=tx_id, tx_status=TX_NOT_FOUND, raw={"tx_id": tx_id, "tx_status": TX_NOT_FOUND})


def normalize_tx_id(tx_id: str) -> str:
    """Stacks tx ids are 0x-prefixed hex; wallets sometimes drop the prefix."""
    tx_id = tx_id.strip()
    if not tx_id.startswith("0x"):
        return f"0x{tx_id}"
    return tx_id


class ChainStatusProvider(Protocol):
    """
    Read-only view of the chain used by the confirmation monitor.

    Implementations raise ChainQueryError for transport and HTTP failures,
    and report an unknown transaction as TX_NOT_FOUND instead of raising.
    """

    async def get_transaction_status(self, tx_id: str) -> TransactionStatus:
        ...

    async def get_current_block_height(self) -> int:
        ...


def _parse_uint(value: Any) -> int | None:
    """Accepts API amounts ("1500") and Clarity reprs ("u1500")."""
    if value is None:
        return None
    text = str(value).strip()
    if text.startswith("u"):
        text = text[1:]
    try:
        return int(text)
    except ValueError:
        return None


def _parse_principal(value: Any) -> str | None:
    # Clarity principal reprs are quote-prefixed: 'ST1PQ...
    if not value:
        return None
    return str(value).lstrip("'")
