from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple

from core.domain.entities import EscrowStatus, TransferStatus

UINT96_MAX = (1 << 96) - 1
UINT40_MAX = (1 << 40) - 1


@dataclass(frozen=True)
class EscrowCreateReceipt:
    escrow_transfer_id: str
    tx_hash: str
    recipient_hash: str
    expiry: int


@dataclass(frozen=True)
class EscrowTxReceipt:
    escrow_transfer_id: str
    tx_hash: str


@dataclass(frozen=True)
class OnchainTransferState:
    sender: str
    token: str
    amount: int
    recipient_hash: str
    expiry: int
    status_code: int


def to_atomic_amount(amount: str, decimals: int) -> int:
    """Convert a decimal string to integer base units without rounding.

    Raises ValueError when the amount is not a positive number representable
    in `decimals` places or does not fit the contract's uint96 field.
    """
    try:
        value = Decimal(amount)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Invalid amount: {amount!r}")
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {amount} has more than {decimals} decimal places")
    atomic = int(scaled)
    if atomic <= 0:
        raise ValueError("Amount must be greater than zero")
    if atomic > UINT96_MAX:
        raise ValueError("Amount exceeds uint96 range")
    return atomic


def map_chain_status(chain_status: EscrowStatus,
                     current_status: TransferStatus,
                     past_expiry: bool) -> Tuple[TransferStatus, EscrowStatus]:
    """Map the contract's status onto the record's (status, escrow_status) pair.

    A transfer that is still locked on-chain after its expiry keeps the
    off-chain `pending` status until the expiry sweep refunds it. A refund is
    recorded as an expiry when it happened past the deadline or was driven by
    the sweep, otherwise as a cancellation.
    """
    if chain_status is EscrowStatus.PENDING:
        return TransferStatus.PENDING, EscrowStatus.PENDING
    if chain_status is EscrowStatus.CLAIMED:
        return TransferStatus.CLAIMED, EscrowStatus.CLAIMED
    if chain_status is EscrowStatus.EXPIRED:
        return TransferStatus.PENDING, EscrowStatus.EXPIRED
    if current_status is TransferStatus.CANCELLED:
        return TransferStatus.CANCELLED, EscrowStatus.REFUNDED
    if current_status is TransferStatus.EXPIRED or past_expiry:
        return TransferStatus.EXPIRED, EscrowStatus.EXPIRED
    return TransferStatus.CANCELLED, EscrowStatus.REFUNDED


def parse_status_code(status_code: int, expiry: int, now_unix: int) -> Optional[EscrowStatus]:
    """Contract codes: 0 unknown, 1 pending, 2 claimed, 3 refunded."""
    if status_code == 1:
        return EscrowStatus.EXPIRED if now_unix >= expiry else EscrowStatus.PENDING
    if status_code == 2:
        return EscrowStatus.CLAIMED
    if status_code == 3:
        return EscrowStatus.REFUNDED
    return None
