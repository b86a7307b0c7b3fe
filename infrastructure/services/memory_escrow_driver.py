import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Set

from loguru import logger

from core.domain.entities import EscrowStatus, utcnow
from core.domain.exceptions import OnchainFailure, ValidationError
from core.domain.value_objects import (UINT40_MAX, EscrowCreateReceipt, EscrowTxReceipt, OnchainTransferState,
                                       parse_status_code, to_atomic_amount)
from core.interfaces.services import IEscrowDriver
from infrastructure.services.web3_escrow_driver import compute_recipient_hash, compute_salt, compute_transfer_id

STATUS_PENDING = 1
STATUS_CLAIMED = 2
STATUS_REFUNDED = 3


@dataclass
class _EscrowEntry:
    sender: str
    token: str
    amount: int
    recipient_hash: str
    expiry: int
    status: int = STATUS_PENDING
    recipient: Optional[str] = None
    refund_address: Optional[str] = None


class InMemoryEscrowDriver(IEscrowDriver):
    """
    In-process model of the escrow contract for tests and mock mode.

    Mirrors the contract rules: one terminal transition per entry, claims
    only before expiry and with the matching recipient hash, refunds of
    pending entries at any time. Rejections surface as OnchainFailure, like
    a reverted transaction.
    """

    def __init__(self, treasury_wallet: str = "0x000000000000000000000000000000000000dEaD",
                 salt_version: str = "MS_ESCROW_V1",
                 clock: Callable[[], datetime] = utcnow):
        self.treasury_wallet = treasury_wallet
        self.salt = compute_salt(salt_version)
        self.clock = clock
        self.entries: Dict[str, _EscrowEntry] = {}
        # operation names that fail with OnchainFailure on the next call
        self.fail_on: Set[str] = set()
        self.calls: Dict[str, int] = {}

    def compute_recipient_hash(self, email: str) -> str:
        return compute_recipient_hash(self.salt, email)

    async def create_transfer(self, recipient_hash: str, amount: str, decimals: int, token_address: str,
                              chain: str, expiry: int) -> EscrowCreateReceipt:
        self._enter("create_transfer")
        try:
            atomic = to_atomic_amount(amount, decimals)
        except ValueError as e:
            raise ValidationError(str(e))
        if expiry <= 0 or expiry > UINT40_MAX:
            raise ValidationError("Expiry exceeds uint40 range")

        transfer_id = compute_transfer_id(self.salt, recipient_hash, atomic, expiry)
        if transfer_id in self.entries:
            raise OnchainFailure(f"Transfer {transfer_id} already exists")
        self.entries[transfer_id] = _EscrowEntry(
            sender=self.treasury_wallet, token=token_address, amount=atomic,
            recipient_hash=recipient_hash, expiry=expiry)
        logger.debug(f"Mock escrow transfer {transfer_id} created on {chain}")
        return EscrowCreateReceipt(escrow_transfer_id=transfer_id, tx_hash=self._tx_hash(),
                                   recipient_hash=recipient_hash, expiry=expiry)

    async def claim_transfer(self, escrow_transfer_id: str, recipient_wallet: str,
                             recipient_email: str) -> EscrowTxReceipt:
        self._enter("claim_transfer")
        entry = self._entry(escrow_transfer_id)
        if entry.status != STATUS_PENDING:
            raise OnchainFailure(f"Transfer {escrow_transfer_id} is not pending")
        if self._now() >= entry.expiry:
            raise OnchainFailure(f"Transfer {escrow_transfer_id} has expired")
        if self.compute_recipient_hash(recipient_email) != entry.recipient_hash:
            raise OnchainFailure("Recipient hash mismatch")
        entry.status = STATUS_CLAIMED
        entry.recipient = recipient_wallet
        return EscrowTxReceipt(escrow_transfer_id=escrow_transfer_id, tx_hash=self._tx_hash())

    async def refund_transfer(self, escrow_transfer_id: str, sender_wallet: str) -> EscrowTxReceipt:
        self._enter("refund_transfer")
        entry = self._entry(escrow_transfer_id)
        if entry.status != STATUS_PENDING:
            raise OnchainFailure(f"Transfer {escrow_transfer_id} is not pending")
        entry.status = STATUS_REFUNDED
        entry.refund_address = sender_wallet
        return EscrowTxReceipt(escrow_transfer_id=escrow_transfer_id, tx_hash=self._tx_hash())

    async def load_transfer(self, escrow_transfer_id: str) -> Optional[OnchainTransferState]:
        entry = self.entries.get(escrow_transfer_id)
        if entry is None:
            return None
        return OnchainTransferState(sender=entry.sender, token=entry.token, amount=entry.amount,
                                    recipient_hash=entry.recipient_hash, expiry=entry.expiry,
                                    status_code=entry.status)

    async def get_status(self, escrow_transfer_id: str) -> Optional[EscrowStatus]:
        self._enter("get_status")
        state = await self.load_transfer(escrow_transfer_id)
        if state is None:
            return None
        return parse_status_code(state.status_code, state.expiry, self._now())

    async def is_cancellable(self, escrow_transfer_id: str) -> bool:
        status = await self.get_status(escrow_transfer_id)
        return status in (EscrowStatus.PENDING, EscrowStatus.EXPIRED)

    def _enter(self, operation: str) -> None:
        self.calls[operation] = self.calls.get(operation, 0) + 1
        if operation in self.fail_on:
            self.fail_on.discard(operation)
            raise OnchainFailure(f"Simulated {operation} failure")

    def _entry(self, escrow_transfer_id: str) -> _EscrowEntry:
        entry = self.entries.get(escrow_transfer_id)
        if entry is None:
            raise OnchainFailure(f"Transfer {escrow_transfer_id} not found")
        return entry

    def _now(self) -> int:
        return int(self.clock().timestamp())

    @staticmethod
    def _tx_hash() -> str:
        return "0x" + secrets.token_hex(32)
