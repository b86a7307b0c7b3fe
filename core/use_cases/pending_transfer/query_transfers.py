from datetime import datetime
from typing import Callable, List, Optional

from core.domain.entities import PendingTransfer, PendingTransferSummary, TransferStatus, normalize_email, utcnow
from core.interfaces.repositories import IPendingTransferRepository


class GetPendingTransfers:
    """Summaries of all transfers addressed to an email, any status."""

    def __init__(self, transfer_repository: IPendingTransferRepository,
                 clock: Callable[[], datetime] = utcnow):
        self.transfer_repository = transfer_repository
        self.clock = clock

    async def execute(self, recipient_email: str) -> List[PendingTransferSummary]:
        transfers = await self.transfer_repository.get_by_recipient_email(normalize_email(recipient_email))
        now = self.clock()
        return [PendingTransferSummary.from_transfer(t, now) for t in transfers]


class GetSentPendingTransfers:
    """Summaries of a sender's transfers that are still pending."""

    def __init__(self, transfer_repository: IPendingTransferRepository,
                 clock: Callable[[], datetime] = utcnow):
        self.transfer_repository = transfer_repository
        self.clock = clock

    async def execute(self, sender_user_id: str) -> List[PendingTransferSummary]:
        transfers = await self.transfer_repository.get_by_sender(sender_user_id)
        now = self.clock()
        return [PendingTransferSummary.from_transfer(t, now) for t in transfers
                if t.status is TransferStatus.PENDING]


class GetTransferDetails:
    def __init__(self, transfer_repository: IPendingTransferRepository):
        self.transfer_repository = transfer_repository

    async def execute(self, transfer_id: str) -> Optional[PendingTransfer]:
        return await self.transfer_repository.get_by_id(transfer_id)
