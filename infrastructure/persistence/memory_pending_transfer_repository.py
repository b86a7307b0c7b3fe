"""In-process IPendingTransferRepository, used by tests and the `memory` storage backend."""
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from core.domain.entities import IMMUTABLE_FIELDS, PendingTransfer, TransferStatus, normalize_email
from core.domain.exceptions import StoreFailure
from core.interfaces.repositories import IPendingTransferRepository


class InMemoryPendingTransferRepository(IPendingTransferRepository):
    def __init__(self):
        self._transfers: Dict[str, PendingTransfer] = {}
        self.update_count = 0

    async def create(self, transfer: PendingTransfer) -> PendingTransfer:
        if transfer.transfer_id in self._transfers:
            raise StoreFailure(f"Transfer {transfer.transfer_id} already exists", transfer_id=transfer.transfer_id)
        self._transfers[transfer.transfer_id] = replace(transfer)
        return replace(transfer)

    async def get_by_id(self, transfer_id: str) -> Optional[PendingTransfer]:
        transfer = self._transfers.get(transfer_id)
        return replace(transfer) if transfer else None

    async def get_by_recipient_email(self, email: str) -> List[PendingTransfer]:
        email = normalize_email(email)
        return self._sorted(t for t in self._transfers.values() if normalize_email(t.recipient_email) == email)

    async def get_by_sender(self, sender_user_id: str) -> List[PendingTransfer]:
        return self._sorted(t for t in self._transfers.values() if t.sender_user_id == sender_user_id)

    async def get_expired(self, now: datetime) -> List[PendingTransfer]:
        return sorted((replace(t) for t in self._transfers.values()
                       if t.status is TransferStatus.PENDING and t.expires_at < now),
                      key=lambda t: t.expires_at)

    async def get_expiring(self, now: datetime, within: timedelta) -> List[PendingTransfer]:
        return sorted((replace(t) for t in self._transfers.values()
                       if t.status is TransferStatus.PENDING
                       and now < t.expires_at <= now + within
                       and t.last_reminder_sent_at is None),
                      key=lambda t: t.expires_at)

    async def update(self, transfer_id: str, **changes: Any) -> Optional[PendingTransfer]:
        forbidden = IMMUTABLE_FIELDS.intersection(changes)
        if forbidden:
            raise ValueError(f"Fields {sorted(forbidden)} cannot be changed")
        transfer = self._transfers.get(transfer_id)
        if transfer is None:
            return None
        updated = replace(transfer, **changes)
        self._transfers[transfer_id] = updated
        self.update_count += 1
        return replace(updated)

    @staticmethod
    def _sorted(transfers) -> List[PendingTransfer]:
        return sorted((replace(t) for t in transfers), key=lambda t: t.created_at, reverse=True)
