from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, List, Optional

from core.domain.entities import PendingTransfer


class IPendingTransferRepository(ABC):
    """Interface for pending transfer persistence."""

    @abstractmethod
    async def create(self, transfer: PendingTransfer) -> PendingTransfer:
        """Persist a new transfer record."""
        pass

    @abstractmethod
    async def get_by_id(self, transfer_id: str) -> Optional[PendingTransfer]:
        """Get a transfer by its transfer id."""
        pass

    @abstractmethod
    async def get_by_recipient_email(self, email: str) -> List[PendingTransfer]:
        """Get all transfers addressed to an email (case-insensitive), newest first."""
        pass

    @abstractmethod
    async def get_by_sender(self, sender_user_id: str) -> List[PendingTransfer]:
        """Get all transfers created by a sender, newest first."""
        pass

    @abstractmethod
    async def get_expired(self, now: datetime) -> List[PendingTransfer]:
        """Get pending transfers whose expiry is before `now`."""
        pass

    @abstractmethod
    async def get_expiring(self, now: datetime, within: timedelta) -> List[PendingTransfer]:
        """Get pending, not yet reminded transfers expiring in (now, now + within]."""
        pass

    @abstractmethod
    async def update(self, transfer_id: str, **changes: Any) -> Optional[PendingTransfer]:
        """Apply a partial update. Returns the updated record or None if missing.

        Raises ValueError for fields that are immutable after creation.
        """
        pass


class IRepositoryFactory(ABC):
    """Abstract Factory for creating repositories."""

    @abstractmethod
    def get_pending_transfer_repository(self) -> IPendingTransferRepository:
        pass
