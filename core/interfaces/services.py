from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional

from core.domain.entities import EscrowStatus, PendingTransfer, PendingTransferSummary, UserProfile
from core.domain.schemas import CreatePendingTransferRequest
from core.domain.value_objects import EscrowCreateReceipt, EscrowTxReceipt


class IEscrowDriver(ABC):
    """Adapter to the shared escrow contract. No business rules.

    Every method may raise OnchainFailure.
    """

    @abstractmethod
    def compute_recipient_hash(self, email: str) -> str:
        """Commitment derived from the normalized recipient email."""
        pass

    @abstractmethod
    async def create_transfer(
        self,
        recipient_hash: str,
        amount: str,
        decimals: int,
        token_address: str,
        chain: str,
        expiry: int
    ) -> EscrowCreateReceipt:
        """Register a new escrow entry funded by the treasury wallet."""
        pass

    @abstractmethod
    async def claim_transfer(self, escrow_transfer_id: str, recipient_wallet: str,
                             recipient_email: str) -> EscrowTxReceipt:
        """Release escrowed funds to the recipient wallet."""
        pass

    @abstractmethod
    async def refund_transfer(self, escrow_transfer_id: str, sender_wallet: str) -> EscrowTxReceipt:
        """Return escrowed funds to the sender."""
        pass

    @abstractmethod
    async def get_status(self, escrow_transfer_id: str) -> Optional[EscrowStatus]:
        """Contract status, None if the id is unknown to the contract."""
        pass

    @abstractmethod
    async def is_cancellable(self, escrow_transfer_id: str) -> bool:
        """Read-only pre-check used before a refund."""
        pass


class IUserDirectory(ABC):
    """Resolves user profiles and wallets. May raise DirectoryFailure."""

    @abstractmethod
    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        pass

    @abstractmethod
    async def find_user_by_email(self, email: str) -> Optional[UserProfile]:
        pass

    @abstractmethod
    async def get_wallet_for_chain(self, user_id: str, chain: str) -> Optional[str]:
        pass


class INotificationGateway(ABC):
    """Transactional notifications. Return True when the provider accepted the message.

    Implementations may raise NotificationFailure.
    """

    @abstractmethod
    async def send_invite(self, recipient_email: str, sender_name: str, sender_email: Optional[str],
                          amount: str, token: str, transfer_id: str) -> bool:
        pass

    @abstractmethod
    async def send_sender_confirmation(self, sender_email: str, sender_name: str, recipient_email: str,
                                       amount: str, token: str) -> bool:
        pass

    @abstractmethod
    async def send_claimed(self, sender_email: str, sender_name: str, recipient_email: str,
                           amount: str, token: str) -> bool:
        pass

    @abstractmethod
    async def send_expiring(self, recipient_email: str, sender_name: str, amount: str, token: str,
                            hours_left: int, transfer_id: str) -> bool:
        pass

    @abstractmethod
    async def send_expired(self, sender_email: str, sender_name: str, recipient_email: str,
                           amount: str, token: str) -> bool:
        pass


class IPendingTransferService(ABC):
    """Caller-facing surface, served locally or through the HTTP API."""

    @abstractmethod
    async def create_pending_transfer(self, request: CreatePendingTransferRequest) -> PendingTransfer:
        pass

    @abstractmethod
    async def get_pending_transfers(self, recipient_email: str) -> List[PendingTransferSummary]:
        pass

    @abstractmethod
    async def get_sent_pending_transfers(self, sender_user_id: str) -> List[PendingTransferSummary]:
        pass

    @abstractmethod
    async def get_transfer_details(self, transfer_id: str) -> Optional[PendingTransfer]:
        pass

    @abstractmethod
    async def claim_pending_transfer(self, transfer_id: str, claimant_user_id: str) -> str:
        pass

    @abstractmethod
    async def cancel_pending_transfer(self, transfer_id: str, sender_user_id: str) -> str:
        pass

    @abstractmethod
    async def auto_claim_for_new_user(self, user_id: str, email: str) -> int:
        pass

    @abstractmethod
    async def sync_transfer_status(self, transfer_id: str) -> PendingTransfer:
        pass

    @abstractmethod
    async def sync_all_for_sender(self, sender_user_id: str) -> int:
        pass

    @abstractmethod
    async def expire_pending_transfers(self) -> int:
        pass

    @abstractmethod
    async def send_expiry_reminders(self) -> int:
        pass


class ITaskDispatcher(ABC):
    """Runs best-effort side effects in the background, at most once."""

    @abstractmethod
    def dispatch(self, description: str, factory: Callable[[], Awaitable[Any]]) -> bool:
        """Schedule `factory()` without awaiting it. Returns False if it was dropped."""
        pass
