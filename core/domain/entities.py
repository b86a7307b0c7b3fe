from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from math import ceil
from typing import Any, Dict, Optional


class TransferStatus(str, Enum):
    PENDING = "pending"
    CLAIMED = "claimed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not TransferStatus.PENDING


class EscrowStatus(str, Enum):
    PENDING = "pending"
    CLAIMED = "claimed"
    REFUNDED = "refunded"
    EXPIRED = "expired"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


# camelCase names of the persisted layout, shared with external readers
_EXTERNAL_NAMES = {
    "transfer_id": "transferId",
    "sender_user_id": "senderUserId",
    "sender_email": "senderEmail",
    "sender_name": "senderName",
    "recipient_email": "recipientEmail",
    "amount": "amount",
    "token": "token",
    "token_address": "tokenAddress",
    "chain": "chain",
    "decimals": "decimals",
    "status": "status",
    "escrow_transfer_id": "escrowTransferId",
    "escrow_tx_hash": "escrowTxHash",
    "escrow_status": "escrowStatus",
    "recipient_hash": "recipientHash",
    "recipient_wallet": "recipientWallet",
    "created_at": "createdAt",
    "expires_at": "expiresAt",
    "claimed_at": "claimedAt",
    "claimed_by_user_id": "claimedByUserId",
    "claim_transaction_hash": "claimTransactionHash",
    "refund_transaction_hash": "refundTransactionHash",
    "message": "message",
    "last_chain_sync_at": "lastChainSyncAt",
    "last_reminder_sent_at": "lastReminderSentAt",
}

_DATETIME_FIELDS = {"created_at", "expires_at", "claimed_at", "last_chain_sync_at", "last_reminder_sent_at"}

IMMUTABLE_FIELDS = frozenset({"transfer_id", "created_at", "expires_at"})


@dataclass
class PendingTransfer:
    transfer_id: str
    sender_user_id: str
    sender_email: str
    recipient_email: str
    amount: str
    token: str
    token_address: str
    chain: str
    decimals: int
    escrow_transfer_id: str
    escrow_tx_hash: str
    recipient_hash: str
    created_at: datetime
    expires_at: datetime
    status: TransferStatus = TransferStatus.PENDING
    escrow_status: EscrowStatus = EscrowStatus.PENDING
    sender_name: Optional[str] = None
    recipient_wallet: Optional[str] = None
    claimed_at: Optional[datetime] = None
    claimed_by_user_id: Optional[str] = None
    claim_transaction_hash: Optional[str] = None
    refund_transaction_hash: Optional[str] = None
    message: Optional[str] = None
    last_chain_sync_at: Optional[datetime] = None
    last_reminder_sent_at: Optional[datetime] = None

    @property
    def is_registered(self) -> bool:
        return bool(self.escrow_transfer_id)

    def is_expired_at(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the persisted camelCase layout (ISO-8601 timestamps)."""
        result: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            result[_EXTERNAL_NAMES[f.name]] = value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingTransfer":
        kwargs: Dict[str, Any] = {}
        for name, external in _EXTERNAL_NAMES.items():
            if external not in data:
                continue
            value = data[external]
            if name in _DATETIME_FIELDS and isinstance(value, str):
                value = datetime.fromisoformat(value.replace("Z", "+00:00"))
            elif name == "status" and value is not None:
                value = TransferStatus(value)
            elif name == "escrow_status" and value is not None:
                value = EscrowStatus(value)
            kwargs[name] = value
        return cls(**kwargs)


@dataclass
class PendingTransferSummary:
    transfer_id: str
    recipient_email: str
    sender_name: str
    amount: str
    token: str
    chain: str
    status: TransferStatus
    created_at: datetime
    expires_at: datetime
    days_remaining: int
    sender_email: Optional[str] = None

    @classmethod
    def from_transfer(cls, transfer: PendingTransfer, now: datetime) -> "PendingTransferSummary":
        seconds_left = (transfer.expires_at - now).total_seconds()
        return cls(
            transfer_id=transfer.transfer_id,
            recipient_email=transfer.recipient_email,
            sender_name=transfer.sender_name or transfer.sender_email,
            sender_email=transfer.sender_email,
            amount=transfer.amount,
            token=transfer.token,
            chain=transfer.chain,
            status=transfer.status,
            created_at=transfer.created_at,
            expires_at=transfer.expires_at,
            days_remaining=max(0, ceil(seconds_left / 86400)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transferId": self.transfer_id,
            "recipientEmail": self.recipient_email,
            "senderName": self.sender_name,
            "senderEmail": self.sender_email,
            "amount": self.amount,
            "token": self.token,
            "chain": self.chain,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "daysRemaining": self.days_remaining,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingTransferSummary":
        return cls(
            transfer_id=data["transferId"],
            recipient_email=data["recipientEmail"],
            sender_name=data.get("senderName") or "",
            sender_email=data.get("senderEmail"),
            amount=data["amount"],
            token=data["token"],
            chain=data["chain"],
            status=TransferStatus(data["status"]),
            created_at=datetime.fromisoformat(data["createdAt"].replace("Z", "+00:00")),
            expires_at=datetime.fromisoformat(data["expiresAt"].replace("Z", "+00:00")),
            days_remaining=int(data.get("daysRemaining", 0)),
        )


@dataclass
class UserProfile:
    user_id: str
    email: str
    display_name: Optional[str] = None
    wallets: Dict[str, str] = field(default_factory=dict)
    is_verified: bool = False

    @property
    def name(self) -> str:
        return self.display_name or self.email

    def wallet_for_chain(self, chain: str) -> Optional[str]:
        return self.wallets.get(chain) or None
