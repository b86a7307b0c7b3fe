from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()
metadata = Base.metadata


class PendingTransferRecord(Base):
    __tablename__ = 'PENDING_TRANSFERS'

    transfer_id = Column(String(64), primary_key=True)
    sender_user_id = Column(String(128), nullable=False)
    sender_email = Column(String(320), nullable=False, default='')
    sender_name = Column(String(256))
    recipient_email = Column(String(320), nullable=False)
    amount = Column(String(80), nullable=False)
    token = Column(String(32), nullable=False)
    token_address = Column(String(64), nullable=False)
    chain = Column(String(32), nullable=False)
    decimals = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default='pending')
    escrow_transfer_id = Column(String(80))
    escrow_tx_hash = Column(String(80))
    escrow_status = Column(String(16), nullable=False, default='pending')
    recipient_hash = Column(String(80))
    recipient_wallet = Column(String(64))
    # naive UTC
    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    claimed_at = Column(DateTime)
    claimed_by_user_id = Column(String(128))
    claim_transaction_hash = Column(String(80))
    refund_transaction_hash = Column(String(80))
    message = Column(Text)
    last_chain_sync_at = Column(DateTime)
    last_reminder_sent_at = Column(DateTime)

    __table_args__ = (
        Index('IX_PENDING_TRANSFERS_RECIPIENT', 'recipient_email'),
        Index('IX_PENDING_TRANSFERS_SENDER', 'sender_user_id'),
        Index('IX_PENDING_TRANSFERS_STATUS_EXPIRES', 'status', 'expires_at'),
    )
