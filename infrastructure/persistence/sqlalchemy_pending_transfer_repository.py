"""SQLAlchemy implementation of IPendingTransferRepository."""
import asyncio
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, List, Optional, TypeVar

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from core.domain.entities import IMMUTABLE_FIELDS, EscrowStatus, PendingTransfer, TransferStatus, normalize_email
from core.domain.exceptions import StoreFailure
from core.interfaces.repositories import IPendingTransferRepository
from db.models import PendingTransferRecord

T = TypeVar("T")


def _to_db_datetime(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db_datetime(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class SqlAlchemyPendingTransferRepository(IPendingTransferRepository):
    """Opens one short session per call; every call is bounded by `timeout`."""

    def __init__(self, session_factory: async_sessionmaker, timeout: float = 10.0):
        self.session_factory = session_factory
        self.timeout = timeout

    async def _run(self, description: str, coro: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise StoreFailure(f"Store timeout during {description}")
        except SQLAlchemyError as e:
            raise StoreFailure(f"Store error during {description}: {e}")

    async def create(self, transfer: PendingTransfer) -> PendingTransfer:
        async def _create() -> PendingTransfer:
            async with self.session_factory() as session:
                db_transfer = PendingTransferRecord()
                self._apply(db_transfer, self._columns(transfer))
                session.add(db_transfer)
                await session.commit()
                return self._to_entity(db_transfer)

        return await self._run(f"create {transfer.transfer_id}", _create())

    async def get_by_id(self, transfer_id: str) -> Optional[PendingTransfer]:
        async def _get() -> Optional[PendingTransfer]:
            async with self.session_factory() as session:
                db_transfer = await self._get_record(session, transfer_id)
                return self._to_entity(db_transfer) if db_transfer else None

        return await self._run(f"get {transfer_id}", _get())

    async def get_by_recipient_email(self, email: str) -> List[PendingTransfer]:
        stmt = select(PendingTransferRecord).where(
            func.lower(PendingTransferRecord.recipient_email) == normalize_email(email)
        ).order_by(PendingTransferRecord.created_at.desc())
        return await self._run("get by recipient", self._fetch_all(stmt))

    async def get_by_sender(self, sender_user_id: str) -> List[PendingTransfer]:
        stmt = select(PendingTransferRecord).where(
            PendingTransferRecord.sender_user_id == sender_user_id
        ).order_by(PendingTransferRecord.created_at.desc())
        return await self._run("get by sender", self._fetch_all(stmt))

    async def get_expired(self, now: datetime) -> List[PendingTransfer]:
        stmt = select(PendingTransferRecord).where(
            PendingTransferRecord.status == TransferStatus.PENDING.value,
            PendingTransferRecord.expires_at < _to_db_datetime(now)
        ).order_by(PendingTransferRecord.expires_at)
        return await self._run("get expired", self._fetch_all(stmt))

    async def get_expiring(self, now: datetime, within: timedelta) -> List[PendingTransfer]:
        db_now = _to_db_datetime(now)
        stmt = select(PendingTransferRecord).where(
            PendingTransferRecord.status == TransferStatus.PENDING.value,
            PendingTransferRecord.expires_at > db_now,
            PendingTransferRecord.expires_at <= db_now + within,
            PendingTransferRecord.last_reminder_sent_at.is_(None)
        ).order_by(PendingTransferRecord.expires_at)
        return await self._run("get expiring", self._fetch_all(stmt))

    async def update(self, transfer_id: str, **changes: Any) -> Optional[PendingTransfer]:
        forbidden = IMMUTABLE_FIELDS.intersection(changes)
        if forbidden:
            raise ValueError(f"Fields {sorted(forbidden)} cannot be changed")

        async def _update() -> Optional[PendingTransfer]:
            async with self.session_factory() as session:
                db_transfer = await self._get_record(session, transfer_id)
                if not db_transfer:
                    return None
                self._apply(db_transfer, changes)
                await session.commit()
                return self._to_entity(db_transfer)

        return await self._run(f"update {transfer_id}", _update())

    async def _fetch_all(self, stmt) -> List[PendingTransfer]:
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [self._to_entity(r) for r in result.scalars().all()]

    @staticmethod
    async def _get_record(session: AsyncSession, transfer_id: str) -> Optional[PendingTransferRecord]:
        stmt = select(PendingTransferRecord).where(PendingTransferRecord.transfer_id == transfer_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _columns(transfer: PendingTransfer) -> dict:
        return {name: getattr(transfer, name) for name in transfer.__dataclass_fields__}

    @staticmethod
    def _apply(db_transfer: PendingTransferRecord, values: dict) -> None:
        for name, value in values.items():
            if not hasattr(PendingTransferRecord, name):
                raise ValueError(f"Unknown field {name}")
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, datetime):
                value = _to_db_datetime(value)
            setattr(db_transfer, name, value)

    def _to_entity(self, db_transfer: PendingTransferRecord) -> PendingTransfer:
        return PendingTransfer(
            transfer_id=db_transfer.transfer_id,
            sender_user_id=db_transfer.sender_user_id,
            sender_email=db_transfer.sender_email or "",
            sender_name=db_transfer.sender_name,
            recipient_email=db_transfer.recipient_email,
            amount=db_transfer.amount,
            token=db_transfer.token,
            token_address=db_transfer.token_address,
            chain=db_transfer.chain,
            decimals=db_transfer.decimals,
            status=TransferStatus(db_transfer.status),
            escrow_transfer_id=db_transfer.escrow_transfer_id or "",
            escrow_tx_hash=db_transfer.escrow_tx_hash or "",
            escrow_status=EscrowStatus(db_transfer.escrow_status),
            recipient_hash=db_transfer.recipient_hash or "",
            recipient_wallet=db_transfer.recipient_wallet,
            created_at=_from_db_datetime(db_transfer.created_at),
            expires_at=_from_db_datetime(db_transfer.expires_at),
            claimed_at=_from_db_datetime(db_transfer.claimed_at),
            claimed_by_user_id=db_transfer.claimed_by_user_id,
            claim_transaction_hash=db_transfer.claim_transaction_hash,
            refund_transaction_hash=db_transfer.refund_transaction_hash,
            message=db_transfer.message,
            last_chain_sync_at=_from_db_datetime(db_transfer.last_chain_sync_at),
            last_reminder_sent_at=_from_db_datetime(db_transfer.last_reminder_sent_at),
        )
