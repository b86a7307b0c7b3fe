from datetime import datetime
from typing import Callable

from loguru import logger

from core.domain.entities import PendingTransfer, TransferStatus, utcnow
from core.domain.exceptions import NotFoundError, PendingTransferError
from core.domain.value_objects import map_chain_status
from core.interfaces.repositories import IPendingTransferRepository
from core.interfaces.services import IEscrowDriver


class SyncTransferStatus:
    """Reconcile a record with the escrow contract.

    Read-only against the chain. The record is written only when the mapped
    (status, escrow_status) pair differs from what is stored, so repeated
    calls with an unchanged chain state are free of writes.
    """

    def __init__(self,
                 transfer_repository: IPendingTransferRepository,
                 escrow_driver: IEscrowDriver,
                 clock: Callable[[], datetime] = utcnow):
        self.transfer_repository = transfer_repository
        self.escrow_driver = escrow_driver
        self.clock = clock

    async def execute(self, transfer_id: str) -> PendingTransfer:
        transfer = await self.transfer_repository.get_by_id(transfer_id)
        if not transfer:
            raise NotFoundError(f"Transfer {transfer_id} not found", transfer_id=transfer_id)
        return await self.sync(transfer)

    async def sync(self, transfer: PendingTransfer) -> PendingTransfer:
        if not transfer.is_registered:
            logger.warning(f"Transfer {transfer.transfer_id} has no escrow id, nothing to sync")
            return transfer

        chain_status = await self.escrow_driver.get_status(transfer.escrow_transfer_id)
        if chain_status is None:
            logger.warning(f"Escrow id {transfer.escrow_transfer_id} of {transfer.transfer_id} "
                           f"is unknown to the contract")
            return transfer

        now = self.clock()
        status, escrow_status = map_chain_status(chain_status, transfer.status, transfer.is_expired_at(now))
        if status == transfer.status and escrow_status == transfer.escrow_status:
            return transfer

        logger.info(f"Sync {transfer.transfer_id}: {transfer.status.value}/{transfer.escrow_status.value} "
                    f"-> {status.value}/{escrow_status.value}")
        updated = await self.transfer_repository.update(
            transfer.transfer_id,
            status=status,
            escrow_status=escrow_status,
            last_chain_sync_at=now,
        )
        return updated or transfer


class SyncSenderTransfers:
    """Sync every pending record of one sender, isolating per-record failures."""

    def __init__(self,
                 transfer_repository: IPendingTransferRepository,
                 sync_use_case: SyncTransferStatus):
        self.transfer_repository = transfer_repository
        self.sync_use_case = sync_use_case

    async def execute(self, sender_user_id: str) -> int:
        transfers = await self.transfer_repository.get_by_sender(sender_user_id)
        synced = 0
        for transfer in transfers:
            if transfer.status is not TransferStatus.PENDING:
                continue
            try:
                await self.sync_use_case.sync(transfer)
                synced += 1
            except PendingTransferError as e:
                logger.warning(f"Sync failed for {transfer.transfer_id}: {e}")
            except Exception as e:
                logger.exception(f"Unexpected error syncing {transfer.transfer_id}: {e}")
        logger.info(f"Synced {synced} pending transfers of sender {sender_user_id}")
        return synced
