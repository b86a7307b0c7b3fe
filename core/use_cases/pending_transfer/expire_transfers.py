from datetime import datetime
from typing import Callable, Optional

from loguru import logger

from core.domain.entities import EscrowStatus, PendingTransfer, TransferStatus, utcnow
from core.domain.exceptions import NotRegisteredError, OnchainFailure, PendingTransferError, WalletNotConfiguredError
from core.interfaces.repositories import IPendingTransferRepository
from core.interfaces.services import IEscrowDriver, INotificationGateway, ITaskDispatcher, IUserDirectory
from core.use_cases.pending_transfer.sync_transfer import SyncTransferStatus


class ExpirePendingTransfers:
    """Refund every pending transfer whose deadline has passed."""

    def __init__(self,
                 transfer_repository: IPendingTransferRepository,
                 escrow_driver: IEscrowDriver,
                 user_directory: IUserDirectory,
                 notification_gateway: INotificationGateway,
                 dispatcher: ITaskDispatcher,
                 clock: Callable[[], datetime] = utcnow,
                 sync_use_case: Optional[SyncTransferStatus] = None):
        self.transfer_repository = transfer_repository
        self.escrow_driver = escrow_driver
        self.user_directory = user_directory
        self.notification_gateway = notification_gateway
        self.dispatcher = dispatcher
        self.clock = clock
        self.sync_use_case = sync_use_case

    async def execute(self) -> int:
        expired = await self.transfer_repository.get_expired(self.clock())
        if not expired:
            return 0
        logger.info(f"Found {len(expired)} expired pending transfers")

        processed = 0
        for transfer in expired:
            try:
                await self._expire_one(transfer)
                processed += 1
            except PendingTransferError as e:
                logger.error(f"Failed to expire transfer {transfer.transfer_id}: {e}")
            except Exception as e:
                logger.exception(f"Unexpected error expiring transfer {transfer.transfer_id}: {e}")

        logger.info(f"Expired {processed} of {len(expired)} transfers")
        return processed

    async def _expire_one(self, transfer: PendingTransfer) -> None:
        if not transfer.is_registered:
            raise NotRegisteredError("Transfer was never registered on-chain",
                                     transfer_id=transfer.transfer_id, status=transfer.status)
        sender_wallet = await self.user_directory.get_wallet_for_chain(transfer.sender_user_id, transfer.chain)
        if not sender_wallet:
            raise WalletNotConfiguredError(f"Sender has no wallet for chain {transfer.chain}",
                                           transfer_id=transfer.transfer_id, status=transfer.status)

        try:
            receipt = await self.escrow_driver.refund_transfer(transfer.escrow_transfer_id, sender_wallet)
        except OnchainFailure:
            await self._reconcile(transfer)
            raise
        updated = await self.transfer_repository.update(
            transfer.transfer_id,
            status=TransferStatus.EXPIRED,
            escrow_status=EscrowStatus.EXPIRED,
            refund_transaction_hash=receipt.tx_hash,
        )
        logger.info(f"Transfer {transfer.transfer_id} expired and refunded, tx {receipt.tx_hash}")

        notified = updated or transfer
        self.dispatcher.dispatch(f"notify expired {transfer.transfer_id}",
                                 lambda: self._notify_sender(notified))

    async def _reconcile(self, transfer: PendingTransfer) -> None:
        """Pull the chain status after a failed refund; a record settled on-chain leaves the sweep."""
        if self.sync_use_case is None:
            return
        try:
            synced = await self.sync_use_case.sync(transfer)
        except PendingTransferError as e:
            logger.warning(f"Sync after failed refund of {transfer.transfer_id} failed: {e}")
            return
        if synced.status is not TransferStatus.PENDING:
            logger.info(f"Transfer {transfer.transfer_id} is already {synced.status.value} on-chain, "
                        f"record updated")

    async def _notify_sender(self, transfer: PendingTransfer) -> None:
        sender_email = transfer.sender_email
        sender_name = transfer.sender_name
        if not sender_email:
            sender = await self.user_directory.get_user_profile(transfer.sender_user_id)
            if not sender:
                return
            sender_email, sender_name = sender.email, sender.name
        await self.notification_gateway.send_expired(
            sender_email, sender_name or sender_email, transfer.recipient_email, transfer.amount, transfer.token)
