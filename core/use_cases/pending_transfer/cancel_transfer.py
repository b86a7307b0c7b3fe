from loguru import logger

from core.domain.entities import EscrowStatus, TransferStatus
from core.domain.exceptions import (AlreadyFinalizedError, NotFoundError, NotRegisteredError, UnauthorizedError,
                                    WalletNotConfiguredError)
from core.interfaces.repositories import IPendingTransferRepository
from core.interfaces.services import IEscrowDriver, IUserDirectory
from core.use_cases.pending_transfer.sync_transfer import SyncTransferStatus


class CancelPendingTransfer:
    def __init__(self,
                 transfer_repository: IPendingTransferRepository,
                 escrow_driver: IEscrowDriver,
                 user_directory: IUserDirectory,
                 sync_use_case: SyncTransferStatus):
        self.transfer_repository = transfer_repository
        self.escrow_driver = escrow_driver
        self.user_directory = user_directory
        self.sync_use_case = sync_use_case

    async def execute(self, transfer_id: str, sender_user_id: str) -> str:
        """Refund a pending transfer to its sender and return the refund tx hash."""
        transfer = await self.transfer_repository.get_by_id(transfer_id)
        if not transfer:
            raise NotFoundError(f"Transfer {transfer_id} not found", transfer_id=transfer_id)
        if transfer.sender_user_id != sender_user_id:
            raise UnauthorizedError("Only the sender can cancel this transfer",
                                    transfer_id=transfer_id, status=transfer.status)
        if transfer.status is not TransferStatus.PENDING:
            raise AlreadyFinalizedError(f"Transfer already {transfer.status.value}",
                                        transfer_id=transfer_id, status=transfer.status)
        if not transfer.is_registered:
            raise NotRegisteredError("Transfer was never registered on-chain, contact support",
                                     transfer_id=transfer_id, status=transfer.status)

        # 1. The chain may have moved on since the last sync
        transfer = await self.sync_use_case.sync(transfer)
        if transfer.status is not TransferStatus.PENDING:
            raise AlreadyFinalizedError(f"Transfer already {transfer.status.value}",
                                        transfer_id=transfer_id, status=transfer.status)

        # 2. Refund destination
        sender_wallet = await self.user_directory.get_wallet_for_chain(sender_user_id, transfer.chain)
        if not sender_wallet:
            raise WalletNotConfiguredError(f"No wallet configured for chain {transfer.chain}",
                                           transfer_id=transfer_id, status=transfer.status)

        # 3. Best-effort pre-check; a refund losing a race still fails on-chain
        if not await self.escrow_driver.is_cancellable(transfer.escrow_transfer_id):
            transfer = await self.sync_use_case.sync(transfer)
            raise AlreadyFinalizedError("Transfer can no longer be cancelled",
                                        transfer_id=transfer_id, status=transfer.status)

        receipt = await self.escrow_driver.refund_transfer(transfer.escrow_transfer_id, sender_wallet)

        await self.transfer_repository.update(
            transfer_id,
            status=TransferStatus.CANCELLED,
            escrow_status=EscrowStatus.REFUNDED,
            refund_transaction_hash=receipt.tx_hash,
        )
        logger.info(f"Transfer {transfer_id} cancelled by sender {sender_user_id}, tx {receipt.tx_hash}")
        return receipt.tx_hash
