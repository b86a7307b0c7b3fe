from datetime import datetime
from typing import Callable

from loguru import logger

from core.domain.entities import EscrowStatus, PendingTransfer, TransferStatus, normalize_email, utcnow
from core.domain.exceptions import (AlreadyFinalizedError, ExpiredError, NotFoundError, NotRegisteredError,
                                    UnauthorizedError, WalletNotConfiguredError)
from core.interfaces.repositories import IPendingTransferRepository
from core.interfaces.services import IEscrowDriver, INotificationGateway, ITaskDispatcher, IUserDirectory


class ClaimPendingTransfer:
    def __init__(self,
                 transfer_repository: IPendingTransferRepository,
                 escrow_driver: IEscrowDriver,
                 user_directory: IUserDirectory,
                 notification_gateway: INotificationGateway,
                 dispatcher: ITaskDispatcher,
                 clock: Callable[[], datetime] = utcnow):
        self.transfer_repository = transfer_repository
        self.escrow_driver = escrow_driver
        self.user_directory = user_directory
        self.notification_gateway = notification_gateway
        self.dispatcher = dispatcher
        self.clock = clock

    async def execute(self, transfer_id: str, claimant_user_id: str) -> str:
        """Release the escrow to the claimant's wallet and return the claim tx hash."""
        transfer = await self.transfer_repository.get_by_id(transfer_id)
        if not transfer:
            raise NotFoundError(f"Transfer {transfer_id} not found", transfer_id=transfer_id)

        # 1. Identity first, whatever the status
        claimant = await self.user_directory.get_user_profile(claimant_user_id)
        if not claimant or normalize_email(claimant.email) != normalize_email(transfer.recipient_email):
            raise UnauthorizedError("Transfer is not addressed to this user",
                                    transfer_id=transfer_id, status=transfer.status)
        if not claimant.is_verified:
            raise UnauthorizedError("Claimant email is not verified",
                                    transfer_id=transfer_id, status=transfer.status)

        # 2. State and deadline
        if transfer.status is not TransferStatus.PENDING:
            raise AlreadyFinalizedError(f"Transfer already {transfer.status.value}",
                                        transfer_id=transfer_id, status=transfer.status)
        if transfer.is_expired_at(self.clock()):
            raise ExpiredError("Transfer has expired", transfer_id=transfer_id, status=transfer.status)

        # 3. Destination wallet and escrow registration
        recipient_wallet = claimant.wallet_for_chain(transfer.chain)
        if not recipient_wallet:
            recipient_wallet = await self.user_directory.get_wallet_for_chain(claimant_user_id, transfer.chain)
        if not recipient_wallet:
            raise WalletNotConfiguredError(f"No wallet configured for chain {transfer.chain}",
                                           transfer_id=transfer_id, status=transfer.status)
        if not transfer.is_registered:
            raise NotRegisteredError("Transfer was never registered on-chain, contact support",
                                     transfer_id=transfer_id, status=transfer.status)

        # 4. On-chain claim gates the write
        receipt = await self.escrow_driver.claim_transfer(
            transfer.escrow_transfer_id, recipient_wallet, transfer.recipient_email)

        updated = await self.transfer_repository.update(
            transfer_id,
            status=TransferStatus.CLAIMED,
            escrow_status=EscrowStatus.CLAIMED,
            claimed_at=self.clock(),
            claimed_by_user_id=claimant_user_id,
            claim_transaction_hash=receipt.tx_hash,
            recipient_wallet=recipient_wallet,
        )
        logger.info(f"Transfer {transfer_id} claimed by {claimant_user_id}, tx {receipt.tx_hash}")

        notified = updated or transfer
        self.dispatcher.dispatch(f"notify claimed {transfer_id}", lambda: self._notify_sender(notified))
        return receipt.tx_hash

    async def _notify_sender(self, transfer: PendingTransfer) -> None:
        sender_email = transfer.sender_email
        sender_name = transfer.sender_name
        if not sender_email:
            sender = await self.user_directory.get_user_profile(transfer.sender_user_id)
            if not sender:
                logger.warning(f"Sender {transfer.sender_user_id} not found, claim of "
                               f"{transfer.transfer_id} not notified")
                return
            sender_email, sender_name = sender.email, sender.name
        await self.notification_gateway.send_claimed(
            sender_email, sender_name or sender_email, transfer.recipient_email, transfer.amount, transfer.token)
