import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Collection, Dict, Optional, Union

from loguru import logger
from pydantic import ValidationError as SchemaValidationError

from core.domain.entities import EscrowStatus, PendingTransfer, TransferStatus, UserProfile, utcnow
from core.domain.exceptions import OnchainFailure, PendingTransferError, ValidationError
from core.domain.schemas import CreatePendingTransferRequest
from core.interfaces.repositories import IPendingTransferRepository
from core.interfaces.services import IEscrowDriver, INotificationGateway, ITaskDispatcher, IUserDirectory


class CreatePendingTransfer:
    def __init__(self,
                 transfer_repository: IPendingTransferRepository,
                 escrow_driver: IEscrowDriver,
                 user_directory: IUserDirectory,
                 notification_gateway: INotificationGateway,
                 dispatcher: ITaskDispatcher,
                 supported_chains: Collection[str],
                 expiry: timedelta = timedelta(days=7),
                 clock: Callable[[], datetime] = utcnow):
        self.transfer_repository = transfer_repository
        self.escrow_driver = escrow_driver
        self.user_directory = user_directory
        self.notification_gateway = notification_gateway
        self.dispatcher = dispatcher
        self.supported_chains = set(supported_chains)
        self.expiry = expiry
        self.clock = clock

    async def execute(self, request: Union[CreatePendingTransferRequest, Dict[str, Any]]) -> PendingTransfer:
        # 1. Validation, before any side effect
        validated = self._validate(request)

        # 2. Sender profile is best-effort; the record can be back-filled later
        sender: Optional[UserProfile] = None
        try:
            sender = await self.user_directory.get_user_profile(validated.sender_user_id)
        except PendingTransferError as e:
            logger.warning(f"Unable to fetch sender profile {validated.sender_user_id} before transfer creation: {e}")

        transfer_id = f"pending_{uuid.uuid4().hex}"
        now = self.clock()
        expires_at = now + self.expiry

        # 3. On-chain registration; failure aborts with nothing persisted
        recipient_hash = self.escrow_driver.compute_recipient_hash(validated.recipient_email)
        try:
            receipt = await self.escrow_driver.create_transfer(
                recipient_hash=recipient_hash,
                amount=validated.amount,
                decimals=validated.decimals,
                token_address=validated.token_address,
                chain=validated.chain,
                expiry=int(expires_at.timestamp())
            )
        except OnchainFailure as e:
            logger.error(f"Escrow registration failed for {transfer_id}: {e}")
            e.transfer_id = transfer_id
            raise
        if not receipt.escrow_transfer_id:
            raise OnchainFailure("Escrow contract returned an empty transfer id", transfer_id=transfer_id)

        transfer = PendingTransfer(
            transfer_id=transfer_id,
            sender_user_id=validated.sender_user_id,
            sender_email=sender.email if sender else "",
            sender_name=sender.name if sender else None,
            recipient_email=validated.recipient_email,
            amount=validated.amount,
            token=validated.token,
            token_address=validated.token_address,
            chain=validated.chain,
            decimals=validated.decimals,
            status=TransferStatus.PENDING,
            escrow_transfer_id=receipt.escrow_transfer_id,
            escrow_tx_hash=receipt.tx_hash,
            escrow_status=EscrowStatus.PENDING,
            recipient_hash=receipt.recipient_hash or recipient_hash,
            message=validated.message,
            created_at=now,
            expires_at=expires_at,
        )

        # 4. Persist strictly after the chain accepted the transfer
        try:
            transfer = await self.transfer_repository.create(transfer)
        except PendingTransferError:
            logger.error(f"Transfer {transfer_id} registered on-chain as {receipt.escrow_transfer_id} "
                         f"(tx {receipt.tx_hash}) but could not be stored; back-fill required")
            raise
        logger.info(f"Created pending transfer {transfer_id} for {transfer.recipient_email}, "
                    f"escrow id {transfer.escrow_transfer_id}")

        # 5. Notifications never block or roll back the transfer
        self.dispatcher.dispatch(f"notify created {transfer_id}",
                                 lambda: self._notify_created(transfer, sender))
        return transfer

    def _validate(self, request: Union[CreatePendingTransferRequest, Dict[str, Any]]) -> CreatePendingTransferRequest:
        try:
            if isinstance(request, CreatePendingTransferRequest):
                validated = CreatePendingTransferRequest.model_validate(request.model_dump())
            else:
                validated = CreatePendingTransferRequest.model_validate(request)
        except SchemaValidationError as e:
            raise ValidationError(f"Invalid transfer request: {e}")
        if validated.chain not in self.supported_chains:
            raise ValidationError(f"Unsupported chain {validated.chain}")
        return validated

    async def _notify_created(self, transfer: PendingTransfer, sender: Optional[UserProfile]) -> None:
        if sender is None:
            sender = await self.user_directory.get_user_profile(transfer.sender_user_id)
        if sender is None:
            logger.warning(f"Sender {transfer.sender_user_id} not found, skipping notifications for "
                           f"{transfer.transfer_id}")
            return

        try:
            sent = await self.notification_gateway.send_invite(
                transfer.recipient_email, sender.name, sender.email,
                transfer.amount, transfer.token, transfer.transfer_id)
            logger.info(f"Invite for {transfer.transfer_id} {'sent' if sent else 'not accepted'}")
        except Exception as e:
            logger.warning(f"Invite notification failed for {transfer.transfer_id}: {e}")

        try:
            sent = await self.notification_gateway.send_sender_confirmation(
                sender.email, sender.name, transfer.recipient_email, transfer.amount, transfer.token)
            logger.info(f"Sender confirmation for {transfer.transfer_id} {'sent' if sent else 'not accepted'}")
        except Exception as e:
            logger.warning(f"Sender confirmation failed for {transfer.transfer_id}: {e}")
