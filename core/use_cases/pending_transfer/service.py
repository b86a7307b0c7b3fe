from datetime import datetime, timedelta
from typing import Callable, Collection, List, Optional

from core.domain.entities import PendingTransfer, PendingTransferSummary, utcnow
from core.domain.schemas import CreatePendingTransferRequest
from core.interfaces.repositories import IPendingTransferRepository
from core.interfaces.services import (IEscrowDriver, INotificationGateway, IPendingTransferService, ITaskDispatcher,
                                      IUserDirectory)
from core.use_cases.pending_transfer.auto_claim import AutoClaimForNewUser
from core.use_cases.pending_transfer.cancel_transfer import CancelPendingTransfer
from core.use_cases.pending_transfer.claim_transfer import ClaimPendingTransfer
from core.use_cases.pending_transfer.create_transfer import CreatePendingTransfer
from core.use_cases.pending_transfer.expire_transfers import ExpirePendingTransfers
from core.use_cases.pending_transfer.query_transfers import (GetPendingTransfers, GetSentPendingTransfers,
                                                             GetTransferDetails)
from core.use_cases.pending_transfer.send_reminders import SendExpiryReminders
from core.use_cases.pending_transfer.sync_transfer import SyncSenderTransfers, SyncTransferStatus


class PendingTransferService(IPendingTransferService):
    """
    Owns the lifecycle of email-addressed escrow transfers.

    One instance per process, shared by the HTTP boundary and the scheduler.
    Every operation is delegated to a single-purpose use case wired here.
    """

    def __init__(self,
                 transfer_repository: IPendingTransferRepository,
                 escrow_driver: IEscrowDriver,
                 user_directory: IUserDirectory,
                 notification_gateway: INotificationGateway,
                 dispatcher: ITaskDispatcher,
                 supported_chains: Collection[str],
                 expiry: timedelta = timedelta(days=7),
                 reminder_window: timedelta = timedelta(hours=48),
                 clock: Callable[[], datetime] = utcnow):
        self.transfer_repository = transfer_repository
        self.escrow_driver = escrow_driver
        self.user_directory = user_directory
        self.notification_gateway = notification_gateway
        self.dispatcher = dispatcher

        self._create = CreatePendingTransfer(transfer_repository, escrow_driver, user_directory,
                                             notification_gateway, dispatcher, supported_chains, expiry, clock)
        self._sync = SyncTransferStatus(transfer_repository, escrow_driver, clock)
        self._sync_sender = SyncSenderTransfers(transfer_repository, self._sync)
        self._claim = ClaimPendingTransfer(transfer_repository, escrow_driver, user_directory,
                                           notification_gateway, dispatcher, clock)
        self._cancel = CancelPendingTransfer(transfer_repository, escrow_driver, user_directory, self._sync)
        self._auto_claim = AutoClaimForNewUser(transfer_repository, self._claim)
        self._expire = ExpirePendingTransfers(transfer_repository, escrow_driver, user_directory,
                                              notification_gateway, dispatcher, clock, self._sync)
        self._reminders = SendExpiryReminders(transfer_repository, notification_gateway, reminder_window, clock)
        self._get_pending = GetPendingTransfers(transfer_repository, clock)
        self._get_sent = GetSentPendingTransfers(transfer_repository, clock)
        self._get_details = GetTransferDetails(transfer_repository)

    async def create_pending_transfer(self, request: CreatePendingTransferRequest) -> PendingTransfer:
        return await self._create.execute(request)

    async def get_pending_transfers(self, recipient_email: str) -> List[PendingTransferSummary]:
        return await self._get_pending.execute(recipient_email)

    async def get_sent_pending_transfers(self, sender_user_id: str) -> List[PendingTransferSummary]:
        return await self._get_sent.execute(sender_user_id)

    async def get_transfer_details(self, transfer_id: str) -> Optional[PendingTransfer]:
        return await self._get_details.execute(transfer_id)

    async def claim_pending_transfer(self, transfer_id: str, claimant_user_id: str) -> str:
        return await self._claim.execute(transfer_id, claimant_user_id)

    async def cancel_pending_transfer(self, transfer_id: str, sender_user_id: str) -> str:
        return await self._cancel.execute(transfer_id, sender_user_id)

    async def auto_claim_for_new_user(self, user_id: str, email: str) -> int:
        return await self._auto_claim.execute(user_id, email)

    async def sync_transfer_status(self, transfer_id: str) -> PendingTransfer:
        return await self._sync.execute(transfer_id)

    async def sync_all_for_sender(self, sender_user_id: str) -> int:
        return await self._sync_sender.execute(sender_user_id)

    async def expire_pending_transfers(self) -> int:
        return await self._expire.execute()

    async def send_expiry_reminders(self) -> int:
        return await self._reminders.execute()
