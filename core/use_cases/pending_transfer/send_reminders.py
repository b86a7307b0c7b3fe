from datetime import datetime, timedelta
from math import ceil
from typing import Callable

from loguru import logger

from core.domain.entities import utcnow
from core.interfaces.repositories import IPendingTransferRepository
from core.interfaces.services import INotificationGateway


class SendExpiryReminders:
    """Warn recipients once when their transfer is about to expire. Never changes status."""

    def __init__(self,
                 transfer_repository: IPendingTransferRepository,
                 notification_gateway: INotificationGateway,
                 reminder_window: timedelta = timedelta(hours=48),
                 clock: Callable[[], datetime] = utcnow):
        self.transfer_repository = transfer_repository
        self.notification_gateway = notification_gateway
        self.reminder_window = reminder_window
        self.clock = clock

    async def execute(self) -> int:
        now = self.clock()
        expiring = await self.transfer_repository.get_expiring(now, self.reminder_window)
        if not expiring:
            return 0

        sent = 0
        for transfer in expiring:
            hours_left = max(0, ceil((transfer.expires_at - now).total_seconds() / 3600))
            try:
                accepted = await self.notification_gateway.send_expiring(
                    transfer.recipient_email,
                    transfer.sender_name or transfer.sender_email,
                    transfer.amount,
                    transfer.token,
                    hours_left,
                    transfer.transfer_id,
                )
            except Exception as e:
                logger.warning(f"Reminder for {transfer.transfer_id} failed: {e}")
                continue
            if not accepted:
                logger.warning(f"Reminder for {transfer.transfer_id} was not accepted by the provider")
                continue

            try:
                await self.transfer_repository.update(transfer.transfer_id, last_reminder_sent_at=now)
            except Exception as e:
                logger.error(f"Reminder for {transfer.transfer_id} sent but not recorded: {e}")
            sent += 1

        logger.info(f"Sent {sent} expiry reminders")
        return sent
