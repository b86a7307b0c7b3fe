from loguru import logger

from core.domain.entities import TransferStatus
from core.domain.exceptions import PendingTransferError
from core.interfaces.repositories import IPendingTransferRepository
from core.use_cases.pending_transfer.claim_transfer import ClaimPendingTransfer


class AutoClaimForNewUser:
    """Claim everything waiting for a freshly registered email."""

    def __init__(self,
                 transfer_repository: IPendingTransferRepository,
                 claim_use_case: ClaimPendingTransfer):
        self.transfer_repository = transfer_repository
        self.claim_use_case = claim_use_case

    async def execute(self, user_id: str, email: str) -> int:
        transfers = await self.transfer_repository.get_by_recipient_email(email)
        pending = [t for t in transfers if t.status is TransferStatus.PENDING]
        if not pending:
            return 0

        claimed = 0
        for transfer in pending:
            try:
                await self.claim_use_case.execute(transfer.transfer_id, user_id)
                claimed += 1
            except PendingTransferError as e:
                logger.warning(f"Auto-claim of {transfer.transfer_id} for {user_id} failed: {e}")
            except Exception as e:
                logger.exception(f"Unexpected error auto-claiming {transfer.transfer_id}: {e}")

        logger.info(f"Auto-claimed {claimed} of {len(pending)} transfers for user {user_id}")
        return claimed
