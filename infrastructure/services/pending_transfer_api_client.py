import asyncio
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger

from core.domain.entities import PendingTransfer, PendingTransferSummary, TransferStatus
from core.domain.exceptions import ERRORS_BY_KIND, PendingTransferError, StoreFailure
from core.domain.schemas import CreatePendingTransferRequest
from core.interfaces.services import IPendingTransferService


class PendingTransferApiClient(IPendingTransferService):
    """
    Remote implementation of the service surface over the HTTP API.

    Error responses are turned back into the matching PendingTransferError
    subclass, so callers handle local and remote mode the same way.
    """

    def __init__(self, base_url: str, api_key: str, cron_secret: Optional[str] = None, timeout: float = 8.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.cron_secret = cron_secret
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session

    async def create_pending_transfer(self, request: CreatePendingTransferRequest) -> PendingTransfer:
        data = await self._request("POST", "/api/pending-transfers",
                                   json=request.model_dump(by_alias=True, exclude_none=True))
        return PendingTransfer.from_dict(data["transfer"])

    async def get_pending_transfers(self, recipient_email: str) -> List[PendingTransferSummary]:
        data = await self._request("GET", "/api/pending-transfers", params={"recipientEmail": recipient_email})
        return [PendingTransferSummary.from_dict(t) for t in data.get("transfers", [])]

    async def get_sent_pending_transfers(self, sender_user_id: str) -> List[PendingTransferSummary]:
        data = await self._request("GET", "/api/pending-transfers", params={"senderUserId": sender_user_id})
        return [PendingTransferSummary.from_dict(t) for t in data.get("transfers", [])]

    async def get_transfer_details(self, transfer_id: str) -> Optional[PendingTransfer]:
        data = await self._request("GET", "/api/pending-transfers", params={"transferId": transfer_id},
                                   allow_not_found=True)
        if data is None:
            return None
        return PendingTransfer.from_dict(data["transfer"])

    async def claim_pending_transfer(self, transfer_id: str, claimant_user_id: str) -> str:
        data = await self._patch("claim", transferId=transfer_id, claimantUserId=claimant_user_id)
        return data["claimTransactionHash"]

    async def cancel_pending_transfer(self, transfer_id: str, sender_user_id: str) -> str:
        data = await self._patch("cancel", transferId=transfer_id, senderUserId=sender_user_id)
        return data["refundTransactionHash"]

    async def auto_claim_for_new_user(self, user_id: str, email: str) -> int:
        data = await self._patch("auto-claim", userId=user_id, email=email)
        return int(data["claimedCount"])

    async def sync_transfer_status(self, transfer_id: str) -> PendingTransfer:
        data = await self._patch("sync", transferId=transfer_id)
        return PendingTransfer.from_dict(data["transfer"])

    async def sync_all_for_sender(self, sender_user_id: str) -> int:
        data = await self._patch("sync", senderUserId=sender_user_id)
        return int(data["synced"])

    async def expire_pending_transfers(self) -> int:
        data = await self._request("POST", "/api/cron/process-expiry", token=self.cron_secret)
        return int(data["processed"])

    async def send_expiry_reminders(self) -> int:
        data = await self._request("POST", "/api/cron/send-reminders", token=self.cron_secret)
        return int(data["sent"])

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def _patch(self, action: str, **body: Any) -> Dict[str, Any]:
        return await self._request("PATCH", "/api/pending-transfers", json={"action": action, **body})

    async def _request(self, method: str, path: str, token: Optional[str] = None, allow_not_found: bool = False,
                       **kwargs: Any) -> Any:
        headers = {"Authorization": f"Bearer {token or self.api_key}"}
        try:
            async with self._get_session().request(method, f"{self.base_url}{path}", headers=headers,
                                                   **kwargs) as response:
                try:
                    data = await response.json(content_type=None)
                except ValueError:
                    data = None
                if response.status < 400:
                    return data
                if response.status == 404 and allow_not_found:
                    return None
                raise self._to_error(response.status, data)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise StoreFailure(f"Pending transfer API unavailable: {e}")

    @staticmethod
    def _to_error(http_status: int, data: Any) -> PendingTransferError:
        if not isinstance(data, dict):
            return PendingTransferError(f"Pending transfer API returned {http_status}")
        error_cls = ERRORS_BY_KIND.get(data.get("error"), PendingTransferError)
        status = data.get("status")
        return error_cls(
            data.get("message") or f"Pending transfer API returned {http_status}",
            transfer_id=data.get("transferId"),
            status=TransferStatus(status) if status else None,
        )
