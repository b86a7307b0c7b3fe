import asyncio
import os
from typing import Any, Optional

import aiohttp
from jinja2 import Environment, FileSystemLoader, select_autoescape
from loguru import logger

from core.interfaces.services import INotificationGateway

TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "email_templates")


class EmailNotificationService(INotificationGateway):
    """Sends transactional emails through `POST {api_url}/api/send-email`.

    Provider errors are logged and reported as False; callers never see them.
    """

    def __init__(self, api_url: str, api_key: Optional[str], support_email: str, app_url: str,
                 timeout: float = 8.0, session: Optional[aiohttp.ClientSession] = None):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.support_email = support_email
        self.app_url = app_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self.templates = Environment(
            loader=FileSystemLoader(TEMPLATES_DIR),
            autoescape=select_autoescape(["html"]),
        )

    async def send_invite(self, recipient_email: str, sender_name: str, sender_email: Optional[str],
                          amount: str, token: str, transfer_id: str) -> bool:
        return await self._send(
            recipient_email,
            f"You received {amount} {token} from {sender_name}!",
            "invite.html",
            sender_name=sender_name, sender_email=sender_email, amount=amount, token=token,
            claim_url=f"{self.app_url}/claim/{transfer_id}",
        )

    async def send_sender_confirmation(self, sender_email: str, sender_name: str, recipient_email: str,
                                       amount: str, token: str) -> bool:
        return await self._send(
            sender_email,
            f"Your {amount} {token} to {recipient_email} is waiting to be claimed",
            "sender_confirmation.html",
            sender_name=sender_name, recipient_email=recipient_email, amount=amount, token=token,
        )

    async def send_claimed(self, sender_email: str, sender_name: str, recipient_email: str,
                           amount: str, token: str) -> bool:
        return await self._send(
            sender_email,
            f"{recipient_email} claimed your {amount} {token}",
            "claimed.html",
            sender_name=sender_name, recipient_email=recipient_email, amount=amount, token=token,
        )

    async def send_expiring(self, recipient_email: str, sender_name: str, amount: str, token: str,
                            hours_left: int, transfer_id: str) -> bool:
        return await self._send(
            recipient_email,
            f"Reminder: claim your {amount} {token} ({hours_left} hours left)",
            "expiring.html",
            sender_name=sender_name, amount=amount, token=token, hours_left=hours_left,
            claim_url=f"{self.app_url}/claim/{transfer_id}",
        )

    async def send_expired(self, sender_email: str, sender_name: str, recipient_email: str,
                           amount: str, token: str) -> bool:
        return await self._send(
            sender_email,
            f"Unclaimed transfer returned: {amount} {token}",
            "expired.html",
            sender_name=sender_name, recipient_email=recipient_email, amount=amount, token=token,
        )

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def render(self, template_name: str, **context: Any) -> str:
        context.setdefault("app_url", self.app_url)
        context.setdefault("support_email", self.support_email)
        return self.templates.get_template(template_name).render(**context)

    async def _send(self, to: str, subject: str, template_name: str, **context: Any) -> bool:
        if not self.api_key:
            logger.warning(f"Email API key is not configured, email to {to} not sent")
            return False

        payload = {
            "to": to,
            "subject": subject,
            "html": self.render(template_name, **context),
            "from": f"MetaSend <{self.support_email}>",
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with self._get_session().post(f"{self.api_url}/api/send-email", json=payload,
                                                headers=headers) as response:
                if response.status >= 400:
                    text = await response.text()
                    logger.warning(f"Email API returned {response.status} for {to}: {text[:100]}")
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Email to {to} failed: {e}")
            return False

        logger.info(f"Email '{subject}' sent to {to}")
        return True

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session
