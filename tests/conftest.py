import socket
import random
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from core.domain.entities import UserProfile
from core.interfaces.services import INotificationGateway
from core.use_cases.pending_transfer.service import PendingTransferService
from infrastructure.persistence.memory_pending_transfer_repository import InMemoryPendingTransferRepository
from infrastructure.services.memory_escrow_driver import InMemoryEscrowDriver
from infrastructure.services.user_directory_service import StaticUserDirectory
from infrastructure.workers.notification_dispatcher import NotificationDispatcher

SENDER_ID = "user-alice"
SENDER_EMAIL = "alice@example.com"
SENDER_WALLET = "0x1111111111111111111111111111111111111111"
RECIPIENT_ID = "user-bob"
RECIPIENT_EMAIL = "bob@example.com"
RECIPIENT_WALLET = "0x2222222222222222222222222222222222222222"
CUSD = "0xA99dC247d6b7B2E3ab48a1fEE101b83cD6aCd82a"


def get_free_port(start_port=8000, end_port=9000, retries=10):
    """
    Finds a free port in the specified range.
    Tries random ports and attempts to bind to them.
    """
    for _ in range(retries):
        port = random.randint(start_port, end_port)
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.bind(('127.0.0.1', port))
            sock.close()
            return port
        except OSError:
            continue
    raise RuntimeError(f"Could not find a free port in range {start_port}-{end_port} after {retries} attempts")


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_request(**overrides):
    request = {
        "recipientEmail": RECIPIENT_EMAIL,
        "senderUserId": SENDER_ID,
        "amount": "10.5",
        "token": "cUSD",
        "tokenAddress": CUSD,
        "chain": "celo",
        "decimals": 18,
        "message": "Lunch money",
    }
    request.update(overrides)
    return request


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def repository():
    return InMemoryPendingTransferRepository()


@pytest.fixture
def escrow(clock):
    return InMemoryEscrowDriver(clock=clock)


@pytest.fixture
def directory():
    return StaticUserDirectory({
        SENDER_ID: UserProfile(user_id=SENDER_ID, email=SENDER_EMAIL, display_name="Alice",
                               wallets={"celo": SENDER_WALLET}, is_verified=True),
        RECIPIENT_ID: UserProfile(user_id=RECIPIENT_ID, email=RECIPIENT_EMAIL, display_name="Bob",
                                  wallets={"celo": RECIPIENT_WALLET}, is_verified=True),
    })


@pytest.fixture
def gateway():
    gateway = AsyncMock(spec=INotificationGateway)
    for name in ("send_invite", "send_sender_confirmation", "send_claimed", "send_expiring", "send_expired"):
        getattr(gateway, name).return_value = True
    return gateway


@pytest.fixture
def dispatcher():
    return NotificationDispatcher(max_pending=10)


@pytest.fixture
def service(repository, escrow, directory, gateway, dispatcher, clock):
    return PendingTransferService(
        transfer_repository=repository,
        escrow_driver=escrow,
        user_directory=directory,
        notification_gateway=gateway,
        dispatcher=dispatcher,
        supported_chains=["celo", "celo-sepolia"],
        expiry=timedelta(days=7),
        reminder_window=timedelta(hours=48),
        clock=clock,
    )
