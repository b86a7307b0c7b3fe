from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as SchemaValidationError

from core.domain.entities import EscrowStatus, PendingTransfer, PendingTransferSummary, TransferStatus
from core.domain.schemas import CreatePendingTransferRequest
from core.domain.value_objects import UINT96_MAX, map_chain_status, parse_status_code, to_atomic_amount
from tests.conftest import make_request

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def make_transfer(**overrides) -> PendingTransfer:
    values = dict(
        transfer_id="pending_abc",
        sender_user_id="user-alice",
        sender_email="alice@example.com",
        sender_name="Alice",
        recipient_email="bob@example.com",
        amount="10.5",
        token="cUSD",
        token_address="0xA99dC247d6b7B2E3ab48a1fEE101b83cD6aCd82a",
        chain="celo",
        decimals=18,
        escrow_transfer_id="0x" + "ab" * 32,
        escrow_tx_hash="0x" + "cd" * 32,
        recipient_hash="0x" + "ef" * 32,
        created_at=NOW,
        expires_at=NOW + timedelta(days=7),
    )
    values.update(overrides)
    return PendingTransfer(**values)


@pytest.mark.parametrize("chain_status, current, past_expiry, expected", [
    (EscrowStatus.PENDING, TransferStatus.PENDING, False, (TransferStatus.PENDING, EscrowStatus.PENDING)),
    (EscrowStatus.CLAIMED, TransferStatus.PENDING, False, (TransferStatus.CLAIMED, EscrowStatus.CLAIMED)),
    (EscrowStatus.CLAIMED, TransferStatus.CANCELLED, True, (TransferStatus.CLAIMED, EscrowStatus.CLAIMED)),
    (EscrowStatus.EXPIRED, TransferStatus.PENDING, True, (TransferStatus.PENDING, EscrowStatus.EXPIRED)),
    (EscrowStatus.REFUNDED, TransferStatus.PENDING, False, (TransferStatus.CANCELLED, EscrowStatus.REFUNDED)),
    (EscrowStatus.REFUNDED, TransferStatus.PENDING, True, (TransferStatus.EXPIRED, EscrowStatus.EXPIRED)),
    (EscrowStatus.REFUNDED, TransferStatus.EXPIRED, False, (TransferStatus.EXPIRED, EscrowStatus.EXPIRED)),
    (EscrowStatus.REFUNDED, TransferStatus.CANCELLED, True, (TransferStatus.CANCELLED, EscrowStatus.REFUNDED)),
])
def test_map_chain_status(chain_status, current, past_expiry, expected):
    assert map_chain_status(chain_status, current, past_expiry) == expected


def test_map_chain_status_is_stable_on_its_own_output():
    for chain_status in EscrowStatus:
        for past_expiry in (False, True):
            status, escrow_status = map_chain_status(chain_status, TransferStatus.PENDING, past_expiry)
            assert map_chain_status(chain_status, status, past_expiry) == (status, escrow_status)


def test_parse_status_code():
    assert parse_status_code(0, 100, 50) is None
    assert parse_status_code(1, 100, 50) is EscrowStatus.PENDING
    assert parse_status_code(1, 100, 100) is EscrowStatus.EXPIRED
    assert parse_status_code(2, 100, 500) is EscrowStatus.CLAIMED
    assert parse_status_code(3, 100, 50) is EscrowStatus.REFUNDED
    assert parse_status_code(7, 100, 50) is None


def test_to_atomic_amount():
    assert to_atomic_amount("10.5", 18) == 10_500_000_000_000_000_000
    assert to_atomic_amount("1", 6) == 1_000_000
    assert to_atomic_amount("0.000001", 6) == 1


@pytest.mark.parametrize("amount, decimals", [
    ("0", 18),
    ("0.0000001", 6),
    ("abc", 6),
    (str(UINT96_MAX + 1), 0),
])
def test_to_atomic_amount_rejects(amount, decimals):
    with pytest.raises(ValueError):
        to_atomic_amount(amount, decimals)


def test_transfer_dict_layout():
    transfer = make_transfer(message="hi")
    data = transfer.to_dict()

    assert data["transferId"] == "pending_abc"
    assert data["status"] == "pending"
    assert data["escrowStatus"] == "pending"
    assert data["expiresAt"] == "2026-03-09T12:00:00+00:00"
    assert data["claimedAt"] is None
    assert PendingTransfer.from_dict(data) == transfer


def test_transfer_from_dict_accepts_zulu_timestamps():
    data = make_transfer().to_dict()
    data["createdAt"] = "2026-03-02T12:00:00Z"
    transfer = PendingTransfer.from_dict(data)
    assert transfer.created_at == NOW


def test_expiry_gate_is_inclusive():
    transfer = make_transfer()
    assert not transfer.is_expired_at(transfer.expires_at - timedelta(seconds=1))
    assert transfer.is_expired_at(transfer.expires_at)


def test_summary_days_remaining():
    transfer = make_transfer()
    assert PendingTransferSummary.from_transfer(transfer, NOW).days_remaining == 7
    assert PendingTransferSummary.from_transfer(transfer, NOW + timedelta(days=6, hours=1)).days_remaining == 1
    assert PendingTransferSummary.from_transfer(transfer, NOW + timedelta(days=9)).days_remaining == 0


def test_summary_falls_back_to_sender_email():
    summary = PendingTransferSummary.from_transfer(make_transfer(sender_name=None), NOW)
    assert summary.sender_name == "alice@example.com"
    assert PendingTransferSummary.from_dict(summary.to_dict()) == summary


def test_request_schema_normalizes_email():
    request = CreatePendingTransferRequest.model_validate(make_request(recipientEmail="  Bob@Example.COM "))
    assert request.recipient_email == "bob@example.com"
    assert request.token_address == "0xA99dC247d6b7B2E3ab48a1fEE101b83cD6aCd82a"


@pytest.mark.parametrize("overrides", [
    {"recipientEmail": "not-an-email"},
    {"amount": "-1"},
    {"amount": "0"},
    {"amount": "1e5"},
    {"amount": "1,5"},
    {"decimals": -1},
    {"senderUserId": ""},
])
def test_request_schema_rejects(overrides):
    with pytest.raises(SchemaValidationError):
        CreatePendingTransferRequest.model_validate(make_request(**overrides))
