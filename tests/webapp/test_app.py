import pytest
from fastapi.testclient import TestClient

from infrastructure.services.app_context import AppContext
from tests.conftest import RECIPIENT_EMAIL, RECIPIENT_ID, SENDER_ID, make_request
from webapp.app import create_app

API_HEADERS = {"Authorization": "Bearer api-key"}
CRON_HEADERS = {"Authorization": "Bearer cron-secret"}


@pytest.fixture
def client(service):
    app = create_app(AppContext(service=service, api_key="api-key", cron_secret="cron-secret"))
    with TestClient(app) as test_client:
        yield test_client


def create_transfer(client, **overrides) -> dict:
    response = client.post("/api/pending-transfers", json=make_request(**overrides), headers=API_HEADERS)
    assert response.status_code == 201, response.text
    return response.json()["transfer"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.parametrize("method, path, headers", [
    ("get", "/api/pending-transfers?recipientEmail=bob@example.com", {}),
    ("get", "/api/pending-transfers?recipientEmail=bob@example.com", {"Authorization": "Bearer wrong"}),
    ("post", "/api/cron/process-expiry", API_HEADERS),
    ("post", "/api/cron/send-reminders", {"Authorization": "Basic cron-secret"}),
])
def test_requires_bearer_token(client, method, path, headers):
    response = getattr(client, method)(path, headers=headers)
    assert response.status_code == 401
    assert response.json()["error"] == "auth_error"


def test_create_and_read(client):
    transfer = create_transfer(client)

    assert transfer["transferId"].startswith("pending_")
    assert transfer["status"] == "pending"
    assert transfer["recipientEmail"] == RECIPIENT_EMAIL

    details = client.get(f"/api/pending-transfers?transferId={transfer['transferId']}", headers=API_HEADERS)
    assert details.json()["transfer"]["escrowTransferId"] == transfer["escrowTransferId"]

    received = client.get("/api/pending-transfers", params={"recipientEmail": "BOB@example.com"},
                          headers=API_HEADERS)
    assert [t["transferId"] for t in received.json()["transfers"]] == [transfer["transferId"]]
    assert received.json()["transfers"][0]["daysRemaining"] == 7

    sent = client.get("/api/pending-transfers", params={"senderUserId": SENDER_ID}, headers=API_HEADERS)
    assert len(sent.json()["transfers"]) == 1


def test_create_rejects_invalid_body(client):
    response = client.post("/api/pending-transfers", json=make_request(recipientEmail="nope"), headers=API_HEADERS)
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"

    response = client.post("/api/pending-transfers", json=make_request(chain="solana"), headers=API_HEADERS)
    assert response.status_code == 400


def test_get_requires_a_filter(client):
    response = client.get("/api/pending-transfers", headers=API_HEADERS)
    assert response.status_code == 400

    missing = client.get("/api/pending-transfers?transferId=pending_missing", headers=API_HEADERS)
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"


def test_claim_flow(client):
    transfer = create_transfer(client)
    body = {"action": "claim", "transferId": transfer["transferId"], "claimantUserId": RECIPIENT_ID}

    stranger = client.patch("/api/pending-transfers", json={**body, "claimantUserId": SENDER_ID},
                            headers=API_HEADERS)
    assert stranger.status_code == 403

    claimed = client.patch("/api/pending-transfers", json=body, headers=API_HEADERS)
    assert claimed.status_code == 200
    assert claimed.json()["claimTransactionHash"].startswith("0x")

    again = client.patch("/api/pending-transfers", json=body, headers=API_HEADERS)
    assert again.status_code == 409
    assert again.json()["error"] == "already_finalized"
    assert again.json()["status"] == "claimed"


def test_cancel_and_sync(client):
    transfer = create_transfer(client)

    cancelled = client.patch("/api/pending-transfers", headers=API_HEADERS, json={
        "action": "cancel", "transferId": transfer["transferId"], "senderUserId": SENDER_ID})
    assert cancelled.status_code == 200
    assert cancelled.json()["refundTransactionHash"].startswith("0x")

    synced = client.patch("/api/pending-transfers", headers=API_HEADERS, json={
        "action": "sync", "transferId": transfer["transferId"]})
    assert synced.json()["transfer"]["status"] == "cancelled"
    assert synced.json()["transfer"]["escrowStatus"] == "refunded"

    by_sender = client.patch("/api/pending-transfers", headers=API_HEADERS, json={
        "action": "sync", "senderUserId": SENDER_ID})
    assert by_sender.json() == {"success": True, "synced": 0}


def test_user_id_is_accepted_for_claim_and_cancel(client):
    claimed_transfer = create_transfer(client, amount="1")
    cancelled_transfer = create_transfer(client, amount="2")

    claimed = client.patch("/api/pending-transfers", headers=API_HEADERS, json={
        "action": "claim", "transferId": claimed_transfer["transferId"], "userId": RECIPIENT_ID})
    cancelled = client.patch("/api/pending-transfers", headers=API_HEADERS, json={
        "action": "cancel", "transferId": cancelled_transfer["transferId"], "userId": SENDER_ID})

    assert claimed.status_code == 200
    assert "claimTransactionHash" in claimed.json()
    assert cancelled.status_code == 200
    assert "refundTransactionHash" in cancelled.json()


def test_patch_validation(client):
    unknown = client.patch("/api/pending-transfers", json={"action": "steal"}, headers=API_HEADERS)
    assert unknown.status_code == 400

    incomplete = client.patch("/api/pending-transfers", json={"action": "claim", "transferId": "pending_x"},
                              headers=API_HEADERS)
    assert incomplete.status_code == 400


def test_auto_claim(client):
    create_transfer(client, amount="1")
    create_transfer(client, amount="2")

    response = client.patch("/api/pending-transfers", headers=API_HEADERS, json={
        "action": "auto-claim", "userId": RECIPIENT_ID, "email": RECIPIENT_EMAIL})

    assert response.json() == {"success": True, "claimedCount": 2}


def test_expired_claim_and_cron(client, clock):
    transfer = create_transfer(client)
    clock.advance(days=8)

    response = client.patch("/api/pending-transfers", headers=API_HEADERS, json={
        "action": "claim", "transferId": transfer["transferId"], "claimantUserId": RECIPIENT_ID})
    assert response.status_code == 410
    assert response.json()["error"] == "expired"

    expiry = client.post("/api/cron/process-expiry", headers=CRON_HEADERS)
    assert expiry.status_code == 200
    assert expiry.json()["processed"] == 1

    details = client.get(f"/api/pending-transfers?transferId={transfer['transferId']}", headers=API_HEADERS)
    assert details.json()["transfer"]["status"] == "expired"


def test_reminder_cron(client, clock):
    create_transfer(client)
    clock.advance(days=6)

    first = client.post("/api/cron/send-reminders", headers=CRON_HEADERS)
    second = client.post("/api/cron/send-reminders", headers=CRON_HEADERS)

    assert first.json()["sent"] == 1
    assert second.json()["sent"] == 0
