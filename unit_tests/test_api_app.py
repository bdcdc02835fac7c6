# unit_tests/test_api_app.py
"""
Unit Tests for VII-FT Coach API
===============================
Run with: python -m pytest unit_tests/test_api_app.py -v
"""

import sys
from pathlib import Path
from datetime import date, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from api.app import create_app

from conftest import VALID_XRP_ADDRESS

USER = {"user_id": "api_user"}


@pytest.fixture
def client(store, ledger):
    return TestClient(create_app(store=store, ledger=ledger))


def seed_progress(client):
    now = datetime.now()
    for days_ago, weight in ((10, 200), (0, 189)):
        res = client.post(
            "/api/v1/measurements",
            params=USER,
            json={"date": (now - timedelta(days=days_ago)).isoformat(), "weight": weight},
        )
        assert res.status_code == 201
    res = client.post(
        "/api/v1/goals",
        params=USER,
        json={"month": date.today().strftime("%B"), "weight_loss": 10, "muscle_gain": 3},
    )
    assert res.status_code == 201
    return res.json()


def setup_wallet(client):
    assert client.post("/api/v1/viift/wallet/connect", params=USER, json={"address": VALID_XRP_ADDRESS}).status_code == 200
    assert client.post("/api/v1/viift/wallet/trustline", params=USER).status_code == 200
    res = client.post("/api/v1/viift/wallet/trustline/confirm", params=USER)
    assert res.json()["trust_line_setup"] is True


def test_health(client):
    assert client.get("/").json()["status"] == "online"
    health = client.get("/api/v1/health").json()
    assert health["status"] == "online"
    assert health["storage"] == "memory"


def test_measurement_unit_conversion(client):
    res = client.post("/api/v1/measurements", params=USER, json={"weight": 100, "unit": "kg", "body_fat": 18})
    assert res.status_code == 201
    body = res.json()
    assert body["weight"] == pytest.approx(220.46, abs=0.01)
    assert body["body_fat"] == 18

    listed = client.get("/api/v1/measurements", params=USER).json()
    assert len(listed) == 1


def test_goal_validation(client):
    assert client.post("/api/v1/goals", params=USER, json={"month": "May"}).status_code == 400
    assert client.post("/api/v1/goals", params=USER, json={"month": "May", "weight_loss": -1}).status_code == 422
    assert client.post("/api/v1/goals", params=USER, json={"month": "May", "weight_loss": 4}).status_code == 201
    duplicate = client.post("/api/v1/goals", params=USER, json={"month": "May", "muscle_gain": 1})
    assert duplicate.status_code == 409
    same_month = client.post("/api/v1/goals", params=USER, json={"month": "2026-05", "muscle_gain": 1})
    assert same_month.status_code == 409


def test_performance_and_evaluation_flow(client):
    print("\n" + "=" * 60)
    print("TEST: API performance → evaluate → claim")
    print("=" * 60)

    goal = seed_progress(client)

    performance = client.get("/api/v1/performance", params=USER).json()
    print(f"   Performance: {performance['performance'][0]['value']}")
    assert performance["status"] == "success"
    assert performance["performance"][0]["value"] == "11.0 / 10 lbs"
    assert performance["performance"][0]["percent_complete"] == 100

    evaluation = client.post("/api/v1/goals/evaluate", params=USER).json()
    assert [r["metric"] for r in evaluation["rewards"]] == ["weight_loss"]
    assert evaluation["goal_id"] == goal["id"]

    balance = client.get("/api/v1/viift/balance", params=USER).json()
    assert balance["pending_balance"] == 10
    assert balance["wallet_state"] == "disconnected"

    completed = client.get("/api/v1/viift/completed-goals", params=USER).json()
    assert completed[0]["reward_amount"] == 10

    setup_wallet(client)
    claim = client.post("/api/v1/viift/claim", params=USER)
    assert claim.status_code == 202
    txn = claim.json()
    assert txn["status"] == "pending"

    confirmed = client.post(f"/api/v1/viift/claim/{txn['id']}/confirm", params=USER, json={"tx_hash": "F00D"})
    assert confirmed.json()["status"] == "completed"

    balance = client.get("/api/v1/viift/balance", params=USER).json()
    assert balance["total_claimed"] == 10
    assert balance["pending_balance"] == 0

    txns = client.get("/api/v1/viift/transactions", params=USER).json()
    assert [t["type"] for t in txns] == ["claimed", "earned"]
    print("✅ API flow passed")


def test_claim_failure_rolls_back(client):
    seed_progress(client)
    client.post("/api/v1/goals/evaluate", params=USER)
    setup_wallet(client)

    txn = client.post("/api/v1/viift/claim", params=USER).json()
    failed = client.post(f"/api/v1/viift/claim/{txn['id']}/fail", params=USER, json={"reason": "timeout"})
    assert failed.json()["status"] == "failed"

    balance = client.get("/api/v1/viift/balance", params=USER).json()
    assert balance["pending_balance"] == 10
    assert balance["total_claimed"] == 0
    assert balance["wallet_state"] == "claimable"


def test_settle_claim_endpoint(client):
    seed_progress(client)
    client.post("/api/v1/goals/evaluate", params=USER)
    setup_wallet(client)

    txn = client.post("/api/v1/viift/claim", params=USER).json()
    settled = client.post(f"/api/v1/viift/claim/{txn['id']}/settle", params=USER)
    assert settled.status_code == 200
    assert settled.json()["status"] == "completed"
    assert settled.json()["tx_hash"]


def test_error_mapping(client):
    claim = client.post("/api/v1/viift/claim", params=USER)
    assert claim.status_code == 409
    assert "wallet" in claim.json()["detail"].lower()

    bad_wallet = client.post("/api/v1/viift/wallet/connect", params=USER, json={"address": "not-a-wallet"})
    assert bad_wallet.status_code == 400

    unknown = client.post("/api/v1/viift/claim/42/confirm", params=USER, json={"tx_hash": "AA"})
    assert unknown.status_code == 404

    no_trust_line = client.post("/api/v1/viift/wallet/trustline/confirm", params=USER)
    assert no_trust_line.status_code == 409


def test_cancel_goal_endpoint(client):
    goal = seed_progress(client)
    res = client.post(f"/api/v1/goals/{goal['id']}/cancel", params=USER)
    assert res.status_code == 200
    assert res.json()["status"] == "cancelled"
    assert client.post(f"/api/v1/goals/{goal['id']}/cancel", params=USER).status_code == 409
    assert client.get("/api/v1/performance", params=USER).json()["status"] == "no_data"
