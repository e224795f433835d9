from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from app import app
from models.schemas import TransactionType
from routes.billing_routes import get_resource_store, get_run_ledger
from routes.wallet_routes import get_wallet_service
from scheduler.run_ledger import RunLedger
from services.wallet_service import WalletService


@pytest.fixture
def client(store, mongo_db):
    ledger = RunLedger(mongo_db)
    app.dependency_overrides[get_wallet_service] = lambda: WalletService(store)
    app.dependency_overrides[get_resource_store] = lambda: store
    app.dependency_overrides[get_run_ledger] = lambda: ledger
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestWalletRoutes:

    def test_get_wallet(self, client, make_user):
        user = make_user(balance=1252)
        response = client.get(f"/api/v1/wallets/{user.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["balance"] == "12.52"
        assert body["balance_cents"] == 1252
        assert body["currency"] == "USD"

    def test_missing_wallet(self, client):
        assert client.get("/api/v1/wallets/999").status_code == 404

    def test_deposit(self, client, store, make_user):
        user = make_user()
        response = client.post(f"/api/v1/wallets/{user.id}/deposit", json={"amount": 2500, "reason": "Card top-up"})

        assert response.status_code == 200
        body = response.json()
        assert body["transaction"]["type"] == TransactionType.DEPOSIT.value
        assert body["transaction"]["amount"] == "25.00"
        assert body["wallet"]["balance_cents"] == 2500
        assert store.get_user(user.id).balance == 2500

    def test_deposit_rejects_non_positive(self, client, make_user):
        user = make_user()
        response = client.post(f"/api/v1/wallets/{user.id}/deposit", json={"amount": 0})
        assert response.status_code == 400

    def test_deposit_unknown_user(self, client):
        response = client.post("/api/v1/wallets/999/deposit", json={"amount": 100})
        assert response.status_code == 404

    def test_transactions_newest_first(self, client, store, make_user):
        user = make_user()
        store.apply_transaction(user.id, 1000, TransactionType.DEPOSIT.value, "first")
        store.apply_transaction(user.id, -7, TransactionType.HOURLY_SERVER_CHARGE.value, "second")

        response = client.get(f"/api/v1/wallets/{user.id}/transactions")

        assert response.status_code == 200
        transactions = response.json()["transactions"]
        assert [tx["description"] for tx in transactions] == ["second", "first"]
        assert transactions[0]["amount"] == "-0.07"
        assert transactions[0]["amount_cents"] == -7


class TestBillingRoutes:

    def test_sizes(self, client):
        sizes = {s["slug"]: s for s in client.get("/api/v1/billing/sizes").json()}

        assert "default" not in sizes
        assert sizes["s-1vcpu-1gb"]["hourly_price_cents"] == 7
        assert sizes["s-1vcpu-1gb"]["monthly_price"] == "5"
        assert sizes["s-1vcpu-1gb"]["included_bandwidth_gb"] == 1000

    def test_server_bandwidth(self, client, store, make_user, make_server):
        user = make_user()
        server = make_server(user.id, created_at=datetime(2020, 1, 1))
        store.record_server_metric(server.id, 2 * 1024 ** 3, 1024 ** 3)

        response = client.get(f"/api/v1/billing/servers/{server.id}/bandwidth")

        assert response.status_code == 200
        body = response.json()
        assert body["server_id"] == server.id
        assert body["current"] == 3
        assert body["limit"] == 1000
        assert body["overage_rate"] == 0.005

    def test_server_bandwidth_missing_server(self, client):
        assert client.get("/api/v1/billing/servers/999/bandwidth").status_code == 404

    def test_billing_runs(self, client, mongo_db):
        ledger = RunLedger(mongo_db)
        ledger.claim("daily_bandwidth_sweep", "2024-03-15")
        ledger.finish("daily_bandwidth_sweep", "2024-03-15", details={"charged": 2})

        response = client.get("/api/v1/billing/runs/daily_bandwidth_sweep")

        assert response.status_code == 200
        runs = response.json()
        assert runs[0]["run_key"] == "2024-03-15"
        assert runs[0]["status"] == "completed"
        assert runs[0]["details"] == {"charged": 2}
