"""
HTTP API tests through FastAPI's TestClient
"""

import logging
import pytest
from decimal import Decimal
from fastapi.testclient import TestClient

from ledger.api import create_app
from ledger.config import AppConfig
from ledger.storage import InMemoryStorage, SqliteStorage


class StubGenerator:
    is_available = False
    last_source = None

    def generate_sample_posts(self):
        self.last_source = "fallback"
        return ["Plain thought of the day", "Read this https://example.com/article"]


@pytest.fixture
def client():
    app = create_app(config=AppConfig(), storage=InMemoryStorage(), generator=StubGenerator())
    return TestClient(app)


def _sign_up(client, email="user@example.com", password="pw"):
    response = client.post("/auth/signup", json={"email": email, "password": password})
    assert response.status_code == 201
    return {"Authorization": f"Bearer {response.json()['token']}"}


def _admin(client):
    response = client.post("/auth/signin", json={"email": "admin@admin.com", "password": "666666"})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


def _balance(client, headers):
    return Decimal(str(client.get("/me", headers=headers).json()["balance"]))


class TestAuthEndpoints:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy", "service": "tapfeed"}

    def test_duplicate_signup_conflict(self, client):
        _sign_up(client)

        response = client.post("/auth/signup", json={"email": "user@example.com", "password": "x"})

        assert response.status_code == 409
        assert response.json()["detail"] == "Email already taken"

    def test_me_requires_session(self, client):
        assert client.get("/me").status_code == 401
        assert client.get("/me", headers={"Authorization": "Bearer bogus"}).status_code == 401

    def test_signout(self, client):
        headers = _sign_up(client)

        assert client.post("/auth/signout", headers=headers).status_code == 204
        assert client.get("/me", headers=headers).status_code == 401

    def test_seeded_admin(self, client):
        me = client.get("/me", headers=_admin(client)).json()

        assert me["role"] == "ADMIN"
        assert Decimal(str(me["balance"])) == Decimal("10000")


class TestWalletEndpoints:

    def test_withdraw_reject_round_trip(self, client):
        headers = _sign_up(client)
        admin = _admin(client)

        client.post("/wallet/deposit", json={"amount": "100", "network": "TRC20"}, headers=headers)
        assert _balance(client, headers) == Decimal("100")

        response = client.post("/wallet/withdraw", json={"amount": "50", "network": "TRC20"}, headers=headers)
        assert response.status_code == 200
        tx_id = response.json()["transaction"]["id"]
        assert _balance(client, headers) == Decimal("50")

        pending = client.get("/admin/withdrawals", headers=admin).json()
        assert [t["id"] for t in pending] == [tx_id]

        settled = client.post(f"/admin/withdrawals/{tx_id}", json={"approved": False}, headers=admin)
        assert settled.json()["status"] == "REJECTED"
        assert _balance(client, headers) == Decimal("100")

    def test_insufficient_balance_message(self, client):
        headers = _sign_up(client)

        response = client.post("/wallet/withdraw", json={"amount": "60"}, headers=headers)

        assert response.status_code == 400
        assert response.json()["detail"] == "Insufficient balance"

    def test_non_admin_forbidden(self, client):
        headers = _sign_up(client)

        assert client.get("/admin/withdrawals", headers=headers).status_code == 403
        assert client.get("/admin/users", headers=headers).status_code == 403

    def test_settle_unknown_transaction(self, client):
        response = client.post("/admin/withdrawals/nope", json={"approved": True}, headers=_admin(client))

        assert response.status_code == 404

    def test_transaction_history(self, client):
        headers = _sign_up(client)
        client.post("/wallet/deposit", json={"amount": "10"}, headers=headers)

        history = client.get("/me/transactions", headers=headers).json()

        assert len(history) == 1
        assert history[0]["type"] == "DEPOSIT"
        assert history[0]["status"] == "COMPLETED"


class TestPostEndpoints:

    def test_create_react_and_sponsor(self, client):
        headers = _sign_up(client)
        client.post("/wallet/deposit", json={"amount": "5"}, headers=headers)

        post = client.post("/posts", json={"content": "hello", "type": "text"}, headers=headers).json()
        for _ in range(3):
            client.post(f"/posts/{post['id']}/react", json={"kind": "hahas"})

        sponsored = client.post(f"/posts/{post['id']}/sponsor", json={"amount": "1"}, headers=headers)
        assert sponsored.status_code == 200
        body = sponsored.json()
        assert body["post"]["sponsored"] is True
        assert body["post"]["hahas"] == 3
        assert body["immediate_boost"] == 100_000
        assert _balance(client, headers) == Decimal("4")

        stats = client.get("/me/campaigns", headers=headers).json()
        assert stats["sponsored_count"] == 1
        assert Decimal(str(stats["total_spent"])) == Decimal("1")

    def test_sponsor_over_balance(self, client):
        headers = _sign_up(client)
        post = client.post("/posts", json={"content": "hello"}, headers=headers).json()

        response = client.post(f"/posts/{post['id']}/sponsor", json={"amount": "1"}, headers=headers)

        assert response.status_code == 400
        mine = client.get("/me/posts", headers=headers).json()
        assert mine[0]["sponsored"] is False
        assert mine[0]["views"] == 0

    def test_sponsor_other_authors_post_forbidden(self, client):
        author = _sign_up(client, email="author@example.com")
        sponsor = _sign_up(client, email="sponsor@example.com")
        client.post("/wallet/deposit", json={"amount": "5"}, headers=sponsor)
        post = client.post("/posts", json={"content": "not yours"}, headers=author).json()

        response = client.post(f"/posts/{post['id']}/sponsor", json={"amount": "1"}, headers=sponsor)

        assert response.status_code == 403
        assert _balance(client, sponsor) == Decimal("5")
        stats = client.get("/me/campaigns", headers=sponsor).json()
        assert Decimal(str(stats["total_spent"])) == Decimal("0")
        assert client.get("/me/campaigns", headers=author).json()["sponsored_count"] == 0

    def test_deposit_with_too_many_decimals(self, client):
        headers = _sign_up(client)

        response = client.post("/wallet/deposit", json={"amount": "1.0000009"}, headers=headers)

        assert response.status_code == 400
        assert _balance(client, headers) == Decimal("0")

    def test_react_unknown_post(self, client):
        assert client.post("/posts/missing/react", json={"kind": "likes"}).status_code == 404

    def test_feed_lists_posts(self, client):
        headers = _sign_up(client)
        client.post("/posts", json={"content": "one"}, headers=headers)
        client.post("/posts", json={"content": "two"}, headers=headers)

        feed = client.get("/posts").json()

        assert [p["content"] for p in feed] == ["two", "one"]

    def test_demo_seed(self, client):
        headers = _sign_up(client)

        response = client.post("/posts/demo", headers=headers)

        assert response.status_code == 201
        body = response.json()
        assert body["generated_by"] == "fallback"
        assert [p["type"] for p in body["posts"]] == ["text", "link"]


class TestSettingsEndpoints:

    def test_patch_settings_applies_to_later_calls(self, client):
        admin = _admin(client)
        headers = _sign_up(client)
        client.post("/wallet/deposit", json={"amount": "20"}, headers=headers)

        assert client.post("/wallet/withdraw", json={"amount": "10"}, headers=headers).status_code == 400

        patched = client.patch("/admin/settings", json={"min_withdraw": "5"}, headers=admin)
        assert patched.status_code == 200
        assert Decimal(str(client.get("/settings").json()["min_withdraw"])) == Decimal("5")

        assert client.post("/wallet/withdraw", json={"amount": "10"}, headers=headers).status_code == 200

    def test_estimate(self, client):
        body = client.get("/sponsorship/estimate", params={"amount": "0.5"}).json()

        assert body["estimated_views"] == 500_000
        assert body["immediate_boost"] == 50_000

    def test_estimate_rejects_zero(self, client):
        assert client.get("/sponsorship/estimate", params={"amount": "0"}).status_code == 400

    def test_admin_edit_user(self, client):
        admin = _admin(client)
        headers = _sign_up(client)
        user_id = client.get("/me", headers=headers).json()["id"]

        response = client.patch(f"/admin/users/{user_id}", json={"balance": "77", "name": "Zed"}, headers=admin)

        assert response.status_code == 200
        assert response.json()["name"] == "Zed"
        assert _balance(client, headers) == Decimal("77")
        assert len(client.get("/admin/users", headers=admin).json()) == 2


class TestStartup:

    def test_startup_log_names_injected_storage(self, tmp_path, caplog):
        caplog.set_level(logging.INFO, logger="ledger.api")

        create_app(config=AppConfig(), storage=SqliteStorage(tmp_path / "app.db"), generator=StubGenerator())

        assert "TapFeed started with SqliteStorage" in caplog.text
