import csv
from io import StringIO

import pytest
from fastapi.testclient import TestClient

import services
from config import Settings
from main import create_app


@pytest.fixture
def client():
    settings = Settings(
        database_url="sqlite://",
        secret_key="test-secret",
        environment="test",
        log_level="WARNING",
    )
    with TestClient(create_app(settings)) as test_client:
        yield test_client


def register(client, email="john@example.com", password="password123", role=None):
    payload = {"name": "John Doe", "email": email, "password": password}
    if role:
        payload["role"] = role
    return client.post("/api/auth/register", json=payload)


def auth_headers(client, email="john@example.com", role=None) -> dict[str, str]:
    response = register(client, email=email, role=role)
    assert response.status_code == 201, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


def create_txn(client, headers, **overrides):
    payload = {
        "name": "Floyd Miles",
        "email": "floyd@example.com",
        "amount": 100,
        "type": "income",
        "category": "revenue",
    }
    payload.update(overrides)
    response = client.post("/api/transactions", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["transaction"]


def test_health(client) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "OK"
    assert body["message"]
    assert body["timestamp"]


def test_unknown_route_returns_json_404(client) -> None:
    response = client.get("/api/nope")

    assert response.status_code == 404
    assert response.json() == {
        "error": "not_found",
        "message": "The route /api/nope does not exist",
    }


def test_register_returns_token_and_user_without_password(client) -> None:
    response = register(client)

    assert response.status_code == 201
    body = response.json()
    assert body["token"]
    assert body["user"]["email"] == "john@example.com"
    assert body["user"]["role"] == "user"
    assert "password" not in body["user"]
    assert "password_hash" not in body["user"]


def test_register_validation_and_conflict(client) -> None:
    missing = client.post("/api/auth/register", json={"email": "a@example.com"})
    assert missing.status_code == 400
    assert missing.json()["error"] == "validation_error"

    short = register(client, password="123")
    assert short.status_code == 400
    assert short.json()["details"][0]["field"] == "password"

    assert register(client).status_code == 201
    duplicate = register(client, email="JOHN@example.com")
    assert duplicate.status_code == 400
    assert duplicate.json()["error"] == "conflict"


def test_login_token_resolves_to_logged_in_user(client) -> None:
    user_id = register(client).json()["user"]["id"]

    login = client.post(
        "/api/auth/login", json={"email": "john@example.com", "password": "password123"}
    )
    assert login.status_code == 200
    headers = {"Authorization": f"Bearer {login.json()['token']}"}

    for path in ("/api/auth/profile", "/api/users/profile"):
        profile = client.get(path, headers=headers)
        assert profile.status_code == 200
        assert profile.json()["user"]["id"] == user_id
        assert "password_hash" not in profile.json()["user"]


def test_bad_credentials_are_rejected(client) -> None:
    register(client)

    response = client.post(
        "/api/auth/login", json={"email": "john@example.com", "password": "nope-nope"}
    )

    assert response.status_code == 401
    assert response.json()["error"] == "invalid_credentials"


def test_protected_routes_require_valid_token(client) -> None:
    headers = auth_headers(client)
    token = headers["Authorization"].split(" ", 1)[1]

    missing = client.get("/api/transactions")
    assert missing.status_code == 401
    assert missing.json()["error"] == "unauthenticated"

    tampered = client.get(
        "/api/transactions", headers={"Authorization": f"Bearer {token[:-3]}abc"}
    )
    assert tampered.status_code == 401
    assert tampered.json()["error"] == "invalid_token"


def test_update_profile(client) -> None:
    headers = auth_headers(client)

    response = client.put(
        "/api/users/profile",
        json={"name": "Johnny", "avatar": "https://example.com/a.png"},
        headers=headers,
    )

    assert response.status_code == 200
    user = response.json()["user"]
    assert user["name"] == "Johnny"
    assert user["avatar"] == "https://example.com/a.png"
    assert client.get("/api/auth/profile", headers=headers).json()["user"]["name"] == "Johnny"


def test_admin_only_user_listing(client) -> None:
    user_headers = auth_headers(client)
    admin_headers = auth_headers(client, email="jane@example.com", role="admin")

    forbidden = client.get("/api/users", headers=user_headers)
    assert forbidden.status_code == 403
    assert forbidden.json()["error"] == "forbidden"

    allowed = client.get("/api/users", headers=admin_headers)
    assert allowed.status_code == 200
    assert {u["email"] for u in allowed.json()["users"]} == {
        "john@example.com",
        "jane@example.com",
    }


def test_transaction_crud(client) -> None:
    headers = auth_headers(client)
    created = create_txn(client, headers, date="2025-01-15", description="Invoice 12")
    assert created["amount"] == 100
    assert created["status"] == "completed"
    assert created["date"] == "2025-01-15"

    fetched = client.get(f"/api/transactions/{created['id']}", headers=headers)
    assert fetched.status_code == 200
    assert fetched.json()["transaction"]["description"] == "Invoice 12"

    updated = client.put(
        f"/api/transactions/{created['id']}", json={"status": "failed"}, headers=headers
    )
    assert updated.status_code == 200
    assert updated.json()["transaction"]["status"] == "failed"
    assert updated.json()["transaction"]["name"] == "Floyd Miles"

    deleted = client.delete(f"/api/transactions/{created['id']}", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json()["message"]

    gone = client.get(f"/api/transactions/{created['id']}", headers=headers)
    assert gone.status_code == 404
    assert gone.json()["error"] == "not_found"


def test_create_transaction_validation(client) -> None:
    headers = auth_headers(client)

    response = client.post(
        "/api/transactions", json={"name": "Floyd Miles", "amount": -5}, headers=headers
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "validation_error"
    assert {"email", "amount", "type", "category"} <= {d["field"] for d in body["details"]}


def test_oversized_amount_is_a_validation_error(client) -> None:
    headers = auth_headers(client)
    payload = {
        "name": "Floyd Miles",
        "email": "floyd@example.com",
        "amount": 1e20,
        "type": "income",
        "category": "revenue",
    }

    created = client.post("/api/transactions", json=payload, headers=headers)
    assert created.status_code == 400
    assert created.json()["error"] == "validation_error"
    assert created.json()["details"] == [{"field": "amount", "message": "Amount is too large"}]

    txn = create_txn(client, headers)
    updated = client.put(
        f"/api/transactions/{txn['id']}", json={"amount": 1e20}, headers=headers
    )
    assert updated.status_code == 400


def test_transaction_carries_its_owner(client) -> None:
    headers = auth_headers(client)
    me = client.get("/api/auth/profile", headers=headers).json()["user"]

    txn = create_txn(client, headers)

    assert txn["user"] == {
        "id": me["id"],
        "name": "John Doe",
        "email": "john@example.com",
        "avatar": None,
    }
    listed = client.get("/api/transactions", headers=headers).json()["transactions"]
    assert listed[0]["user"]["email"] == "john@example.com"


def test_users_cannot_touch_each_others_transactions(client) -> None:
    alice = auth_headers(client, email="alice@example.com")
    bob = auth_headers(client, email="bob@example.com")
    txn = create_txn(client, alice)
    path = f"/api/transactions/{txn['id']}"

    assert client.get(path, headers=bob).status_code == 404
    assert client.put(path, json={"amount": 1}, headers=bob).status_code == 404
    assert client.delete(path, headers=bob).status_code == 404

    assert client.get(path, headers=alice).json()["transaction"]["amount"] == 100
    listing = client.get("/api/transactions", headers=bob).json()
    assert listing["pagination"]["totalCount"] == 0


def test_non_numeric_id_is_a_validation_error(client) -> None:
    headers = auth_headers(client)

    response = client.get("/api/transactions/abc", headers=headers)

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


def test_pagination_metadata(client) -> None:
    headers = auth_headers(client)
    for day in range(1, 13):
        create_txn(client, headers, date=f"2025-02-{day:02d}")

    first = client.get("/api/transactions?page=1&limit=5", headers=headers).json()
    assert len(first["transactions"]) == 5
    assert first["transactions"][0]["date"] == "2025-02-12"
    assert first["pagination"] == {
        "currentPage": 1,
        "totalPages": 3,
        "totalCount": 12,
        "hasNextPage": True,
        "hasPrevPage": False,
    }

    last = client.get("/api/transactions?page=3&limit=5", headers=headers).json()
    assert len(last["transactions"]) == 2
    assert last["pagination"]["hasNextPage"] is False
    assert last["pagination"]["hasPrevPage"] is True

    default = client.get("/api/transactions", headers=headers).json()
    assert len(default["transactions"]) == 10
    assert default["pagination"]["totalPages"] == 2

    smallest = client.get("/api/transactions?limit=0", headers=headers).json()
    assert len(smallest["transactions"]) == 1
    assert smallest["pagination"]["totalPages"] == 12


def test_search_and_filters(client) -> None:
    headers = auth_headers(client)
    create_txn(client, headers, name="Jerome Bell", email="jerome@example.com")
    create_txn(client, headers, type="expense", category="expenses", date="2025-03-01")

    found = client.get("/api/transactions?search=jerome", headers=headers).json()
    assert [t["name"] for t in found["transactions"]] == ["Jerome Bell"]

    create_txn(client, headers, name="ÉMILE Zola", email="zola@example.com")
    accented = client.get("/api/transactions?search=émile", headers=headers).json()
    assert [t["name"] for t in accented["transactions"]] == ["ÉMILE Zola"]
    assert accented["pagination"]["totalCount"] == 1

    nothing = client.get("/api/transactions?search=zzzz", headers=headers).json()
    assert nothing["transactions"] == []
    assert nothing["pagination"]["totalCount"] == 0

    expenses = client.get(
        "/api/transactions?type=expense&startDate=2025-03-01&endDate=2025-03-01",
        headers=headers,
    ).json()
    assert expenses["pagination"]["totalCount"] == 1

    bad_type = client.get("/api/transactions?type=gift", headers=headers)
    assert bad_type.status_code == 400


def test_sort_field_is_whitelisted(client) -> None:
    headers = auth_headers(client)
    create_txn(client, headers, amount=30)
    create_txn(client, headers, amount=10)

    ordered = client.get(
        "/api/transactions?sortBy=amount&sortOrder=asc", headers=headers
    ).json()
    assert [t["amount"] for t in ordered["transactions"]] == [10, 30]

    rejected = client.get("/api/transactions?sortBy=user_id", headers=headers)
    assert rejected.status_code == 400
    assert rejected.json()["error"] == "validation_error"


def test_stats_scenario(client) -> None:
    headers = auth_headers(client)
    empty = client.get("/api/transactions/stats", headers=headers).json()["stats"]
    assert empty["totalIncome"] == 0
    assert empty["balance"] == 0
    assert empty["recentTransactions"] == []

    create_txn(client, headers, amount=100, type="income")
    create_txn(client, headers, amount=40, type="expense", category="expenses")

    stats = client.get("/api/transactions/stats", headers=headers).json()["stats"]
    assert stats["totalIncome"] == 100
    assert stats["totalExpenses"] == 40
    assert stats["balance"] == 60
    assert stats["monthlyBalance"] == 60
    assert len(stats["recentTransactions"]) == 2
    assert {(b["category"], b["type"]) for b in stats["categoryBreakdown"]} == {
        ("revenue", "income"),
        ("expenses", "expense"),
    }
    assert {t["type"] for t in stats["monthlyTrends"]} == {"income", "expense"}


def test_csv_export(client) -> None:
    headers = auth_headers(client)
    create_txn(client, headers, amount=100, type="income", date="2025-01-02")
    create_txn(
        client, headers, amount=40, type="expense", category="expenses", date="2025-01-03"
    )

    response = client.post("/api/transactions/export", json={}, headers=headers)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.headers["content-disposition"].startswith("attachment;")
    rows = list(csv.DictReader(StringIO(response.text)))
    for row in rows:
        amount = float(row["amount"])
        assert amount < 0 if row["type"] == "expense" else amount > 0

    chosen = client.post(
        "/api/transactions/export",
        json={"columns": ["date", "amount"], "type": "expense"},
        headers=headers,
    )
    assert chosen.text.splitlines() == ["date,amount", "2025-01-03,-40.00"]

    unknown = client.post(
        "/api/transactions/export", json={"columns": ["secret"]}, headers=headers
    )
    assert unknown.status_code == 400


def test_unexpected_failure_becomes_500(client, monkeypatch) -> None:
    headers = auth_headers(client)

    def boom(self, **kwargs):
        raise RuntimeError("database on fire")

    monkeypatch.setattr(services.StatsService, "dashboard", boom)
    response = client.get("/api/transactions/stats", headers=headers)

    assert response.status_code == 500
    assert response.json() == {
        "error": "internal_error",
        "message": "Internal server error",
    }
