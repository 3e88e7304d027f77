"""Tests for the HTTP surface: status codes, payload shapes, auth and CORS."""

import datetime as dt

import httpx
import pytest
from fastapi.testclient import TestClient

import main
from conftest import BOB
from main import app
from models.expense import AMOUNT_RANGE_ERROR
from routes import get_current_user, get_expense_store
from services import expenses_service
from services.expense_store import InMemoryExpenseStore

PAYLOAD = {"title": "A", "amount": "5.00", "category": "Food", "date": "2024-01-01"}


def _create(client, headers, **overrides):
    response = client.post("/api/expenses", json={**PAYLOAD, **overrides}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


# ── CRUD ──


def test_create_returns_201_with_assigned_fields(client, auth_headers):
    response = client.post("/api/expenses", json={**PAYLOAD, "userId": "forged", "id": 500}, headers=auth_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["id"] == 1
    assert body["userId"] == "user-alice"
    assert body["title"] == "A"
    assert body["amount"] == "5.00"
    assert body["category"] == "Food"
    assert body["date"] == "2024-01-01"
    assert body["createdAt"]


def test_create_then_get_round_trip(client, auth_headers):
    created = _create(client, auth_headers)

    response = client.get(f"/api/expenses/{created['id']}", headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == created


def test_list_is_most_recent_first(client, auth_headers):
    _create(client, auth_headers, title="Old", date="2023-05-01")
    _create(client, auth_headers, title="New", date="2024-05-01")
    _create(client, auth_headers, title="Mid", date="2024-01-01")

    response = client.get("/api/expenses", headers=auth_headers)

    assert response.status_code == 200
    assert [e["title"] for e in response.json()] == ["New", "Mid", "Old"]


def test_list_filters_by_search_and_category(client, auth_headers):
    _create(client, auth_headers, title="Coffee", category="Food")
    _create(client, auth_headers, title="DECAF", category="Food")
    _create(client, auth_headers, title="Tea", category="Food")
    _create(client, auth_headers, title="Coffee mug", category="Shopping")

    searched = client.get("/api/expenses", params={"search": "caf"}, headers=auth_headers).json()
    by_category = client.get("/api/expenses", params={"category": "Shopping"}, headers=auth_headers).json()
    both = client.get("/api/expenses", params={"search": "COF", "category": "Food"}, headers=auth_headers).json()

    assert [e["title"] for e in searched] == ["DECAF"]
    assert [e["title"] for e in by_category] == ["Coffee mug"]
    assert [e["title"] for e in both] == ["Coffee"]


def test_list_all_category_and_empty_search_are_unfiltered(client, auth_headers):
    _create(client, auth_headers, title="One", category="Food")
    _create(client, auth_headers, title="Two", category="Health", date="2024-02-01")

    plain = client.get("/api/expenses", headers=auth_headers).json()
    sentinel = client.get("/api/expenses", params={"category": "all"}, headers=auth_headers).json()
    empty_search = client.get("/api/expenses", params={"search": ""}, headers=auth_headers).json()

    assert plain == sentinel == empty_search
    assert len(plain) == 2


def test_partial_update_changes_only_given_field(client, auth_headers):
    created = _create(client, auth_headers)

    response = client.put(f"/api/expenses/{created['id']}", json={"amount": "7.50"}, headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["amount"] == "7.50"
    assert {k: body[k] for k in ("title", "category", "date")} == {"title": "A", "category": "Food", "date": "2024-01-01"}


def test_update_missing_expense_is_404(client, auth_headers):
    response = client.put("/api/expenses/999", json={"title": "B"}, headers=auth_headers)

    assert response.status_code == 404
    assert response.json() == {"message": "Expense not found"}


def test_delete_returns_204_then_404(client, auth_headers):
    created = _create(client, auth_headers)

    first = client.delete(f"/api/expenses/{created['id']}", headers=auth_headers)
    lookup = client.get(f"/api/expenses/{created['id']}", headers=auth_headers)
    second = client.delete(f"/api/expenses/{created['id']}", headers=auth_headers)

    assert first.status_code == 204
    assert first.content == b""
    assert lookup.status_code == 404
    assert second.status_code == 404


def test_other_users_expenses_are_not_visible(client, auth_headers, caller):
    created = _create(client, auth_headers)
    caller["user"] = BOB

    assert client.get("/api/expenses", headers=auth_headers).json() == []
    assert client.get(f"/api/expenses/{created['id']}", headers=auth_headers).status_code == 404
    assert client.put(f"/api/expenses/{created['id']}", json={"title": "X"}, headers=auth_headers).status_code == 404
    assert client.delete(f"/api/expenses/{created['id']}", headers=auth_headers).status_code == 404


# ── Validation ──


@pytest.mark.parametrize("amount", ["-3", "0", "abc"])
def test_create_rejects_bad_amount_with_field(client, auth_headers, amount):
    response = client.post("/api/expenses", json={**PAYLOAD, "amount": amount}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json() == {"message": "Amount must be a positive number", "field": "amount"}


def test_create_rejects_unbounded_amount_and_stats_keep_working(client, auth_headers):
    _create(client, auth_headers, amount="5.00")

    response = client.post("/api/expenses", json={**PAYLOAD, "amount": "1e1000000"}, headers=auth_headers)
    stats = client.get("/api/stats", headers=auth_headers)

    assert response.status_code == 400
    assert response.json() == {"message": AMOUNT_RANGE_ERROR, "field": "amount"}
    assert stats.status_code == 200
    assert stats.json()["totalBalance"] == "5.00"


def test_create_rejects_missing_title(client, auth_headers):
    payload = {k: v for k, v in PAYLOAD.items() if k != "title"}

    response = client.post("/api/expenses", json=payload, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["field"] == "title"


def test_update_rejects_bad_amount(client, auth_headers):
    created = _create(client, auth_headers)

    response = client.put(f"/api/expenses/{created['id']}", json={"amount": "-1"}, headers=auth_headers)

    assert response.status_code == 400
    assert client.get(f"/api/expenses/{created['id']}", headers=auth_headers).json()["amount"] == "5.00"


def test_non_integer_id_is_400(client, auth_headers):
    response = client.get("/api/expenses/abc", headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["field"] == "expense_id"


def test_oversized_body_is_413(client, auth_headers):
    response = client.post("/api/expenses", json={**PAYLOAD, "title": "x" * (main.MAX_BODY_SIZE + 1)}, headers=auth_headers)

    assert response.status_code == 413


# ── Statistics ──


def test_stats_payload(client, auth_headers, monkeypatch):
    monkeypatch.setattr(expenses_service, "current_utc_date", lambda: dt.date(2024, 2, 20))
    _create(client, auth_headers, title="Rent", amount="500.00", category="Utilities", date="2024-01-15")
    _create(client, auth_headers, title="Lunch", amount="12.50", category="Food", date="2024-02-15")
    _create(client, auth_headers, title="Dinner", amount="30.00", category="Food", date="2024-02-16")

    response = client.get("/api/stats", headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {
        "totalBalance": "542.50",
        "monthlySpend": "42.50",
        "topCategory": "Utilities",
        "categoryBreakdown": [{"name": "Utilities", "value": 500.0}, {"name": "Food", "value": 42.5}],
    }


def test_stats_for_empty_store(client, auth_headers):
    response = client.get("/api/stats", headers=auth_headers)

    assert response.json() == {"totalBalance": "0", "monthlySpend": "0", "topCategory": None, "categoryBreakdown": []}


def test_categories_lists_suggestions(client, auth_headers):
    body = client.get("/api/categories", headers=auth_headers).json()

    assert body["default"] == "Other"
    assert "Food" in body["categories"]


# ── Failures and CORS ──


class BrokenStore(InMemoryExpenseStore):
    async def list_expenses(self, filters=None, user_id=None):
        raise ConnectionError("backend detail: connection to 10.0.0.5 refused")


def test_store_failure_is_500_without_backend_detail(client, auth_headers):
    app.dependency_overrides[get_expense_store] = lambda: BrokenStore()

    response = client.get("/api/expenses", headers=auth_headers)

    assert response.status_code == 500
    assert "10.0.0.5" not in response.json()["message"]


def test_missing_store_is_500(auth_headers):
    app.dependency_overrides[get_current_user] = lambda: BOB
    try:
        response = TestClient(app).get("/api/stats", headers=auth_headers)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json() == {"message": "Database service not available."}


def test_options_short_circuits_with_empty_200():
    response = TestClient(app).options("/api/expenses/1")

    assert response.status_code == 200
    assert response.content == b""
    assert response.headers["access-control-allow-origin"] == "*"
    assert "DELETE" in response.headers["access-control-allow-methods"]
    assert "Authorization" in response.headers["access-control-allow-headers"]


def test_cors_header_on_regular_requests(client, auth_headers):
    response = client.get("/api/expenses", headers={**auth_headers, "Origin": "https://anywhere.example"})

    assert response.headers["access-control-allow-origin"] == "*"


# ── Authentication (real dependency, mocked identity service) ──


@pytest.fixture
def identity_client(monkeypatch, store):
    """App wired to the real auth dependency and a mocked Supabase Auth endpoint."""
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.headers.get("authorization") == "Bearer good-token":
            return httpx.Response(200, json={"id": "user-from-token"})
        return httpx.Response(401, json={"msg": "invalid JWT"})

    monkeypatch.setitem(main.app_state, "http_client", httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    app.dependency_overrides[get_expense_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_valid_token_resolves_caller(identity_client):
    response = identity_client.post("/api/expenses", json=PAYLOAD, headers={"Authorization": "Bearer good-token"})

    assert response.status_code == 201
    assert response.json()["userId"] == "user-from-token"


@pytest.mark.parametrize(
    "path",
    ["/api/expenses", "/api/expenses/1", "/api/stats", "/api/categories"],
)
def test_missing_header_is_401(identity_client, path):
    response = identity_client.get(path)

    assert response.status_code == 401
    assert response.json() == {"message": "Unauthorized: Missing credentials"}


def test_rejected_token_is_401(identity_client):
    response = identity_client.get("/api/expenses", headers={"Authorization": "Bearer expired"})

    assert response.status_code == 401
    assert response.json() == {"message": "Unauthorized"}


def test_missing_auth_precedes_validation(identity_client):
    response = identity_client.post("/api/expenses", json={"amount": "-1"})

    assert response.status_code == 401


def test_missing_identity_configuration_is_500(identity_client, monkeypatch):
    for name in ["SUPABASE_URL", "VITE_SUPABASE_URL", "SUPABASE_ANON_KEY", "VITE_SUPABASE_ANON_KEY"]:
        monkeypatch.delenv(name, raising=False)

    response = identity_client.get("/api/expenses", headers={"Authorization": "Bearer good-token"})

    assert response.status_code == 500
