from __future__ import annotations

import asyncio
import base64

import pytest
from starlette.testclient import TestClient

from shopping_tracker.api import create_app
from shopping_tracker.auth import AuthSession
from shopping_tracker.context import AppContext
from shopping_tracker.errors import AuthError, ScanError, ScanParseError, ValidationError
from shopping_tracker.remote.rest import RestRecordStore
from shopping_tracker.scan.extraction import ScannedItem, ScannedReceipt
from shopping_tracker.session import Session

IMAGE = base64.b64encode(b"\xff\xd8fake-jpeg").decode("ascii")


def _scanned():
    return ScannedReceipt(
        items=[ScannedItem("Arroz 5kg", 1, 25.90, 25.90), ScannedItem("Feijão 1kg", 2, 8.50, 17.00)],
        total_amount=42.90,
        market="Supermercado Extra",
        payment_method="Débito",
        purchase_date="2024-01-15",
    )


def _client(records, scanner, **kwargs) -> TestClient:
    context = AppContext.assemble(records, scanner, Session(user_id="user-1"), **kwargs)
    return TestClient(create_app(context))


@pytest.fixture
def client(records, make_scanner):
    return _client(records, make_scanner(_scanned()))


def _category(state, name):
    return next(cat for cat in state["categories"] if cat["name"] == name)


def test_health_and_first_list_bootstrap(client) -> None:
    assert client.get("/api/health").json()["status"] == "ok"

    state = client.get("/api/list").json()
    assert state["list"]["is_active"] is True
    assert len(state["categories"]) >= 2
    assert state["subtotal"] == 0
    assert state["notifications"] == []


def test_item_edits_carry_notifications(client) -> None:
    state = client.get("/api/list").json()
    mercearia = _category(state, "Mercearia")

    r = client.post(f"/api/categories/{mercearia['id']}/items", json={"name": "Café", "quantity": 2})
    assert r.status_code == 200
    body = r.json()
    assert body["notifications"] == [{"level": "success", "message": "Item adicionado!"}]
    cafe = next(i for i in _category(body, "Mercearia")["items"] if i["name"] == "Café")
    assert cafe["sort_order"] == 999

    r = client.patch(f"/api/items/{cafe['id']}", json={"unit_price": 12.5, "market": "Extra"})
    assert r.status_code == 200
    assert r.json()["subtotal"] == 25.0

    history = client.get("/api/price-history", params={"item": "Café"}).json()["items"]
    assert [(h["unit_price"], h["market"]) for h in history] == [(12.5, "Extra")]


def test_blank_item_name_is_rejected_with_warning(client) -> None:
    mercearia = _category(client.get("/api/list").json(), "Mercearia")
    r = client.post(f"/api/categories/{mercearia['id']}/items", json={"name": "   "})
    assert r.status_code == 400
    assert r.json()["notifications"][0]["level"] == "warning"


def test_reorder_categories_round_trips(client) -> None:
    state = client.get("/api/list").json()
    ids = [cat["id"] for cat in state["categories"]]
    reversed_ids = list(reversed(ids))

    r = client.put("/api/categories/order", json={"ids": reversed_ids})
    assert r.status_code == 200
    assert [cat["id"] for cat in r.json()["categories"]] == reversed_ids
    assert [cat["id"] for cat in client.get("/api/list").json()["categories"]] == reversed_ids


def test_reorder_requires_id_list(client) -> None:
    client.get("/api/list")
    r = client.put("/api/categories/order", json={"ids": "nope"})
    assert r.status_code == 400
    assert "notifications" in r.json()


def test_custom_list_becomes_the_only_active_one(client) -> None:
    first = client.get("/api/list").json()["list"]
    r = client.post("/api/lists", json={"name": "Churrasco"})
    assert r.status_code == 200
    assert r.json()["list"]["name"] == "Churrasco"

    lists = client.get("/api/lists").json()["items"]
    assert [l["name"] for l in lists if l["is_active"]] == ["Churrasco"]

    r = client.post(f"/api/lists/{first['id']}/activate")
    assert r.json()["list"]["id"] == first["id"]


def test_receipt_create_list_delete(client) -> None:
    r = client.post(
        "/api/receipts",
        json={
            "title": "Feira",
            "total_amount": 30,
            "payment_method": "PIX",
            "market": " Feira livre ",
            "items": [{"name": "Banana", "quantity": 2, "unit_price": 5}],
        },
    )
    assert r.status_code == 201
    receipt = r.json()["receipt"]
    assert receipt["market"] == "Feira livre"
    assert receipt["items"][0]["total_price"] == 10

    assert [x["title"] for x in client.get("/api/receipts").json()["items"]] == ["Feira"]
    assert client.delete(f"/api/receipts/{receipt['id']}").status_code == 200
    assert client.get("/api/receipts").json()["items"] == []


def test_receipt_without_title_is_a_bad_request(client) -> None:
    r = client.post("/api/receipts", json={"total_amount": 10})
    assert r.status_code == 400
    assert r.json()["detail"] == "'title' is required"


def test_analytics_summary(client) -> None:
    client.post("/api/receipts", json={"title": "A", "total_amount": 100, "market": "Extra"})
    client.post("/api/receipts", json={"title": "B", "total_amount": 50, "market": "Extra"})
    summary = client.get("/api/analytics").json()
    assert summary["total_spent"] == 150
    assert summary["receipt_count"] == 2
    assert summary["most_used_market"] == "Extra"


def test_scan_endpoint_returns_structured_data(client) -> None:
    r = client.post("/api/scan", json={"imageBase64": IMAGE})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["data"]["total_amount"] == 42.90
    assert [i["name"] for i in body["data"]["items"]] == ["Arroz 5kg", "Feijão 1kg"]


def test_scan_endpoint_requires_image(client) -> None:
    r = client.post("/api/scan", json={})
    assert r.status_code == 400
    assert r.json()["error"] == "Image data is required"


def test_scan_endpoint_surfaces_raw_answer(records, make_scanner) -> None:
    client = _client(records, make_scanner(error=ScanParseError("no json", raw="desculpe")))
    r = client.post("/api/scan", json={"imageBase64": IMAGE})
    assert r.status_code == 500
    assert r.json()["error"] == "Failed to parse receipt data"
    assert r.json()["raw"] == "desculpe"


def test_scan_endpoint_rejects_large_images(records, make_scanner) -> None:
    client = _client(records, make_scanner(_scanned()), max_image_bytes=4)
    r = client.post("/api/scan", json={"imageBase64": IMAGE})
    assert r.status_code == 413


def test_scan_session_edit_and_commit(client) -> None:
    r = client.post("/api/scan/session", json={"imageBase64": IMAGE})
    assert r.status_code == 200
    assert r.json()["state"] == "editing"

    r = client.patch("/api/scan/session/items/1", json={"quantity": 3})
    assert r.json()["receipt"]["total_amount"] == pytest.approx(51.40)

    r = client.patch("/api/scan/session/items/9", json={"quantity": 3})
    assert r.status_code == 404

    r = client.post("/api/scan/session/commit")
    assert r.status_code == 201
    body = r.json()
    assert body["receipt"]["title"] == "Compra - Supermercado Extra"
    assert body["state"] == "capture"
    saved = client.get("/api/receipts").json()["items"]
    assert [x["id"] for x in saved] == [body["receipt"]["id"]]


def test_scan_session_failure_returns_to_capture(records, make_scanner) -> None:
    client = _client(records, make_scanner(error=ScanError("No response from AI")))
    r = client.post("/api/scan/session", json={"imageBase64": IMAGE})
    assert r.status_code == 422
    body = r.json()
    assert body["state"] == "capture"
    assert body["notifications"][0]["message"] == "Erro ao processar imagem. Tente novamente."


def test_commit_without_staged_receipt_conflicts(client) -> None:
    r = client.post("/api/scan/session/commit")
    assert r.status_code == 409


class _AuthClient:
    def __init__(self, error: Exception = None) -> None:
        self.error = error
        self.calls = []

    def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        self.calls.append((email, password))
        if self.error is not None:
            raise self.error
        return AuthSession(user_id="user-ana", access_token="jwt-ana", email=email)


def test_sign_in_scopes_stores_to_the_user(records, make_scanner) -> None:
    auth = _AuthClient()
    client = _client(records, make_scanner(_scanned()), auth=auth)
    local_list = client.get("/api/list").json()["list"]
    assert local_list["user_id"] == "user-1"

    r = client.post("/api/auth/sign-in", json={"email": "ana@example.com", "password": "segredo"})
    assert r.status_code == 200
    body = r.json()
    assert body["user_id"] == "user-ana" and body["signed_in"] is True
    assert body["notifications"] == [{"level": "success", "message": "Bem-vindo de volta!"}]
    assert auth.calls == [("ana@example.com", "segredo")]

    own_list = client.get("/api/list").json()["list"]
    assert own_list["user_id"] == "user-ana"
    assert own_list["id"] != local_list["id"]

    r = client.post("/api/auth/sign-out")
    assert r.json()["user_id"] == "user-1"
    assert client.get("/api/list").json()["list"]["id"] == local_list["id"]


@pytest.mark.parametrize(
    "error, status",
    [(AuthError("Email ou senha incorretos"), 401), (ValidationError("Preencha todos os campos"), 400)],
)
def test_sign_in_failure_keeps_current_user(records, make_scanner, error, status) -> None:
    client = _client(records, make_scanner(_scanned()), auth=_AuthClient(error))
    r = client.post("/api/auth/sign-in", json={"email": "ana@example.com", "password": "x"})
    assert r.status_code == status
    assert r.json()["user_id"] == "user-1"
    assert r.json()["notifications"][0]["message"] == str(error)


def test_sign_in_unavailable_without_backend(client) -> None:
    r = client.post("/api/auth/sign-in", json={"email": "ana@example.com", "password": "segredo"})
    assert r.status_code == 503


def test_sign_in_hands_token_to_rest_backend(make_scanner) -> None:
    class _Http:
        def __init__(self) -> None:
            self.headers = {}

    records = RestRecordStore("https://db.example.test", "anon", session=_Http())
    context = AppContext.assemble(records, make_scanner(_scanned()), Session(user_id="local"))

    context.sign_in(AuthSession(user_id="user-ana", access_token="jwt-ana"))
    assert records.s.headers["Authorization"] == "Bearer jwt-ana"
    assert context.session.user_id == "user-ana"

    context.sign_out()
    assert records.s.headers["Authorization"] == "Bearer anon"
    assert context.session.user_id == "local"


def test_scanner_runs_off_the_event_loop(records) -> None:
    seen = []

    class _LoopCheckingScanner:
        def scan(self, data_url: str) -> ScannedReceipt:
            try:
                asyncio.get_running_loop()
                seen.append("loop")
            except RuntimeError:
                seen.append("worker")
            return _scanned()

    client = _client(records, _LoopCheckingScanner())
    assert client.post("/api/scan", json={"imageBase64": IMAGE}).status_code == 200
    assert client.post("/api/scan/session", json={"imageBase64": IMAGE}).status_code == 200
    assert seen == ["worker", "worker"]
