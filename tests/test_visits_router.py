# tests/test_visits_router.py
import pytest
from fastapi.testclient import TestClient

from app.services.ingestion_service import IngestionService


def _cart(*items):
    return {"items": list(items)}


ITEM = {"id": "i1", "name": "Capa iPhone 15", "quantity": 2, "unitPrice": 10.5}


def test_track_visit_ok(client):
    res = client.post("/api/visits/track", json={
        "sessionId": "s1",
        "whatsapp": "11987654321",
        "searchTerms": ["capa"],
        "categoriesVisited": [{"name": "Capas", "visits": 1}],
    })
    assert res.status_code == 200
    assert res.json() == {"success": True, "message": "Visita registrada com sucesso"}

    visit = client.get("/api/visits/track", params={"sessionId": "s1"}).json()["visit"]
    assert visit["sessionId"] == "s1"
    assert visit["whatsapp"] == "11987654321"
    assert visit["searchTerms"] == ["capa"]
    assert visit["categoriesVisited"][0]["name"] == "Capas"
    assert visit["source"] == "database"


def test_track_without_session_id_is_400(client):
    res = client.post("/api/visits/track", json={"whatsapp": "11987654321"})
    assert res.status_code == 400
    assert res.json() == {"success": False, "error": "SessionId é obrigatório e deve ser string"}


def test_track_with_non_json_body_is_400(client):
    res = client.post("/api/visits/track", content=b"not json", headers={"Content-Type": "application/json"})
    assert res.status_code == 400
    assert res.json()["success"] is False


def test_track_with_invalid_cart_is_400(client):
    res = client.post("/api/visits/track", json={"sessionId": "s1", "cartData": {"items": [{"name": "x"}]}})
    assert res.status_code == 400
    assert res.json()["error"] == "Dados do carrinho inválidos"

    assert client.get("/api/visits/track", params={"sessionId": "s1"}).status_code == 404


@pytest.mark.parametrize("body", [
    b'{"sessionId": "s1", "cartData": {"items": [{"name": "Capa", "quantity": NaN, "unitPrice": 10}]}}',
    b'{"sessionId": "s1", "cartData": {"items": [{"name": "Capa", "quantity": 1, "unitPrice": 10}], "total": Infinity}}',
    b'{"sessionId": "s1", "cartData": {"items": [{"name": "Capa", "quantity": 1.5, "unitPrice": 10}]}}',
])
def test_track_with_non_finite_or_fractional_cart_is_400(client, cart_store, body):
    res = client.post("/api/visits/track", content=body, headers={"Content-Type": "application/json"})
    assert res.status_code == 400
    assert res.json() == {"success": False, "error": "Dados do carrinho inválidos"}

    assert client.get("/api/visits/track", params={"sessionId": "s1"}).status_code == 404
    assert cart_store.find("s1") is None


def test_track_with_out_of_range_timestamp_is_400(client):
    res = client.post("/api/visits/track", json={"sessionId": "h1", "whatsappCollectedAt": 1e300})
    assert res.status_code == 400
    assert res.json()["success"] is False


def test_unexpected_error_keeps_json_shape(app, monkeypatch):
    def boom(self, raw, model=None):
        raise RuntimeError("falha inesperada")

    monkeypatch.setattr(IngestionService, "ingest_raw", boom)
    client = TestClient(app, raise_server_exceptions=False)

    res = client.post("/api/visits/track", json={"sessionId": "s1"})
    assert res.status_code == 500
    assert res.json() == {"success": False, "error": "Erro interno do servidor"}


def test_session_rate_limit_is_429(client):
    for _ in range(30):
        assert client.post("/api/visits/track", json={"sessionId": "busy"}).status_code == 200

    res = client.post("/api/visits/track", json={"sessionId": "busy"})
    assert res.status_code == 429
    assert res.json()["success"] is False

    # Otra sesión no se ve afectada
    assert client.post("/api/visits/track", json={"sessionId": "calm"}).status_code == 200


def test_get_visit_requires_session_id(client):
    res = client.get("/api/visits/track")
    assert res.status_code == 400
    assert res.json() == {"success": False, "error": "SessionId é obrigatório"}


def test_cart_sync_saves_then_removes(client, cart_store):
    res = client.post("/api/cart/sync", json={"sessionId": "s1", "cartData": _cart(ITEM)})
    assert res.status_code == 200
    body = res.json()
    assert body["saved"] is True
    assert body["itemCount"] == 1
    assert body["total"] == 21.0
    assert cart_store.find("s1") is not None

    exists = client.get("/api/cart/sync", params={"sessionId": "s1"}).json()
    assert exists["exists"] is True
    assert exists["source"] == "database"
    assert exists["cart"]["total"] == 21.0

    res = client.post("/api/cart/sync", json={"sessionId": "s1", "cartData": _cart()})
    assert res.status_code == 200
    assert res.json()["removed"] is True
    assert cart_store.find("s1") is None

    # La fila queda como tombstone
    visit = client.get("/api/visits/track", params={"sessionId": "s1"}).json()["visit"]
    assert visit["hasCart"] is False
    assert visit["cartValue"] is None
    assert client.get("/api/cart/sync", params={"sessionId": "s1"}).json() == {"success": True, "exists": False}


def test_cart_sync_requires_cart_data(client):
    res = client.post("/api/cart/sync", json={"sessionId": "s1"})
    assert res.status_code == 400
    assert "cartData" in res.json()["error"]


def test_cart_exists_falls_back_to_file(client, cart_store):
    cart_store.upsert("file-only", None, {"items": [ITEM], "total": 21.0}, None)

    body = client.get("/api/cart/sync", params={"sessionId": "file-only"}).json()
    assert body["exists"] is True
    assert body["source"] == "cart_file"
