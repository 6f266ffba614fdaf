# tests/test_ingestion_service.py
import json
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from app.models.visit import Visit
from app.services.ingestion_service import IngestionService, parse_payload
from app.utils.errors import TransientStoreError, ValidationError
from app.utils.timeutils import as_utc

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class StepClock:
    """Devuelve T0, T0+1min, T0+2min, ... en cada llamada."""

    def __init__(self):
        self.calls = 0

    def __call__(self):
        value = T0 + timedelta(minutes=self.calls)
        self.calls += 1
        return value


def _cart(*items, **extra):
    return {"items": list(items), **extra}


def _item(**overrides):
    item = {"id": "i1", "productId": "p1", "name": "Capa iPhone 15", "quantity": 2, "unitPrice": 10.5}
    item.update(overrides)
    return item


def _row(db, session_id):
    db.expire_all()
    return db.query(Visit).filter(Visit.session_id == session_id).first()


@pytest.fixture
def service(db, cart_store):
    return IngestionService(db, cart_store, clock=StepClock())


def test_track_without_cart_creates_row_and_leaves_file_alone(service, db, cart_store):
    result = service.ingest_raw({"sessionId": "s1", "whatsapp": "11987654321", "searchTerms": ["capa"]})

    row = _row(db, "s1")
    assert row.status == "active"
    assert row.has_cart is False
    assert row.whatsapp == "11987654321"
    assert json.loads(row.search_terms) == ["capa"]
    assert result["mirror"] is None
    assert not os.path.exists(cart_store.path)


def test_cart_with_items_is_stored_and_mirrored(service, db, cart_store):
    result = service.ingest_raw({"sessionId": "s1", "cartData": _cart(_item())})

    row = _row(db, "s1")
    assert row.has_cart is True
    assert row.cart_value == Decimal("21.00")
    assert row.cart_items == 1
    assert json.loads(row.cart_data)["total"] == 21.0
    assert result["mirror"] == "saved"

    record = cart_store.find("s1")
    assert record["cartData"]["items"][0]["name"] == "Capa iPhone 15"
    assert record["webhookSent"] is False
    assert record["contacted"] is False
    assert record["analyticsData"]["timeOnSite"] == 0


def test_update_never_moves_start_time(service, db):
    service.ingest_raw({"sessionId": "s1"})
    service.ingest_raw({"sessionId": "s1", "whatsapp": "11999990000"})

    row = _row(db, "s1")
    assert as_utc(row.start_time) == T0
    assert as_utc(row.last_activity) == T0 + timedelta(minutes=1)
    assert db.query(Visit).count() == 1


def test_optional_fields_are_not_overwritten_when_absent(service, db):
    service.ingest_raw({"sessionId": "s1", "whatsapp": "11987654321"})
    service.ingest_raw({"sessionId": "s1", "searchTerms": [{"term": "película"}]})

    row = _row(db, "s1")
    assert row.whatsapp == "11987654321"
    assert json.loads(row.search_terms) == ["película"]


def test_payload_without_cart_keeps_existing_cart(service, db, cart_store):
    service.ingest_raw({"sessionId": "s1", "cartData": _cart(_item())})
    service.ingest_raw({"sessionId": "s1"})

    row = _row(db, "s1")
    assert row.has_cart is True
    assert row.cart_items == 1
    assert cart_store.find("s1") is not None


def test_empty_cart_tombstones_row_and_deletes_file_record(service, db, cart_store):
    service.ingest_raw({"sessionId": "s1", "cartData": _cart(_item())})
    result = service.ingest_raw({"sessionId": "s1", "cartData": _cart()})

    row = _row(db, "s1")
    assert row is not None
    assert row.has_cart is False
    assert row.cart_value is None
    assert row.cart_items is None
    assert row.cart_data is None
    assert result["mirror"] == "removed"
    assert cart_store.find("s1") is None


def test_empty_cart_without_file_record(service, cart_store):
    result = service.ingest_raw({"sessionId": "s1", "cartData": _cart()})
    assert result["mirror"] == "absent"


def test_wrapped_cart_is_unwrapped_and_ids_backfilled(service, db):
    service.ingest_raw({"sessionId": "s1", "cartData": {"state": {"items": [_item(id=None, productId=None)]}}})

    stored = json.loads(_row(db, "s1").cart_data)
    assert "state" not in stored
    assert stored["items"][0]["id"].startswith("item_")
    assert stored["items"][0]["productId"] == stored["items"][0]["id"]


def test_invalid_cart_writes_nothing(service, db, cart_store):
    with pytest.raises(ValidationError) as exc_info:
        service.ingest_raw({"sessionId": "s1", "cartData": _cart(_item(quantity=0))})

    assert exc_info.value.message == "Dados do carrinho inválidos"
    assert _row(db, "s1") is None
    assert not os.path.exists(cart_store.path)


@pytest.mark.parametrize("raw", [
    {},
    {"sessionId": ""},
    {"sessionId": "   "},
    {"sessionId": 123},
    {"sessionId": None},
])
def test_session_id_is_required(raw):
    with pytest.raises(ValidationError) as exc_info:
        parse_payload(raw)
    assert exc_info.value.status_code == 400
    assert exc_info.value.message == "SessionId é obrigatório e deve ser string"


def test_non_object_payload_is_rejected():
    with pytest.raises(ValidationError):
        parse_payload(["sessionId"])


def test_cart_sync_requires_cart_data(service):
    with pytest.raises(ValidationError) as exc_info:
        service.sync_cart_raw({"sessionId": "s1"})
    assert "cartData" in exc_info.value.message


@pytest.mark.parametrize("field", ["whatsappCollectedAt", "lastActivity"])
def test_out_of_range_epoch_is_rejected(service, db, field):
    with pytest.raises(ValidationError) as exc_info:
        service.sync_cart_raw({"sessionId": "s1", "cartData": _cart(_item()), field: 1e300})
    assert exc_info.value.status_code == 400
    assert field in exc_info.value.message
    assert _row(db, "s1") is None


def test_cart_sync_keeps_client_last_activity_in_file(service, db, cart_store):
    client_time = datetime(2025, 2, 28, 9, 30, tzinfo=timezone.utc)
    service.sync_cart_raw({
        "sessionId": "s1",
        "cartData": _cart(_item()),
        "lastActivity": int(client_time.timestamp() * 1000),
    })

    record = cart_store.find("s1")
    assert datetime.fromisoformat(record["lastActivity"]) == client_time
    # La fila de la BD usa la hora del servidor
    assert as_utc(_row(db, "s1").last_activity) >= T0


def test_file_failure_is_absorbed(service, db, cart_store, monkeypatch):
    def boom(**kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(cart_store, "upsert", boom)
    result = service.ingest_raw({"sessionId": "s1", "cartData": _cart(_item())})

    assert result["mirror"] == "failed"
    assert _row(db, "s1").has_cart is True


def test_corrupt_cart_file_is_not_overwritten(service, cart_store):
    with open(cart_store.path, "w", encoding="utf-8") as fh:
        fh.write("{not json")

    result = service.ingest_raw({"sessionId": "s1", "cartData": _cart(_item())})

    assert result["mirror"] == "failed"
    with open(cart_store.path, encoding="utf-8") as fh:
        assert fh.read() == "{not json"


def test_database_failure_is_fatal_and_skips_file(service, db, cart_store, monkeypatch):
    def broken_execute(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("database is down"))

    monkeypatch.setattr(db, "execute", broken_execute)

    with pytest.raises(TransientStoreError):
        service.ingest_raw({"sessionId": "s1", "cartData": _cart(_item())})
    assert not os.path.exists(cart_store.path)


def test_file_record_keeps_identity_on_update(service, cart_store):
    service.ingest_raw({"sessionId": "s1", "cartData": _cart(_item())})
    first = cart_store.find("s1")

    records = cart_store.load()
    records[0]["contacted"] = True
    records[0]["webhookSent"] = True
    cart_store.save(records)

    service.ingest_raw({"sessionId": "s1", "cartData": _cart(_item(quantity=3))})
    second = cart_store.find("s1")

    assert second["id"] == first["id"]
    assert second["createdAt"] == first["createdAt"]
    assert second["contacted"] is True
    assert second["webhookSent"] is False
    assert second["cartData"]["total"] == 31.5
    assert len(cart_store.load()) == 1
