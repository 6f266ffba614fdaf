# tests/test_migrate_cart_file.py
import json
from datetime import datetime, timezone
from decimal import Decimal

from app.models.visit import Visit
from app.utils.timeutils import as_utc
from database.migrate_cart_file import migrate_cart_file

EXISTING_START = datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)


def _record(session_id, items, created="2025-01-05T10:00:00Z", **extra):
    record = {
        "id": f"cart_{session_id}",
        "sessionId": session_id,
        "whatsapp": "11987654321",
        "cartData": {"items": items},
        "analyticsData": {"searchTerms": [{"term": "capa", "count": 1}], "categoriesVisited": [{"name": "Capas"}]},
        "createdAt": created,
        "lastActivity": "2025-01-05T10:20:00Z",
        "webhookSent": False,
        "contacted": False,
    }
    record.update(extra)
    return record


ITEM = {"id": "i1", "name": "Capa", "quantity": 3, "unitPrice": 7}


def test_migrates_non_empty_carts(db, cart_store):
    db.add(Visit(session_id="existing", start_time=EXISTING_START, last_activity=EXISTING_START,
                 status="active", has_cart=False))
    db.commit()

    cart_store.save([
        _record("new", [ITEM]),
        _record("existing", [ITEM]),
        _record("empty", []),
        _record("broken", [{"name": "x", "quantity": -1, "unitPrice": 1}]),
        {"cartData": {"items": [ITEM]}},
    ])

    counts = migrate_cart_file(db, cart_store)

    assert counts == {"migrated": 2, "skipped": 2, "errors": 1}

    db.expire_all()
    new = db.query(Visit).filter_by(session_id="new").one()
    assert new.status == "abandoned"
    assert as_utc(new.start_time) == datetime(2025, 1, 5, 10, 0, tzinfo=timezone.utc)
    assert new.has_cart is True
    assert new.cart_value == Decimal("21.00")
    assert new.cart_items == 1
    assert json.loads(new.search_terms) == ["capa"]

    existing = db.query(Visit).filter_by(session_id="existing").one()
    assert as_utc(existing.start_time) == EXISTING_START
    assert existing.status == "active"
    assert existing.has_cart is True

    assert db.query(Visit).filter_by(session_id="empty").first() is None


def test_running_twice_is_idempotent(db, cart_store):
    cart_store.save([_record("s1", [ITEM])])

    migrate_cart_file(db, cart_store)
    migrate_cart_file(db, cart_store)

    assert db.query(Visit).filter_by(session_id="s1").count() == 1
