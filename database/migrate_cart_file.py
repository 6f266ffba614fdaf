"""
🚚 BACKFILL: abandoned-carts.json → tabla visits
================================================

Sube a la BD cada carrito no vacío del archivo JSON.

- Sesión nueva: start_time = createdAt del registro, status 'abandoned'
- Sesión existente: se actualizan carrito/analytics, start_time no se toca
- Carrito vacío o sin sessionId → skipped
- Carrito inválido o error de BD → errors (se sigue con el resto)

Uso:
    python database/migrate_cart_file.py
"""
import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))) #Agregar ruta del proyecto
import json
import logging

from sqlalchemy.orm import Session

from database.connection import SessionLocal
from app.repositories.visit_repository import VisitRepository
from app.services.cart_validator import normalize_cart, validate_cart_data
from app.services.flat_file_store import CartFileStore
from app.services.visit_converters import cart_items_of, coerce_search_terms
from app.utils.errors import TransientStoreError
from app.utils.timeutils import parse_timestamp, utcnow

logger = logging.getLogger(__name__)


def _record_values(record: dict) -> dict:
    cart = normalize_cart(record["cartData"])
    analytics = record.get("analyticsData") if isinstance(record.get("analyticsData"), dict) else {}

    values = {
        "has_cart": True,
        "cart_value": cart.total,
        "cart_items": cart.item_count,
        "cart_data": json.dumps(cart.as_json(), ensure_ascii=False),
    }
    if record.get("whatsapp"):
        values["whatsapp"] = record["whatsapp"]
    if isinstance(analytics.get("searchTerms"), list):
        values["search_terms"] = json.dumps(coerce_search_terms(analytics["searchTerms"]), ensure_ascii=False)
    if isinstance(analytics.get("categoriesVisited"), list):
        values["categories_visited"] = json.dumps(analytics["categoriesVisited"], ensure_ascii=False)
    if isinstance(analytics.get("productsViewed"), list):
        values["products_viewed"] = json.dumps(analytics["productsViewed"], ensure_ascii=False)
    return values


def migrate_cart_file(db: Session, store: CartFileStore) -> dict:
    repository = VisitRepository(db)
    counts = {"migrated": 0, "skipped": 0, "errors": 0}

    for record in store.all():
        session_id = record.get("sessionId")
        if not isinstance(session_id, str) or not session_id or not cart_items_of(record):
            counts["skipped"] += 1
            continue

        if not validate_cart_data(record.get("cartData")):
            logger.warning("⚠️ Carrinho inválido no arquivo | session=%s", session_id)
            counts["errors"] += 1
            continue

        try:
            created = parse_timestamp(record.get("createdAt")) or utcnow()
            last = parse_timestamp(record.get("lastActivity")) or created
        except ValueError:
            logger.warning("⚠️ Datas inválidas no arquivo | session=%s", session_id)
            counts["errors"] += 1
            continue

        try:
            repository.upsert_from_cart_record(session_id, created, max(last, created), _record_values(record))
        except TransientStoreError:
            logger.exception("❌ Falha ao migrar carrinho | session=%s", session_id)
            counts["errors"] += 1
            continue

        counts["migrated"] += 1

    logger.info(
        "✅ Migração concluída | migrados=%s | ignorados=%s | erros=%s",
        counts["migrated"], counts["skipped"], counts["errors"],
    )
    return counts


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    db = SessionLocal()
    try:
        print(migrate_cart_file(db, CartFileStore()))
    finally:
        db.close()
