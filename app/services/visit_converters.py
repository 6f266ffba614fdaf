"""
🔄 CONVERSORES A VISITA CANÓNICA
===============================

Cada fuente tiene su forma cruda; aquí se lleva todo a CanonicalVisit:

- row_to_visit()            → fila ORM de `visits` (BD)
- tracking_record_to_visit()→ registro de visits-tracking.json
- cart_record_to_visit()    → registro de abandoned-carts.json (status derivado)

Los conversores de archivo lanzan DataCorruptionError ante un registro
inutilizable; el lector lo salta sin tumbar el listado.
"""

import json
import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from config.settings import settings
from app.models.visit import Visit, VisitStatus
from app.schemas.visit import CanonicalVisit, CategoryVisit, ProductView
from app.services.cart_validator import items_total
from app.utils.errors import DataCorruptionError
from app.utils.timeutils import as_utc, parse_timestamp, utcnow

logger = logging.getLogger(__name__)


# ==========================================
# COERCIÓN DE CAMPOS
# ==========================================

def load_json_field(value: Any, default: Any) -> Any:
    """Columnas JSON serializadas; texto corrupto → default."""
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError:
        logger.warning("⚠️ Campo JSON corrupto ignorado")
        return default


def _safe_timestamp(value: Any) -> Optional[datetime]:
    try:
        return parse_timestamp(value)
    except (ValueError, TypeError, OverflowError):
        return None


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError, OverflowError):
        return 0


def coerce_whatsapp(value: Any) -> Optional[str]:
    # Registros antiguos guardan el número como entero JSON
    if value is None or isinstance(value, bool):
        return None
    return str(value).strip() or None


def coerce_search_terms(raw: Any) -> list[str]:
    """Acepta ["termo"] o [{"term": "termo", "count": 1, ...}]."""
    if not isinstance(raw, list):
        return []
    terms = []
    for entry in raw:
        if isinstance(entry, dict):
            entry = entry.get("term")
        if isinstance(entry, str) and entry:
            terms.append(entry)
    return terms


def coerce_categories(raw: Any) -> list[CategoryVisit]:
    if not isinstance(raw, list):
        return []
    categories = []
    for entry in raw:
        if isinstance(entry, str):
            categories.append(CategoryVisit(name=entry))
        elif isinstance(entry, dict) and isinstance(entry.get("name"), str):
            categories.append(CategoryVisit(
                name=entry["name"],
                visit_count=_as_int(entry.get("visits", entry.get("visitCount"))),
                last_visit_at=_safe_timestamp(entry.get("lastVisit", entry.get("lastVisitAt"))),
            ))
    return categories


def coerce_products(raw: Any) -> list[ProductView]:
    if not isinstance(raw, list):
        return []
    products = []
    for entry in raw:
        if not isinstance(entry, dict) or entry.get("id") is None:
            continue
        products.append(ProductView(
            id=str(entry["id"]),
            name=str(entry.get("name") or ""),
            category=str(entry.get("category") or ""),
            visit_count=_as_int(entry.get("visits", entry.get("visitCount"))),
            last_view_at=_safe_timestamp(entry.get("lastView", entry.get("lastViewAt"))),
        ))
    return products


def parse_money(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return amount if amount.is_finite() else None


def _duration_seconds(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds()))


def _cart_summary(has_cart: bool, value: Any, items: Any) -> tuple[bool, Optional[Decimal], Optional[int]]:
    """Garantiza has_cart ⇒ valor e items no nulos y valor >= 0."""
    cart_value = parse_money(value)
    if cart_value is not None and cart_value < 0:
        cart_value = None
    cart_items = None if items is None else _as_int(items)
    if has_cart:
        cart_value = cart_value if cart_value is not None else Decimal("0")
        cart_items = cart_items if cart_items is not None else 0
    return has_cart, cart_value, cart_items


def _status(value: Any) -> VisitStatus:
    try:
        return VisitStatus(value)
    except ValueError:
        return VisitStatus.ACTIVE


# ==========================================
# STATUS DERIVADO (solo archivo de carritos)
# ==========================================

def derive_cart_status(
    contacted: bool,
    webhook_sent: bool,
    last_activity: datetime,
    now: Optional[datetime] = None,
    abandoned_after: timedelta = timedelta(minutes=settings.ABANDONED_AFTER_MINUTES),
) -> VisitStatus:
    """
    completed  → ya se contactó al cliente
    abandoned  → más de 30 min sin actividad o ya se envió la notificación
    active     → en otro caso
    """
    now = now or utcnow()
    if contacted:
        return VisitStatus.COMPLETED
    if now - last_activity > abandoned_after or webhook_sent:
        return VisitStatus.ABANDONED
    return VisitStatus.ACTIVE


# ==========================================
# CONVERSORES
# ==========================================

def row_to_visit(row: Visit) -> CanonicalVisit:
    start = as_utc(row.start_time) or as_utc(row.created_at)
    last = as_utc(row.last_activity) or start
    last = max(last, start)
    has_cart, cart_value, cart_items = _cart_summary(bool(row.has_cart), row.cart_value, row.cart_items)

    return CanonicalVisit(
        session_id=row.session_id,
        whatsapp=row.whatsapp or None,
        start_time=start,
        last_activity=last,
        session_duration_seconds=_duration_seconds(start, last),
        search_terms=coerce_search_terms(load_json_field(row.search_terms, [])),
        categories_visited=coerce_categories(load_json_field(row.categories_visited, [])),
        products_viewed=coerce_products(load_json_field(row.products_viewed, [])),
        has_cart=has_cart,
        cart_value=cart_value,
        cart_item_count=cart_items,
        status=_status(row.status),
        whatsapp_collected_at=as_utc(row.whatsapp_collected_at),
        source="database",
    )


def tracking_record_to_visit(record: dict) -> CanonicalVisit:
    session_id = record.get("sessionId")
    if not isinstance(session_id, str) or not session_id:
        raise DataCorruptionError("Registro de tracking sem sessionId")

    start = _safe_timestamp(record.get("startTime")) or _safe_timestamp(record.get("createdAt"))
    if start is None:
        raise DataCorruptionError(f"Registro de tracking sem startTime: {session_id}")
    last = _safe_timestamp(record.get("lastActivity")) or _safe_timestamp(record.get("updatedAt")) or start
    last = max(last, start)

    has_cart, cart_value, cart_items = _cart_summary(
        bool(record.get("hasCart")), record.get("cartValue"), record.get("cartItems")
    )

    try:
        return CanonicalVisit(
            session_id=session_id,
            whatsapp=coerce_whatsapp(record.get("whatsapp")),
            start_time=start,
            last_activity=last,
            session_duration_seconds=_duration_seconds(start, last),
            search_terms=coerce_search_terms(record.get("searchTerms")),
            categories_visited=coerce_categories(record.get("categoriesVisited")),
            products_viewed=coerce_products(record.get("productsViewed")),
            has_cart=has_cart,
            cart_value=cart_value,
            cart_item_count=cart_items,
            status=_status(record.get("status") or VisitStatus.ACTIVE.value),
            whatsapp_collected_at=_safe_timestamp(record.get("whatsappCollectedAt")),
            source="tracking_file",
        )
    except PydanticValidationError as e:
        raise DataCorruptionError(f"Registro de tracking inválido: {session_id}") from e


def cart_items_of(record: dict) -> list:
    cart_data = record.get("cartData")
    if not isinstance(cart_data, dict) or not isinstance(cart_data.get("items"), list):
        return []
    return cart_data["items"]


def cart_record_to_visit(record: dict, now: Optional[datetime] = None) -> CanonicalVisit:
    session_id = record.get("sessionId")
    if not isinstance(session_id, str) or not session_id:
        raise DataCorruptionError("Registro de carrinho sem sessionId")

    created = _safe_timestamp(record.get("createdAt"))
    last = _safe_timestamp(record.get("lastActivity")) or created
    if created is None or last is None:
        raise DataCorruptionError(f"Registro de carrinho sem datas: {session_id}")
    last = max(last, created)

    analytics = record.get("analyticsData") if isinstance(record.get("analyticsData"), dict) else {}
    items = cart_items_of(record)
    cart_data = record.get("cartData") if isinstance(record.get("cartData"), dict) else {}
    total = cart_data.get("total")
    if total is None:
        total = items_total(items)
    has_cart, cart_value, cart_items = _cart_summary(len(items) > 0, total, len(items))

    try:
        return CanonicalVisit(
            session_id=session_id,
            whatsapp=coerce_whatsapp(record.get("whatsapp")),
            start_time=created,
            last_activity=last,
            session_duration_seconds=_duration_seconds(created, last),
            search_terms=coerce_search_terms(analytics.get("searchTerms")),
            categories_visited=coerce_categories(analytics.get("categoriesVisited")),
            products_viewed=coerce_products(analytics.get("productsViewed")),
            has_cart=has_cart,
            cart_value=cart_value,
            cart_item_count=cart_items,
            status=derive_cart_status(
                bool(record.get("contacted")),
                bool(record.get("webhookSent")),
                last,
                now=now,
            ),
            whatsapp_collected_at=_safe_timestamp(analytics.get("whatsappCollectedAt")),
            source="cart_file",
        )
    except PydanticValidationError as e:
        raise DataCorruptionError(f"Registro de carrinho inválido: {session_id}") from e
