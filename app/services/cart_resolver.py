"""
🛒 RESOLVEDOR DE CARRITO (detalle para el panel admin)
=====================================================

Orden de búsqueda para una sesión:

1. BD: cart_data (JSON) con lista de items
   total = total del blob → cart_value de la fila → Σ totales de línea
2. Si la BD no dio items (sin fila, cart_data NULL o corrupto):
   registro de abandoned-carts.json
   total = total del archivo → Σ totales de línea
3. Nada → NotFoundError (404)

totalPrice de cada línea SIEMPRE se recalcula (unitPrice × quantity); el
valor guardado no se usa. timeOnSite del archivo viene en milisegundos.
"""

import json
import logging
from decimal import Decimal
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.models.visit import Visit
from app.repositories.visit_repository import VisitRepository
from app.schemas.visit import CartAnalytics, CartItemView, CartSnapshot
from app.services.cart_validator import line_total
from app.services.flat_file_store import CartFileStore
from app.services.visit_converters import (
    coerce_categories,
    coerce_products,
    coerce_search_terms,
    coerce_whatsapp,
    load_json_field,
    parse_money,
)
from app.utils.errors import DataCorruptionError, NotFoundError
from app.utils.timeutils import as_utc, parse_timestamp

logger = logging.getLogger(__name__)


def _item_view(item: Any) -> CartItemView:
    if not isinstance(item, dict):
        raise DataCorruptionError("Item de carrinho não é um objeto")
    try:
        raw_quantity = Decimal(str(item["quantity"]))
        unit_price = Decimal(str(item["unitPrice"]))
        if not raw_quantity.is_finite() or raw_quantity != raw_quantity.to_integral_value():
            raise ValueError(f"quantity não inteira: {item['quantity']!r}")
        if not unit_price.is_finite():
            raise ValueError(f"unitPrice não finito: {item['unitPrice']!r}")
        quantity = int(raw_quantity)
        return CartItemView(
            id=str(item.get("id") or item.get("productId") or ""),
            name=str(item.get("name") or ""),
            model_name=item.get("modelName"),
            quantity=quantity,
            unit_price=unit_price,
            total_price=line_total(quantity, unit_price),
        )
    except (KeyError, TypeError, ValueError, ArithmeticError) as e:
        raise DataCorruptionError(f"Item de carrinho inválido: {e}") from e


def build_items(raw_items: Any) -> list[CartItemView]:
    if not isinstance(raw_items, list):
        raise DataCorruptionError("cartData sem lista de items")
    return [_item_view(item) for item in raw_items]


def pick_total(*candidates: Any, items: list[CartItemView]) -> Decimal:
    """Primer total utilizable; si ninguno, la suma de las líneas."""
    for candidate in candidates:
        amount = parse_money(candidate)
        if amount is not None and amount >= 0:
            return amount
    return sum((i.total_price for i in items), Decimal("0"))


class CartResolver:
    def __init__(self, db: Session, cart_store: CartFileStore):
        self.repository = VisitRepository(db)
        self.cart_store = cart_store

    def resolve(self, session_id: str) -> CartSnapshot:
        # Errores de la BD (TransientStoreError) suben: son un 500
        row = self.repository.get(session_id)

        snapshot = self._from_row(row) if row is not None else None
        if snapshot is None:
            snapshot = self._from_file(session_id)
        if snapshot is None:
            logger.info("🔍 Carrinho não encontrado | session=%s", session_id)
            raise NotFoundError("Carrinho não encontrado")
        return snapshot

    # ==========================================
    # FUENTES
    # ==========================================

    def _from_row(self, row: Visit) -> Optional[CartSnapshot]:
        if not row.cart_data:
            return None
        try:
            blob = json.loads(row.cart_data)
            if not isinstance(blob, dict):
                raise DataCorruptionError("cartData não é um objeto")
            items = build_items(blob.get("items"))
        except (ValueError, DataCorruptionError) as e:
            logger.warning("⚠️ cartData corrupto no banco | session=%s | %s", row.session_id, e)
            return None
        if not items:
            return None

        start = as_utc(row.start_time)
        last = as_utc(row.last_activity)
        if row.session_duration is not None:
            seconds = int(row.session_duration)
        elif start and last:
            seconds = max(0, int((last - start).total_seconds()))
        else:
            seconds = 0

        return CartSnapshot(
            session_id=row.session_id,
            whatsapp=row.whatsapp,
            items=items,
            total=pick_total(blob.get("total"), row.cart_value, items=items),
            last_activity=last,
            source="database",
            analytics=CartAnalytics(
                time_on_site_seconds=seconds,
                categories_visited=coerce_categories(load_json_field(row.categories_visited, [])),
                search_terms=coerce_search_terms(load_json_field(row.search_terms, [])),
                products_viewed=coerce_products(load_json_field(row.products_viewed, [])),
            ),
        )

    def _from_file(self, session_id: str) -> Optional[CartSnapshot]:
        record = self.cart_store.find(session_id)
        if record is None:
            return None

        cart_data = record.get("cartData")
        try:
            if not isinstance(cart_data, dict):
                raise DataCorruptionError("cartData não é um objeto")
            items = build_items(cart_data.get("items"))
        except DataCorruptionError as e:
            logger.warning("⚠️ Registro de carrinho corrupto no arquivo | session=%s | %s", session_id, e)
            return None
        if not items:
            return None

        analytics = record.get("analyticsData") if isinstance(record.get("analyticsData"), dict) else {}
        time_on_site_ms = analytics.get("timeOnSite") or 0
        try:
            seconds = max(0, int(time_on_site_ms) // 1000)
        except (TypeError, ValueError, OverflowError):
            seconds = 0

        try:
            last_activity = parse_timestamp(record.get("lastActivity"))
        except ValueError:
            last_activity = None

        try:
            return CartSnapshot(
                session_id=session_id,
                whatsapp=coerce_whatsapp(record.get("whatsapp")),
                items=items,
                total=pick_total(cart_data.get("total"), items=items),
                last_activity=last_activity,
                source="cart_file",
                analytics=CartAnalytics(
                    time_on_site_seconds=seconds,
                    categories_visited=coerce_categories(analytics.get("categoriesVisited")),
                    search_terms=coerce_search_terms(analytics.get("searchTerms")),
                    products_viewed=coerce_products(analytics.get("productsViewed")),
                ),
            )
        except PydanticValidationError as e:
            error = DataCorruptionError(f"Registro de carrinho inválido: {e.error_count()} erro(s)")
            logger.warning("⚠️ Registro de carrinho corrupto no arquivo | session=%s | %s", session_id, error)
            return None
