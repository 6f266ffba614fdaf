"""
📥 INGESTION SERVICE - ESCRITURA DE SNAPSHOTS DE SESIÓN
======================================================

Convierte un payload de tracking/carrito del navegador en un upsert durable.

🔄 FLUJO (idempotente, repetir la misma llamada siempre es seguro):
1. sessionId obligatorio (string no vacío) → si no, 400
2. Si viene cartData: validar → si no pasa, 400 y no se escribe nada
3. Normalizar: desenvolver, completar ids, calcular total
4. has_cart = len(items) > 0
5. Upsert en BD por session_id (start_time solo al crear; last_activity = now).
   Carrito vacío → cart_value/cart_items/cart_data en NULL (la fila queda)
6. Espejo en abandoned-carts.json: con carrito → upsert del registro;
   vacío → se BORRA el registro
7. Falla en 6 → log y seguir (réplica best-effort).
   Falla en 5 → 500 y no se intenta 6.

Si el payload no trae cartData, las columnas de carrito no se tocan y el
archivo no se modifica.
"""

import json
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.repositories.visit_repository import VisitRepository
from app.schemas.visit import CartSyncPayload, TrackingPayload
from app.services.cart_validator import NormalizedCart, normalize_cart, validate_cart_data
from app.services.flat_file_store import CartFileStore
from app.utils.errors import DataCorruptionError, ValidationError
from app.utils.phone import mask_phone
from app.utils.timeutils import as_utc, to_epoch_ms, utcnow

logger = logging.getLogger(__name__)


def parse_payload(raw: Any, model: type[TrackingPayload] = TrackingPayload) -> TrackingPayload:
    """Valida el cuerpo crudo; cualquier problema de forma es un 400."""
    if not isinstance(raw, dict):
        raise ValidationError("Payload deve ser um objeto JSON")
    try:
        return model.model_validate(raw)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "payload"
        if field in ("sessionId", "session_id"):
            raise ValidationError("SessionId é obrigatório e deve ser string") from e
        if first.get("type") == "missing":
            raise ValidationError(f"Campo obrigatório: {field}") from e
        raise ValidationError(f"Campo inválido: {field} ({first.get('msg')})") from e


class IngestionService:
    """Escritor de snapshots: BD autoritativa + espejo JSON best-effort."""

    def __init__(
        self,
        db: Session,
        cart_store: CartFileStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = VisitRepository(db)
        self.cart_store = cart_store
        self._clock = clock

    # ==========================================
    # API PÚBLICA
    # ==========================================

    def ingest(self, payload: TrackingPayload) -> dict[str, Any]:
        """
        Procesa un payload ya parseado.

        Returns:
            Dict con has_cart, item_count, start_time y el resultado del espejo
        """
        cart: Optional[NormalizedCart] = None
        if payload.cart_data is not None:
            if not validate_cart_data(payload.cart_data):
                logger.info("❌ Carrinho inválido | session=%s", payload.session_id)
                raise ValidationError("Dados do carrinho inválidos")
            cart = normalize_cart(payload.cart_data)

        now = self._clock()
        values = self._build_row_values(payload, cart)

        # Paso 5: fatal si falla (TransientStoreError sube tal cual)
        row = self.repository.upsert_snapshot(payload.session_id, now, values)

        mirrored = None
        if cart is not None:
            mirrored = self._mirror_cart(payload, cart, as_utc(row.start_time), now)

        logger.info(
            "📊 Visita atualizada | session=%s | whatsapp=%s | has_cart=%s | items=%s",
            payload.session_id,
            mask_phone(payload.whatsapp),
            cart.has_cart if cart else None,
            cart.item_count if cart else None,
        )

        return {
            "session_id": payload.session_id,
            "has_cart": cart.has_cart if cart else None,
            "item_count": cart.item_count if cart else None,
            "total": float(cart.total) if cart else None,
            "start_time": as_utc(row.start_time),
            "last_activity": as_utc(row.last_activity),
            "mirror": mirrored,
        }

    def ingest_raw(self, raw: Any, model: type[TrackingPayload] = TrackingPayload) -> dict[str, Any]:
        return self.ingest(parse_payload(raw, model))

    def sync_cart_raw(self, raw: Any) -> dict[str, Any]:
        return self.ingest_raw(raw, CartSyncPayload)

    # ==========================================
    # HELPERS
    # ==========================================

    def _build_row_values(self, payload: TrackingPayload, cart: Optional[NormalizedCart]) -> dict[str, Any]:
        """Solo columnas presentes en el payload: el resto no se pisa en el UPDATE."""
        values: dict[str, Any] = {}

        if payload.whatsapp is not None:
            values["whatsapp"] = payload.whatsapp
        if payload.search_terms is not None:
            values["search_terms"] = json.dumps(payload.search_terms, ensure_ascii=False)
        if payload.categories_visited is not None:
            values["categories_visited"] = json.dumps(payload.categories_visited, ensure_ascii=False)
        if payload.products_viewed is not None:
            values["products_viewed"] = json.dumps(payload.products_viewed, ensure_ascii=False)
        if payload.status is not None:
            values["status"] = payload.status.value
        if payload.whatsapp_collected_at is not None:
            values["whatsapp_collected_at"] = payload.whatsapp_collected_at

        if cart is not None:
            if cart.has_cart:
                values.update(
                    has_cart=True,
                    cart_value=cart.total,
                    cart_items=cart.item_count,
                    cart_data=json.dumps(cart.as_json(), ensure_ascii=False),
                )
            else:
                # Tombstone: la fila queda, el carrito se anula
                values.update(has_cart=False, cart_value=None, cart_items=None, cart_data=None)

        return values

    def _analytics_for_file(
        self,
        payload: TrackingPayload,
        start_time: Optional[datetime],
        now: datetime,
    ) -> dict[str, Any]:
        """analyticsData del registro de archivo (timeOnSite en milisegundos)."""
        if payload.analytics_data is not None:
            return payload.analytics_data

        time_on_site_ms = 0
        if start_time is not None:
            time_on_site_ms = max(0, int((now - start_time).total_seconds() * 1000))

        return {
            "sessionId": payload.session_id,
            "timeOnSite": time_on_site_ms,
            "categoriesVisited": payload.categories_visited or [],
            "searchTerms": [
                {"term": term, "count": 1, "lastSearch": to_epoch_ms(now)}
                for term in (payload.search_terms or [])
            ],
            "productsViewed": payload.products_viewed or [],
            "whatsappCollected": payload.whatsapp,
            "whatsappCollectedAt": to_epoch_ms(payload.whatsapp_collected_at),
        }

    def _mirror_cart(
        self,
        payload: TrackingPayload,
        cart: NormalizedCart,
        start_time: Optional[datetime],
        now: datetime,
    ) -> Optional[str]:
        """Paso 6. Nunca lanza: la BD ya quedó escrita."""
        try:
            if cart.has_cart:
                self.cart_store.upsert(
                    session_id=payload.session_id,
                    whatsapp=payload.whatsapp,
                    cart_data=cart.as_json(),
                    analytics_data=self._analytics_for_file(payload, start_time, now),
                    last_activity=getattr(payload, "last_activity", None),
                )
                return "saved"
            removed = self.cart_store.remove(payload.session_id)
            return "removed" if removed else "absent"
        except (OSError, DataCorruptionError, TypeError, ValueError):
            logger.exception("❌ Falha ao espelhar carrinho no arquivo | session=%s", payload.session_id)
            return "failed"
