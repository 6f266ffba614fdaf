from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import JSONResponse
from typing import Any, Optional
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session
import anyio
import json
import logging

from config.settings import settings
from database.connection import get_db
from app.repositories.visit_repository import VisitRepository
from app.services.flat_file_store import CartFileStore, get_cart_store
from app.services.ingestion_service import IngestionService
from app.services.throttle_service import check_rate_limit
from app.services.visit_converters import row_to_visit
from app.utils.errors import NotFoundError, ValidationError


router = APIRouter()
limiter = Limiter(key_func=get_remote_address)
logger = logging.getLogger(__name__)


def _session_id_of(raw: Any) -> Optional[str]:
    """sessionId crudo del body, solo para el rate limit (la validación real va después)."""
    if isinstance(raw, dict) and isinstance(raw.get("sessionId"), str):
        return raw["sessionId"].strip() or None
    return None


def _require_session_id(session_id: Optional[str]) -> str:
    if not session_id or not session_id.strip():
        raise ValidationError("SessionId é obrigatório")
    return session_id.strip()


# ==========================================
# TRACKING DE VISITAS
# ==========================================

@router.post("/api/visits/track")
@limiter.limit(settings.IP_RATE_LIMIT) #SlowAPI
async def track_visit(
    request: Request,
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    cart_store: CartFileStore = Depends(get_cart_store),
):
    session_id = _session_id_of(payload)
    if session_id:
        check_rate_limit(session_id)

    # Escritura bloqueante (BD + archivo) fuera del event loop
    await anyio.to_thread.run_sync(IngestionService(db, cart_store).ingest_raw, payload)
    return JSONResponse({"success": True, "message": "Visita registrada com sucesso"})


@router.get("/api/visits/track")
def get_visit(
    sessionId: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    session_id = _require_session_id(sessionId)
    row = VisitRepository(db).get(session_id)
    if row is None:
        raise NotFoundError("Visita não encontrada")
    return {"success": True, "visit": row_to_visit(row).model_dump(mode="json", by_alias=True)}


# ==========================================
# SINCRONIZACIÓN DE CARRITO
# ==========================================

@router.post("/api/cart/sync")
@limiter.limit(settings.IP_RATE_LIMIT)
async def sync_cart(
    request: Request,
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    cart_store: CartFileStore = Depends(get_cart_store),
):
    session_id = _session_id_of(payload)
    if session_id:
        check_rate_limit(session_id)

    result = await anyio.to_thread.run_sync(IngestionService(db, cart_store).sync_cart_raw, payload)

    if not result["has_cart"]:
        return JSONResponse({
            "success": True,
            "message": "Carrinho vazio removido",
            "removed": result["mirror"] == "removed",
        })
    return JSONResponse({
        "success": True,
        "message": "Carrinho sincronizado com sucesso",
        "saved": True,
        "itemCount": result["item_count"],
        "total": result["total"],
    })


@router.get("/api/cart/sync")
def cart_exists(
    sessionId: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    cart_store: CartFileStore = Depends(get_cart_store),
):
    """¿Hay carrito guardado para la sesión? BD primero, después el archivo."""
    session_id = _require_session_id(sessionId)

    row = VisitRepository(db).get(session_id)
    if row is not None and row.has_cart and row.cart_data:
        try:
            cart = json.loads(row.cart_data)
        except ValueError:
            logger.warning("⚠️ cartData corrupto no banco | session=%s", session_id)
        else:
            return {"success": True, "exists": True, "source": "database", "cart": cart}

    record = cart_store.find(session_id)
    if record is not None and isinstance(record.get("cartData"), dict):
        return {"success": True, "exists": True, "source": "cart_file", "cart": record["cartData"]}

    return {"success": True, "exists": False}
