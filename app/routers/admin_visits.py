from fastapi import APIRouter, Body, Depends, Query
from typing import Any, Optional
from sqlalchemy.orm import Session
import logging

from database.connection import get_db
from app.repositories.visit_repository import VisitRepository
from app.services.cart_resolver import CartResolver
from app.services.flat_file_store import (
    CartFileStore,
    TrackingFileStore,
    get_cart_store,
    get_tracking_store,
)
from app.services.visit_reader import VisitFilters, VisitListingService, build_visit_reader
from app.utils.errors import ValidationError


router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/api/admin/visits")
def list_visits(
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    phone: Optional[str] = Query(None),
    hasContact: bool = Query(False),
    page: int = Query(1),
    db: Session = Depends(get_db),
    tracking_store: TrackingFileStore = Depends(get_tracking_store),
    cart_store: CartFileStore = Depends(get_cart_store),
):
    """Listado unificado BD + archivos, filtrado y paginado."""
    reader = build_visit_reader(VisitRepository(db), tracking_store, cart_store)
    filters = VisitFilters(
        start_date=startDate,
        end_date=endDate,
        phone=phone,
        has_contact=hasContact,
    )
    result = VisitListingService(reader).list_visits(filters, page=page)
    logger.info(
        "📋 Listagem de visitas | página=%s | total=%s",
        page, result["pagination"]["total"],
    )
    return result


@router.post("/api/admin/visits")
def cart_details(
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    cart_store: CartFileStore = Depends(get_cart_store),
):
    """Detalle del carrito de una sesión (BD → archivo → 404)."""
    session_id = payload.get("sessionId") if isinstance(payload, dict) else None
    if not isinstance(session_id, str) or not session_id.strip():
        raise ValidationError("SessionId é obrigatório")

    snapshot = CartResolver(db, cart_store).resolve(session_id.strip())
    return {"success": True, "cart": snapshot.model_dump(mode="json", by_alias=True)}
