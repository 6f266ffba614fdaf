"""
📋 LECTOR / FUSIÓN DE VISITAS (BD + ARCHIVOS JSON)
=================================================

Produce el listado único, deduplicado, filtrado y paginado del panel admin.

🔄 ALGORITMO:
1. Leer todas las filas de la BD (si falla → 500, es la fuente primaria)
2. Leer visits-tracking.json (best-effort: ilegible/corrupto → vacío)
3. Leer abandoned-carts.json (misma tolerancia)
4. Convertir cada forma a CanonicalVisit
5. Deduplicar por sessionId: BD > tracking > carritos (sin mezclar campos)
6. Filtros (AND): rango de fechas sobre startTime, teléfono, "tiene contacto"
7. Ordenar por startTime descendente
8. Paginar (30 por página, páginas desde 1)
9. Estadísticas sobre el conjunto filtrado ANTES de paginar

Las tres fuentes quedan detrás de VisitReader: para retirar los archivos basta
con no pasarlos al construirlo.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Callable, Iterable, Optional

from config.settings import settings
from app.models.visit import VisitStatus
from app.repositories.visit_repository import VisitRepository
from app.schemas.visit import CanonicalVisit
from app.services.flat_file_store import JsonArrayFile
from app.services.visit_converters import (
    cart_record_to_visit,
    row_to_visit,
    tracking_record_to_visit,
)
from app.utils.errors import DataCorruptionError, ValidationError
from app.utils.formatting import format_session_time, order_status
from app.utils.phone import format_phone_number, phone_matches
from app.utils.timeutils import parse_timestamp, utcnow

logger = logging.getLogger(__name__)


# ==========================================
# FUENTES (puerto de lectura)
# ==========================================

class VisitSource:
    name = "source"

    def load(self) -> list[CanonicalVisit]:
        raise NotImplementedError


class DatabaseVisitSource(VisitSource):
    """Fuente primaria: los errores de I/O suben como TransientStoreError."""
    name = "database"

    def __init__(self, repository: VisitRepository):
        self.repository = repository

    def load(self) -> list[CanonicalVisit]:
        visits = []
        for row in self.repository.list_all():
            try:
                visits.append(row_to_visit(row))
            except ValueError:
                logger.error("❌ Fila de visita inconsistente ignorada | session=%s", row.session_id)
        logger.debug("🗃️ %s visitas encontradas no banco", len(visits))
        return visits


class FileVisitSource(VisitSource):
    """Fuente secundaria: nunca falla, los registros rotos se saltan."""

    def __init__(self, name: str, store: JsonArrayFile, converter: Callable[[dict], CanonicalVisit]):
        self.name = name
        self.store = store
        self.converter = converter

    def load(self) -> list[CanonicalVisit]:
        visits = []
        for record in self.store.all():
            try:
                visits.append(self.converter(record))
            except DataCorruptionError as e:
                logger.warning("⚠️ Registro ignorado em %s: %s", self.name, e)
        return visits


class VisitReader:
    def __init__(self, sources: Iterable[VisitSource]):
        # El orden es la prioridad
        self.sources = list(sources)

    def merged(self) -> list[CanonicalVisit]:
        """Una visita por sessionId; la primera fuente que la tenga gana entera."""
        seen: set[str] = set()
        visits: list[CanonicalVisit] = []
        for source in self.sources:
            for visit in source.load():
                if visit.session_id in seen:
                    continue
                seen.add(visit.session_id)
                visits.append(visit)
        return visits


def build_visit_reader(
    repository: VisitRepository,
    tracking_store: Optional[JsonArrayFile] = None,
    cart_store: Optional[JsonArrayFile] = None,
    now: Optional[datetime] = None,
) -> VisitReader:
    sources: list[VisitSource] = [DatabaseVisitSource(repository)]
    if tracking_store is not None:
        sources.append(FileVisitSource("tracking_file", tracking_store, tracking_record_to_visit))
    if cart_store is not None:
        sources.append(FileVisitSource(
            "cart_file", cart_store, lambda record: cart_record_to_visit(record, now=now)
        ))
    return VisitReader(sources)


# ==========================================
# FILTROS
# ==========================================

@dataclass
class VisitFilters:
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    phone: Optional[str] = None
    has_contact: bool = False


def parse_date_bound(value: Optional[str], end_of_day: bool) -> Optional[datetime]:
    """
    'YYYY-MM-DD' → inicio del día (o fin del día, inclusivo, si end_of_day).
    ISO con hora → ese instante exacto.
    """
    if not value:
        return None
    try:
        if len(value) == 10:
            day = date.fromisoformat(value)
            moment = time.max if end_of_day else time.min
            return datetime.combine(day, moment, tzinfo=timezone.utc)
        return parse_timestamp(value)
    except ValueError as e:
        raise ValidationError(f"Data inválida: {value}") from e


def has_contact(visit: CanonicalVisit) -> bool:
    return bool(visit.whatsapp and visit.whatsapp.strip())


def apply_filters(visits: list[CanonicalVisit], filters: VisitFilters) -> list[CanonicalVisit]:
    start = parse_date_bound(filters.start_date, end_of_day=False)
    end = parse_date_bound(filters.end_date, end_of_day=True)

    if start is not None:
        visits = [v for v in visits if v.start_time >= start]
    if end is not None:
        visits = [v for v in visits if v.start_time <= end]
    if filters.phone:
        visits = [v for v in visits if phone_matches(filters.phone, v.whatsapp)]
    if filters.has_contact:
        visits = [v for v in visits if has_contact(v)]
    return visits


# ==========================================
# PAGINACIÓN / ESTADÍSTICAS
# ==========================================

def paginate(visits: list, page: int, page_size: int) -> tuple[list, dict]:
    if page < 1:
        raise ValidationError("Página deve ser maior ou igual a 1")
    total = len(visits)
    total_pages = math.ceil(total / page_size) if page_size else 0
    offset = (page - 1) * page_size
    return visits[offset:offset + page_size], {
        "page": page,
        "limit": page_size,
        "total": total,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }


def compute_stats(visits: list[CanonicalVisit]) -> dict:
    return {
        "total": len(visits),
        "active": sum(1 for v in visits if v.status == VisitStatus.ACTIVE),
        "abandoned": sum(1 for v in visits if v.status == VisitStatus.ABANDONED),
        "completed": sum(1 for v in visits if v.status == VisitStatus.COMPLETED),
        "withCart": sum(1 for v in visits if v.has_cart),
        "withPhone": sum(1 for v in visits if has_contact(v)),
    }


def to_listing_item(visit: CanonicalVisit) -> dict:
    item = visit.model_dump(mode="json", by_alias=True)
    item.update(
        id=visit.session_id,
        whatsapp=format_phone_number(visit.whatsapp),
        whatsappRaw=visit.whatsapp,
        sessionTime=format_session_time(visit.session_duration_seconds),
        sessionTimeSeconds=visit.session_duration_seconds,
        categoriesVisited=[c.name for c in visit.categories_visited],
        orderStatus=order_status(visit.status, visit.has_cart),
        cartValue=float(visit.cart_value or 0),
        cartItems=visit.cart_item_count or 0,
    )
    return item


# ==========================================
# SERVICIO
# ==========================================

class VisitListingService:
    def __init__(self, reader: VisitReader, page_size: int = settings.VISITS_PAGE_SIZE):
        self.reader = reader
        self.page_size = page_size

    def list_visits(self, filters: VisitFilters, page: int = 1) -> dict:
        visits = apply_filters(self.reader.merged(), filters)
        visits.sort(key=lambda v: v.start_time, reverse=True)

        page_items, pagination = paginate(visits, page, self.page_size)

        return {
            "success": True,
            "visits": [to_listing_item(v) for v in page_items],
            "pagination": pagination,
            "stats": compute_stats(visits),
            "timestamp": utcnow().isoformat(),
        }
