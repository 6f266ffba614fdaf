"""
Esquemas pydantic del tracking de visitas.

- Entrada: TrackingPayload / CartSyncPayload (lo que manda el navegador)
- Canónicos: CanonicalVisit (listado) y CartSnapshot (detalle de carrito)

Todo viaja en camelCase; internamente se usa snake_case.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from app.models.visit import VisitStatus
from app.utils.timeutils import parse_timestamp

VisitSourceName = Literal["database", "tracking_file", "cart_file"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ==========================================
# ENTRADA
# ==========================================

class TrackingPayload(CamelModel):
    session_id: str
    whatsapp: Optional[str] = None
    search_terms: Optional[list[Any]] = None
    categories_visited: Optional[list[dict[str, Any]]] = None
    products_viewed: Optional[list[dict[str, Any]]] = None
    cart_data: Optional[Any] = None
    analytics_data: Optional[dict[str, Any]] = None
    status: Optional[VisitStatus] = None
    whatsapp_collected_at: Optional[datetime] = None

    @field_validator("session_id")
    @classmethod
    def strip_session_id(cls, v: str) -> str:
        """SessionId obligatorio, sin espacios alrededor."""
        v = v.strip()
        if not v:
            raise ValueError("SessionId é obrigatório")
        return v

    @field_validator("whatsapp")
    @classmethod
    def strip_whatsapp(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @field_validator("search_terms")
    @classmethod
    def flatten_search_terms(cls, v: Optional[list[Any]]) -> Optional[list[str]]:
        """Acepta ["termo"] o [{"term": "termo", ...}]."""
        if v is None:
            return None
        terms = []
        for entry in v:
            if isinstance(entry, dict):
                entry = entry.get("term")
            if isinstance(entry, str) and entry.strip():
                terms.append(entry.strip())
        return terms

    @field_validator("whatsapp_collected_at", mode="before")
    @classmethod
    def parse_collected_at(cls, v: Any) -> Optional[datetime]:
        return parse_timestamp(v)


class CartSyncPayload(TrackingPayload):
    cart_data: Any
    # Sólo alimenta el registro del archivo; la fila de la BD usa la hora del servidor
    last_activity: Optional[datetime] = None

    @field_validator("cart_data")
    @classmethod
    def require_cart_data(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("cartData é obrigatório")
        return v

    @field_validator("last_activity", mode="before")
    @classmethod
    def parse_last_activity(cls, v: Any) -> Optional[datetime]:
        return parse_timestamp(v)


# ==========================================
# CANÓNICOS
# ==========================================

class CategoryVisit(CamelModel):
    name: str
    visit_count: int = 0
    last_visit_at: Optional[datetime] = None


class ProductView(CamelModel):
    id: str
    name: str = ""
    category: str = ""
    visit_count: int = 0
    last_view_at: Optional[datetime] = None


class CanonicalVisit(CamelModel):
    session_id: str
    whatsapp: Optional[str] = None
    start_time: datetime
    last_activity: datetime
    session_duration_seconds: int = 0
    search_terms: list[str] = []
    categories_visited: list[CategoryVisit] = []
    products_viewed: list[ProductView] = []
    has_cart: bool = False
    cart_value: Optional[Decimal] = None
    cart_item_count: Optional[int] = None
    status: VisitStatus = VisitStatus.ACTIVE
    whatsapp_collected_at: Optional[datetime] = None
    source: VisitSourceName

    @model_validator(mode="after")
    def check_cart_invariant(self):
        if self.has_cart and (self.cart_value is None or self.cart_item_count is None):
            raise ValueError("Visita com carrinho precisa de cartValue e cartItemCount")
        if self.cart_value is not None and self.cart_value < 0:
            raise ValueError("cartValue não pode ser negativo")
        if self.last_activity < self.start_time:
            raise ValueError("lastActivity anterior a startTime")
        return self

    @field_serializer("cart_value")
    def money_as_float(self, v: Optional[Decimal]) -> Optional[float]:
        return float(v) if v is not None else None


class CartItemView(CamelModel):
    id: str
    name: str
    model_name: Optional[str] = None
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    @field_serializer("unit_price", "total_price")
    def money_as_float(self, v: Decimal) -> float:
        return float(v)


class CartAnalytics(CamelModel):
    time_on_site_seconds: int = 0
    categories_visited: list[CategoryVisit] = []
    search_terms: list[str] = []
    products_viewed: list[ProductView] = []


class CartSnapshot(CamelModel):
    session_id: str
    whatsapp: Optional[str] = None
    items: list[CartItemView]
    total: Decimal
    last_activity: Optional[datetime] = None
    source: Literal["database", "cart_file"]
    analytics: CartAnalytics = CartAnalytics()

    @field_serializer("total")
    def money_as_float(self, v: Decimal) -> float:
        return float(v)
