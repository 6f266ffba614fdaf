from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, Numeric
from sqlalchemy import CheckConstraint, Index
from sqlalchemy.sql import func
from database.connection import Base
from enum import Enum


class VisitStatus(str, Enum):
    ACTIVE    = "active"
    ABANDONED = "abandoned"
    COMPLETED = "completed"


class Visit(Base):
    """
    Una fila por sesión del navegador (upsert por session_id).

    Los arreglos de analytics y el carrito completo se guardan como JSON
    serializado en columnas Text; cuando el carrito queda vacío la fila se
    conserva con has_cart=False y las columnas de carrito en NULL.
    """
    __tablename__ = "visits"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(128), nullable=False, unique=True)  # unique ya crea índice
    whatsapp = Column(String(32), nullable=True)

    start_time = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    end_time = Column(DateTime(timezone=True), nullable=True)
    session_duration = Column(Integer, nullable=True)  # segundos

    search_terms = Column(Text, nullable=True)        # JSON: ["capa iphone", ...]
    categories_visited = Column(Text, nullable=True)  # JSON: [{name, visits, lastVisit}]
    products_viewed = Column(Text, nullable=True)     # JSON: [{id, name, category, visits, lastView}]

    status = Column(String(20), nullable=False, default=VisitStatus.ACTIVE.value)
    has_cart = Column(Boolean, nullable=False, default=False)
    cart_value = Column(Numeric(12, 2), nullable=True)
    cart_items = Column(Integer, nullable=True)
    cart_data = Column(Text, nullable=True)           # JSON: {items, total}

    last_activity = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    whatsapp_collected_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("status IN ('active','abandoned','completed')", name="ck_visit_valid_status"),
        CheckConstraint("cart_value IS NULL OR cart_value >= 0", name="ck_visit_cart_value_nonneg"),
        CheckConstraint("cart_items IS NULL OR cart_items >= 0", name="ck_visit_cart_items_nonneg"),
        CheckConstraint(
            "NOT has_cart OR (cart_value IS NOT NULL AND cart_items IS NOT NULL)",
            name="ck_visit_cart_consistent",
        ),
        Index("ix_visits_whatsapp", "whatsapp"),
        Index("ix_visits_start_time", "start_time"),
        Index("ix_visits_status", "status"),
    )

    def __repr__(self):
        return f"<Visit(session_id='{self.session_id}', status='{self.status}', has_cart={self.has_cart})>"
