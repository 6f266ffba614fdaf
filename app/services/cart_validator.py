"""
🛒 VALIDADOR DE CARRITO
======================

El navegador puede mandar el carrito de dos formas:

    {"items": [...], "total": 10.0}                 → DirectCart
    {"state": {"items": [...], "total": 10.0}}      → WrappedCart (store persistido)

parse_cart_shape() resuelve la forma UNA vez; después todo trabaja sobre un
DirectCart. Si vienen ambos, gana el items de primer nivel.

🛡️ REGLAS (en orden):
1. Debe ser un objeto y su lista de items un array (puede estar vacío)
2. Items vacío = carrito limpiado a propósito → válido, no se sigue validando
3. total numérico finito, si existe, >= 0 (si falta se calcula después)
4. Cada item: name string, quantity entero > 0, unitPrice numérico >= 0;
   id / productId opcionales (si vienen, strings)
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


@dataclass
class DirectCart:
    items: Any
    total: Any = None
    has_total: bool = False


@dataclass
class WrappedCart:
    state: DirectCart


CartShape = Union[DirectCart, WrappedCart]


@dataclass
class NormalizedCart:
    items: list[dict] = field(default_factory=list)
    total: Decimal = Decimal("0")

    @property
    def has_cart(self) -> bool:
        return len(self.items) > 0

    @property
    def item_count(self) -> int:
        return len(self.items)

    def as_json(self) -> dict:
        """Forma {items, total} que se guarda en ambas fuentes."""
        return {"items": self.items, "total": float(self.total)}


def _direct(obj: dict) -> DirectCart:
    return DirectCart(items=obj.get("items"), total=obj.get("total"), has_total="total" in obj and obj.get("total") is not None)


def parse_cart_shape(raw: Any) -> Optional[CartShape]:
    """Clasifica el payload; None si ni siquiera es un objeto."""
    if not isinstance(raw, dict):
        return None
    if isinstance(raw.get("items"), list):
        return _direct(raw)
    state = raw.get("state")
    if isinstance(state, dict):
        return WrappedCart(state=_direct(state))
    return _direct(raw)


def unwrap_cart(shape: CartShape) -> DirectCart:
    if isinstance(shape, WrappedCart):
        return shape.state
    return shape


def _is_number(value: Any) -> bool:
    # bool es subclase de int en Python; no cuenta como número aquí.
    # NaN e Infinity llegan desde json.loads y tampoco cuentan.
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return False
    if isinstance(value, Decimal):
        return value.is_finite()
    return isinstance(value, int) or math.isfinite(value)


def _is_whole(value: Any) -> bool:
    """2 y 2.0 son cantidades válidas; 1.5 no."""
    if isinstance(value, int):
        return True
    return value == value.to_integral_value() if isinstance(value, Decimal) else float(value).is_integer()


def _validate_item(item: Any) -> bool:
    if not isinstance(item, dict):
        return False
    if not isinstance(item.get("name"), str):
        return False
    quantity = item.get("quantity")
    unit_price = item.get("unitPrice")
    if not _is_number(quantity) or quantity <= 0 or not _is_whole(quantity):
        return False
    if not _is_number(unit_price) or unit_price < 0:
        return False
    if item.get("id") is not None and not isinstance(item.get("id"), str):
        return False
    if item.get("productId") is not None and not isinstance(item.get("productId"), str):
        return False
    return True


def validate_cart_data(raw: Any) -> bool:
    """True si el payload de carrito es aceptable para persistir."""
    shape = parse_cart_shape(raw)
    if shape is None:
        return False

    cart = unwrap_cart(shape)
    if not isinstance(cart.items, list):
        return False

    # Carrito vacío: limpieza intencional
    if len(cart.items) == 0:
        return True

    if cart.has_total and (not _is_number(cart.total) or cart.total < 0):
        return False

    return all(_validate_item(item) for item in cart.items)


def _money(amount: Decimal) -> Decimal:
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def line_total(quantity: Any, unit_price: Any) -> Decimal:
    return _money(Decimal(str(quantity)) * Decimal(str(unit_price)))


def items_total(items: list) -> Decimal:
    """Suma de quantity × unitPrice; ignora líneas sin números válidos."""
    total = Decimal("0")
    for item in items:
        if isinstance(item, dict) and _is_number(item.get("quantity")) and _is_number(item.get("unitPrice")):
            total += line_total(item["quantity"], item["unitPrice"])
    return total


def generate_item_id() -> str:
    return f"item_{uuid.uuid4().hex}"


def normalize_cart(raw: Any) -> NormalizedCart:
    """
    Desenvuelve, completa ids faltantes y calcula el total si no vino.
    Asume que validate_cart_data(raw) ya devolvió True.
    """
    cart = unwrap_cart(parse_cart_shape(raw))

    items = []
    for item in cart.items:
        normalized = dict(item)
        normalized["id"] = item.get("id") or generate_item_id()
        normalized["productId"] = item.get("productId") or normalized["id"]
        items.append(normalized)

    if cart.has_total and items:
        total = _money(Decimal(str(cart.total)))
    else:
        total = sum((line_total(i["quantity"], i["unitPrice"]) for i in items), Decimal("0"))

    return NormalizedCart(items=items, total=total)
