"""
📱 UTILIDADES DE TELÉFONO (WhatsApp)
===================================

- normalize_phone_filter(): solo dígitos y un '+' inicial, para comparar
- format_phone_number(): formato de visualización brasileño para el admin
- mask_phone(): enmascara para logs
"""

import re
from typing import Optional

NOT_INFORMED = "Não informado"


def normalize_phone_filter(value: Optional[str]) -> str:
    """Deja solo dígitos y, si lo había, el '+' inicial."""
    value = (value or "").strip()
    prefix = "+" if value.startswith("+") else ""
    return prefix + re.sub(r"\D", "", value)


def phone_matches(query: Optional[str], phone: Optional[str]) -> bool:
    """Coincidencia por subcadena con ambos lados normalizados."""
    if not phone:
        return False
    return normalize_phone_filter(query) in normalize_phone_filter(phone)


def format_phone_number(phone: Optional[str]) -> str:
    """
    Formato brasileño para mostrar en el panel:
    celular  → +55 (11) 98765-4321
    fijo     → +55 (11) 3333-4444
    Números con otro código de país se devuelven tal cual.
    """
    if not phone or not phone.strip():
        return NOT_INFORMED

    if phone.startswith("+") and not phone.startswith("+55"):
        return phone

    clean = re.sub(r"[^\d+]", "", phone)

    # Un solo +55 aunque venga duplicado
    if "+55" in clean:
        clean = "55" + clean.replace("+55", "")
    clean = clean.replace("+", "")

    number = clean
    if clean.startswith("55") and len(clean) >= 12:
        number = clean[2:]

    if len(number) == 11:
        return f"+55 ({number[:2]}) {number[2:7]}-{number[7:]}"
    if len(number) == 10:
        return f"+55 ({number[:2]}) {number[2:6]}-{number[6:]}"
    return f"+55 {number}"


def mask_phone(num: Optional[str]) -> str:
    """Enmascara todos los dígitos menos los últimos 4."""
    num = num or ""
    return ("•" * max(len(num) - 4, 0)) + num[-4:]
