"""
📁 FUENTE SECUNDARIA - ARCHIVOS JSON
===================================

Dos archivos independientes, cada uno un array JSON completo:
- abandoned-carts.json  → CartFileStore (espejo de carritos no vacíos)
- visits-tracking.json  → TrackingFileStore (tracking legado, solo lectura)

Cada mutación lee el archivo entero, modifica y lo reescribe (sin log de
append, sin locks). Dos escritores concurrentes pueden perder una
actualización; se acepta para datos de analytics.

load() lanza DataCorruptionError si el archivo no se puede leer o no es un
array JSON; load_or_empty() degrada a [] y deja constancia en el log.
"""

import json
import logging
import os
import tempfile
from datetime import datetime
from typing import Optional

from config.settings import settings
from app.utils.errors import DataCorruptionError
from app.utils.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)


class JsonArrayFile:
    def __init__(self, path: str):
        self.path = path

    def load(self) -> list:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            raise DataCorruptionError(f"No se pudo leer {self.path}: {e}") from e
        if not isinstance(data, list):
            raise DataCorruptionError(f"{self.path} no contiene un array JSON")
        return data

    def load_or_empty(self) -> list:
        try:
            return self.load()
        except DataCorruptionError as e:
            logger.warning("⚠️ Archivo JSON ignorado: %s", e)
            return []

    def save(self, records: list) -> None:
        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(records, fh, indent=2, ensure_ascii=False, default=str)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def all(self) -> list[dict]:
        return [r for r in self.load_or_empty() if isinstance(r, dict)]

    def find(self, session_id: str) -> Optional[dict]:
        for record in self.all():
            if record.get("sessionId") == session_id:
                return record
        return None


class CartFileStore(JsonArrayFile):
    """
    Registro por sesión:
    {id, sessionId, whatsapp, cartData:{items,total}, analyticsData,
     lastActivity, webhookSent, webhookSentAt, createdAt, updatedAt, contacted}

    Es la única fuente con webhookSent/contacted.
    """

    def __init__(self, path: str = settings.CARTS_FILE):
        super().__init__(path)

    def upsert(
        self,
        session_id: str,
        whatsapp: Optional[str],
        cart_data: dict,
        analytics_data: Optional[dict],
        last_activity: Optional[datetime] = None,
    ) -> dict:
        """
        Reemplaza el registro de la sesión (conserva id, createdAt y contacted).
        lastActivity es la del cliente si viene; si no, ahora.
        """
        records = self.load()
        now = utcnow().isoformat()

        existing_index = next(
            (i for i, r in enumerate(records) if isinstance(r, dict) and r.get("sessionId") == session_id),
            None,
        )
        existing = records[existing_index] if existing_index is not None else {}

        record = {
            "id": existing.get("id") or f"cart_{int(utcnow().timestamp() * 1000)}",
            "sessionId": session_id,
            "whatsapp": whatsapp if whatsapp is not None else existing.get("whatsapp"),
            "cartData": cart_data,
            "analyticsData": analytics_data,
            "lastActivity": as_utc(last_activity).isoformat() if last_activity else now,
            "webhookSent": False,
            "webhookSentAt": None,
            "createdAt": existing.get("createdAt") or now,
            "updatedAt": now,
            "contacted": bool(existing.get("contacted", False)),
        }

        if existing_index is not None:
            records[existing_index] = record
        else:
            records.append(record)

        self.save(records)
        return record

    def remove(self, session_id: str) -> bool:
        """Borra el registro de la sesión. True si había algo que borrar."""
        records = self.load()
        kept = [r for r in records if not (isinstance(r, dict) and r.get("sessionId") == session_id)]
        if len(kept) == len(records):
            return False
        self.save(kept)
        return True


class TrackingFileStore(JsonArrayFile):
    """Snapshots escritos por el camino legado; puede ir atrasado respecto a la BD."""

    def __init__(self, path: str = settings.VISITS_FILE):
        super().__init__(path)


def get_cart_store() -> CartFileStore:
    return CartFileStore(settings.CARTS_FILE)


def get_tracking_store() -> TrackingFileStore:
    return TrackingFileStore(settings.VISITS_FILE)
