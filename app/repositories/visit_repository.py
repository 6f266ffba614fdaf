"""
Visit Repository
────────────────
Acceso a la tabla `visits` (fuente primaria y autoritativa).

El upsert usa INSERT … ON CONFLICT (session_id) DO UPDATE nativo, así la
escritura de una sesión es atómica sin locks en la aplicación. start_time solo
se fija en el INSERT; el UPDATE nunca lo toca.
"""
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from app.models.visit import Visit, VisitStatus
from app.utils.decorators import db_transaction, read_only

_INSERT_BY_DIALECT = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class VisitRepository:
    def __init__(self, db: Session):
        self.db = db

    @read_only
    def get(self, session_id: str) -> Optional[Visit]:
        return (
            self.db.query(Visit)
            .filter(Visit.session_id == session_id)
            .first()
        )

    @read_only
    def list_all(self) -> list[Visit]:
        return self.db.query(Visit).order_by(Visit.start_time.desc()).all()

    def _upsert(self, insert_values: dict[str, Any], update_values: dict[str, Any]):
        dialect = self.db.get_bind().dialect.name
        insert = _INSERT_BY_DIALECT.get(dialect)
        if insert is None:
            raise RuntimeError(f"Dialecto sin soporte de upsert: {dialect}")

        stmt = (
            insert(Visit)
            .values(**insert_values)
            .on_conflict_do_update(index_elements=["session_id"], set_=update_values)
            .returning(Visit.id, Visit.start_time, Visit.last_activity)
        )
        return self.db.execute(stmt).one()

    @db_transaction
    def upsert_snapshot(self, session_id: str, now: datetime, values: dict[str, Any]):
        """
        Crea o actualiza la fila de la sesión.

        Args:
            session_id: clave única
            now: instante de la escritura (start_time al crear, last_activity siempre)
            values: columnas a escribir; las ausentes no se tocan en el UPDATE

        Returns:
            Row(id, start_time, last_activity) tal como quedó guardada
        """
        insert_values = {
            "session_id": session_id,
            "status": VisitStatus.ACTIVE.value,
            "has_cart": False,
            "created_at": now,
            **values,
            "start_time": now,
            "last_activity": now,
            "updated_at": now,
        }
        update_values = {
            **values,
            "last_activity": now,
            "updated_at": now,
        }
        return self._upsert(insert_values, update_values)

    @db_transaction
    def upsert_from_cart_record(
        self,
        session_id: str,
        created_at: datetime,
        last_activity: datetime,
        values: dict[str, Any],
    ):
        """Backfill desde el archivo de carritos: la sesión nace 'abandoned' en createdAt."""
        insert_values = {
            "session_id": session_id,
            "status": VisitStatus.ABANDONED.value,
            "created_at": created_at,
            "start_time": created_at,
            "last_activity": last_activity,
            "updated_at": last_activity,
            **values,
        }
        update_values = {
            **values,
            "last_activity": last_activity,
            "updated_at": last_activity,
        }
        return self._upsert(insert_values, update_values)
