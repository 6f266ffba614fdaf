"""
🗄️ CONEXIÓN A BASE DE DATOS - CONFIGURACIÓN SQLALCHEMY
======================================================

Este módulo configura la conexión a la fuente primaria de visitas (PostgreSQL)
con pooling, gestión de sesiones y la base declarativa para los modelos ORM.

🏗️ CONFIGURACIÓN DEL POOL (PostgreSQL):
- Pool permanente: 10 conexiones activas
- Overflow: 20 conexiones adicionales bajo demanda
- Pre-ping: Verificación automática de conexiones
- Recycle: Renovación cada hora (3600s)

🔧 CARACTERÍSTICAS:
- Compatibilidad PostgreSQL y SQLite (desarrollo/testing)
- Dependency injection para FastAPI

📝 USO CON FASTAPI:
    from database.connection import get_db

    @router.get("/endpoint")
    def endpoint(db: Session = Depends(get_db)):
        # usar sesión db aquí
        pass
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import QueuePool
from config.settings import settings
import logging

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # SQLite: sin pool dedicado, permitir uso desde el threadpool de FastAPI
        return {"connect_args": {"timeout": 30, "check_same_thread": False}}
    return {
        "poolclass": QueuePool,
        "pool_size": 10,                 # Número de conexiones permanentes en el pool
        "max_overflow": 20,              # Conexiones adicionales cuando el pool está lleno
        "pool_pre_ping": True,           # Verificar conexiones antes de usar
        "pool_recycle": 3600,            # Reciclar conexiones cada hora
        "connect_args": {"connect_timeout": 10},
    }


# Crear motor de base de datos
engine = create_engine(
    settings.DATABASE_URL,
    echo=False,                     # No mostrar SQL queries (cambiar a True para debug)
    **_engine_options(settings.DATABASE_URL),
)

# Crear sesión local
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base para modelos usando el nuevo estilo de declaración
Base = declarative_base()

# Dependencia para obtener sesión de BD
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
