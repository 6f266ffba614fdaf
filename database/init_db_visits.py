import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))) #Agregar ruta del proyecto
from database.connection import Base, engine
from app.models.visit import Visit  # noqa: F401  (registra la tabla en Base.metadata)


def init_database():
    """Crear todas las tablas en la base de datos"""
    Base.metadata.create_all(bind=engine)
    print("✅ Base de datos inicializada correctamente")


if __name__ == "__main__":
    init_database()
