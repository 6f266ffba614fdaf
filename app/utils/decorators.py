"""
🔧 DECORADORES DE TRANSACCIONES PARA LA FUENTE PRIMARIA
=======================================================

Decoradores simples para manejar transacciones de manera consistente en los
repositorios que tocan la base de datos relacional.

ANTES (código repetitivo):
    def mi_metodo(self, ...):
        try:
            # lógica
            self.db.commit()
            return resultado
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error: {e}")
            raise TransientStoreError(...)

DESPUÉS (con decorador):
    @db_transaction
    def mi_metodo(self, ...):
        # solo lógica
        return resultado  # commit automático

La base de datos es la fuente autoritativa: cualquier fallo se propaga como
TransientStoreError (500, reintentable por el cliente). Nunca se traga.
"""

import logging
import re
from functools import wraps
from typing import Callable, Any

from sqlalchemy.exc import SQLAlchemyError

from app.utils.errors import TransientStoreError

logger = logging.getLogger(__name__)

def _mask_sensitive_data(data: Any) -> str:
    """
    🔒 Enmascara datos sensibles en logs para proteger PII

    Args:
        data: Datos a enmascarar (args, kwargs, etc.)

    Returns:
        String seguro para logging sin datos sensibles
    """
    data_str = str(data)

    # Enmascarar números de WhatsApp (varios formatos)
    phone_patterns = [
        r'\b(\+?1?[-.\s]?\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4})\b',  # US/Internacional
        r'\b(\+?[0-9]{1,4}[-.\s]?[0-9]{6,14})\b',  # Internacional general
        r"'whatsapp':\s*'([^']+)'",  # En kwargs como string
        r'"whatsapp":\s*"([^"]+)"',  # En kwargs como JSON
    ]

    for pattern in phone_patterns:
        data_str = re.sub(pattern, lambda m: m.group(0).replace(m.group(1), "***MASKED***"), data_str)

    return data_str

def db_transaction(func: Callable) -> Callable:
    """
    🎯 Decorador principal para escrituras en la base de datos

    ✅ QUÉ HACE:
    - Ejecuta la función original
    - Hace commit si no hubo error
    - Hace rollback y relanza como TransientStoreError ante SQLAlchemyError

    📝 EJEMPLO:
        @db_transaction
        def upsert_snapshot(self, session_id, ...):
            self.db.execute(stmt)
            return row  # commit automático
    """
    @wraps(func)
    def wrapper(self, *args, **kwargs) -> Any:
        try:
            result = func(self, *args, **kwargs)
            self.db.commit()
            logger.debug(f"✅ Transacción exitosa en {func.__name__}")
            return result

        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Error en {func.__name__}: {e}")
            logger.debug(f"   Args: {_mask_sensitive_data(args)}")
            logger.debug(f"   Kwargs: {_mask_sensitive_data(kwargs)}")
            raise TransientStoreError("Erro ao salvar no banco de dados") from e

    return wrapper


def read_only(func: Callable) -> Callable:
    """
    📖 Decorador para operaciones de solo lectura

    ✅ QUÉ HACE:
    - NO hace commit (no modifica datos)
    - SÍ hace rollback si hay error (limpia transacción)
    - Relanza como TransientStoreError: la fuente primaria no se degrada
    """
    @wraps(func)
    def wrapper(self, *args, **kwargs) -> Any:
        try:
            result = func(self, *args, **kwargs)
            logger.debug(f"📖 Consulta exitosa en {func.__name__}")
            return result

        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Error en consulta {func.__name__}: {e}")
            logger.debug(f"   Args: {_mask_sensitive_data(args)}")
            raise TransientStoreError("Erro ao ler do banco de dados") from e

    return wrapper
