"""
Taxonomía de errores del subsistema de tracking.

Cada error lleva el status HTTP con el que se responde; los handlers de
`main.py` lo convierten en `{"success": False, "error": ...}`.
DataCorruptionError nunca llega al cliente: quien lee una fuente secundaria
lo captura y degrada a vacío.
"""


class TrackingError(Exception):
    status_code = 500
    default_message = "Erro interno do servidor"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(TrackingError):
    status_code = 400
    default_message = "Dados inválidos"


class RateLimitError(TrackingError):
    status_code = 429
    default_message = "Muitas requisições. Tente novamente em alguns segundos."


class NotFoundError(TrackingError):
    status_code = 404
    default_message = "Não encontrado"


class TransientStoreError(TrackingError):
    status_code = 500
    default_message = "Erro ao acessar o banco de dados"


class DataCorruptionError(TrackingError):
    status_code = 500
    default_message = "Dados corrompidos em fonte secundária"
