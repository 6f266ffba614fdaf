"""
Handlers de excepción compartidos por main.py y las apps de test.

Todas las respuestas de error tienen la forma {"success": False, "error": "..."}.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from app.utils.errors import RateLimitError, TrackingError, TransientStoreError

logger = logging.getLogger(__name__)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


async def tracking_error_handler(request: Request, exc: TrackingError) -> JSONResponse:
    if isinstance(exc, TransientStoreError):
        logger.error("❌ %s %s → %s", request.method, request.url.path, exc.message)
    return error_response(exc.status_code, exc.message)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query"))
        message = f"Campo inválido: {field or 'payload'} ({first.get('msg')})"
    else:
        message = "Requisição inválida"
    logger.info("❌ Requisição rejeitada | %s %s | %s", request.method, request.url.path, message)
    return error_response(400, message)


async def ip_rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("🚦 Limite por IP excedido | path=%s | %s", request.url.path, exc.detail)
    return error_response(429, RateLimitError.default_message)


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("💥 Erro inesperado | %s %s", request.method, request.url.path)
    return error_response(500, TrackingError.default_message)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TrackingError, tracking_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(RateLimitExceeded, ip_rate_limit_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
