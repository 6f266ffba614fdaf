"""
🔁 CLIENTE DE DETALLES DE CARRITO (lado panel admin)
===================================================

Pide POST /api/admin/visits {sessionId} y reintenta ante fallas transitorias.

🔄 MÁQUINA DE ESTADOS:
    attempting → retry_wait → attempting → ... → done

- 4xx            → done con error, SIN reintento
- 5xx / red      → espera fija (1 s) y reintenta mientras intentos < 3
- 200 bien formado → done con el CartSnapshot
- 200 mal formado  → se trata como un 5xx

is_loading es True desde el primer intento hasta done, incluidas las esperas.
cancel_event (asyncio.Event) corta intentos y esperas pendientes.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

import httpx

from config.settings import settings
from app.schemas.visit import CartSnapshot
from app.utils.retry import retry_async

logger = logging.getLogger(__name__)

CART_DETAIL_PATH = "/api/admin/visits"


class FetchState(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    RETRY_WAIT = "retry_wait"
    DONE = "done"


@dataclass
class FetchResult:
    cart: Optional[CartSnapshot] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    attempts: int = 0
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.cart is not None


class FetchError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class RetryableFetchError(FetchError):
    """5xx, red o respuesta mal formada."""


class FinalFetchError(FetchError):
    """4xx: el servidor ya respondió de forma definitiva."""


class FetchCancelled(Exception):
    pass


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return f"HTTP {response.status_code}"


class CartDetailsFetcher:
    def __init__(
        self,
        base_url: str = settings.ADMIN_API_BASE_URL,
        *,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_attempts: int = settings.CART_FETCH_MAX_ATTEMPTS,
        backoff_seconds: float = settings.CART_FETCH_BACKOFF_SECONDS,
        timeout: float = settings.CART_FETCH_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = base_url
        self._client = client
        self._transport = transport
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.timeout = timeout
        self._sleep = sleep

        self.state = FetchState.IDLE
        self.attempts = 0

    @property
    def is_loading(self) -> bool:
        return self.state in (FetchState.ATTEMPTING, FetchState.RETRY_WAIT)

    async def fetch(self, session_id: str, cancel_event: Optional[asyncio.Event] = None) -> FetchResult:
        self.attempts = 0
        self.state = FetchState.ATTEMPTING

        owns_client = self._client is None
        client = self._client or httpx.AsyncClient(
            base_url=self.base_url,
            transport=self._transport,
            timeout=self.timeout,
        )

        try:
            cart = await retry_async(
                lambda: self._attempt(client, session_id, cancel_event),
                attempts=self.max_attempts,
                base_delay=self.backoff_seconds,
                exc=(RetryableFetchError,),
                backoff="fixed",
                on_retry=self._on_retry,
                sleep=lambda delay: self._wait(delay, cancel_event),
            )
            result = FetchResult(cart=cart, attempts=self.attempts)
            logger.info("✅ Carrinho carregado | session=%s | tentativas=%s", session_id, self.attempts)
        except FetchCancelled:
            result = FetchResult(error="Busca cancelada", attempts=self.attempts, cancelled=True)
            logger.info("🛑 Busca de carrinho cancelada | session=%s", session_id)
        except FetchError as e:
            result = FetchResult(error=e.message, status_code=e.status_code, attempts=self.attempts)
            logger.warning(
                "❌ Falha ao carregar carrinho | session=%s | tentativas=%s | erro=%s",
                session_id, self.attempts, e.message,
            )
        finally:
            if owns_client:
                await client.aclose()
            self.state = FetchState.DONE

        return result

    # ==========================================
    # HELPERS
    # ==========================================

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        session_id: str,
        cancel_event: Optional[asyncio.Event],
    ) -> CartSnapshot:
        if cancel_event is not None and cancel_event.is_set():
            raise FetchCancelled()

        self.state = FetchState.ATTEMPTING
        self.attempts += 1
        logger.info("🔄 Buscando carrinho | session=%s | tentativa=%s", session_id, self.attempts)

        try:
            response = await client.post(CART_DETAIL_PATH, json={"sessionId": session_id})
        except httpx.TransportError as e:
            raise RetryableFetchError(f"Erro de conexão: {e}") from e

        if 400 <= response.status_code < 500:
            raise FinalFetchError(_error_message(response), response.status_code)
        if response.status_code != 200:
            raise RetryableFetchError(_error_message(response), response.status_code)

        try:
            body = response.json()
            return CartSnapshot.model_validate(body["cart"])
        except (ValueError, KeyError, TypeError) as e:
            raise RetryableFetchError("Resposta inválida do servidor", response.status_code) from e

    def _on_retry(self, attempt: int, error: Exception, delay: float) -> None:
        logger.warning("⏳ Tentativa %s falhou (%s); nova tentativa em %ss", attempt, error, delay)

    async def _wait(self, delay: float, cancel_event: Optional[asyncio.Event]) -> None:
        self.state = FetchState.RETRY_WAIT
        if cancel_event is None:
            await self._sleep(delay)
            return
        if cancel_event.is_set():
            raise FetchCancelled()

        sleeper = asyncio.ensure_future(self._sleep(delay))
        canceller = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({sleeper, canceller}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, canceller):
                if not task.done():
                    task.cancel()
        if cancel_event.is_set():
            raise FetchCancelled()
