"""
🚦 RATE LIMITING POR SESIÓN
==========================

Contador de ventana por sessionId, en memoria del proceso:
- Primera petición (o ventana vencida): count=1, ventana hasta now+60s
- Debajo del límite: incrementa y permite
- En el límite: rechaza (429) sin tocar ninguna fuente

El estado vive en un LRU acotado (RATE_LIMIT_MAX_SESSIONS) y se accede solo
por check(), protegido con un lock.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from config.settings import settings
from app.utils.errors import RateLimitError

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    count: int
    reset_at: float


class SessionRateLimiter:
    def __init__(
        self,
        limit: int = settings.RATE_LIMIT_MAX_REQUESTS,
        window_seconds: float = settings.RATE_LIMIT_WINDOW_SECONDS,
        max_sessions: int = settings.RATE_LIMIT_MAX_SESSIONS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.max_sessions = max_sessions
        self._clock = clock
        self._windows: "OrderedDict[str, _Window]" = OrderedDict()
        self._lock = threading.Lock()

    def check(self, session_id: str) -> bool:
        """
        Suma 1 al contador de la sesión.
        Devuelve True si aún está dentro del límite; False si lo excedió.
        """
        now = self._clock()
        with self._lock:
            window = self._windows.get(session_id)

            if window is None or now > window.reset_at:
                self._windows[session_id] = _Window(count=1, reset_at=now + self.window_seconds)
                self._windows.move_to_end(session_id)
                self._evict()
                return True

            self._windows.move_to_end(session_id)
            if window.count >= self.limit:
                return False

            window.count += 1
            return True

    def _evict(self) -> None:
        while len(self._windows) > self.max_sessions:
            self._windows.popitem(last=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


rate_limiter = SessionRateLimiter()


def check_rate_limit(session_id: str, limiter: Optional[SessionRateLimiter] = None) -> None:
    """Lanza RateLimitError si la sesión excedió su ventana."""
    limiter = limiter or rate_limiter
    if not limiter.check(session_id):
        logger.warning("🚦 Rate limit excedido | session=%s", session_id)
        raise RateLimitError("Muitas requisições. Tente novamente em alguns segundos.")
