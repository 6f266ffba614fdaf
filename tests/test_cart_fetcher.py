# tests/test_cart_fetcher.py
import asyncio
import json

import httpx

from app.services.cart_fetcher import CART_DETAIL_PATH, CartDetailsFetcher, FetchState

CART_BODY = {
    "success": True,
    "cart": {
        "sessionId": "s1",
        "whatsapp": None,
        "items": [{"id": "i1", "name": "Capa", "quantity": 2, "unitPrice": 10.0, "totalPrice": 20.0}],
        "total": 20.0,
        "source": "database",
    },
}


def _scripted_transport(*responses):
    """Cada request consume la siguiente respuesta (status, body) o excepción."""
    script = list(responses)
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        step = script.pop(0)
        if isinstance(step, Exception):
            raise step
        status, body = step
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        return httpx.Response(status, text=body)

    return httpx.MockTransport(handler), seen


class RecordingSleep:
    """Sleep falso: registra la espera y el estado del fetcher en ese momento."""

    def __init__(self):
        self.fetcher = None
        self.delays = []
        self.loading = []
        self.states = []

    async def __call__(self, delay):
        self.delays.append(delay)
        self.loading.append(self.fetcher.is_loading)
        self.states.append(self.fetcher.state)


def _fetcher(transport, sleep):
    fetcher = CartDetailsFetcher("http://admin.test", transport=transport, sleep=sleep)
    sleep.fetcher = fetcher
    return fetcher


def test_recovers_after_two_server_errors():
    transport, seen = _scripted_transport((500, {"error": "x"}), (503, "down"), (200, CART_BODY))
    sleep = RecordingSleep()
    fetcher = _fetcher(transport, sleep)

    result = asyncio.run(fetcher.fetch("s1"))

    assert result.ok
    assert result.cart.session_id == "s1"
    assert result.attempts == 3
    assert sleep.delays == [1.0, 1.0]
    # Sigue "cargando" durante las esperas entre intentos
    assert sleep.loading == [True, True]
    assert sleep.states == [FetchState.RETRY_WAIT, FetchState.RETRY_WAIT]
    assert fetcher.state == FetchState.DONE
    assert fetcher.is_loading is False
    assert seen[0].url.path == CART_DETAIL_PATH
    assert seen[0].method == "POST"
    assert json.loads(seen[0].content) == {"sessionId": "s1"}


def test_client_error_is_not_retried():
    transport, seen = _scripted_transport((404, {"success": False, "error": "Carrinho não encontrado"}))
    sleep = RecordingSleep()

    result = asyncio.run(_fetcher(transport, sleep).fetch("s1"))

    assert not result.ok
    assert result.error == "Carrinho não encontrado"
    assert result.status_code == 404
    assert result.attempts == 1
    assert sleep.delays == []
    assert len(seen) == 1


def test_gives_up_after_three_server_errors():
    transport, seen = _scripted_transport((500, {}), (500, {}), (500, {"error": "Erro interno"}))
    sleep = RecordingSleep()
    fetcher = _fetcher(transport, sleep)

    result = asyncio.run(fetcher.fetch("s1"))

    assert not result.ok
    assert result.attempts == 3
    assert result.status_code == 500
    assert result.error == "Erro interno"
    assert len(sleep.delays) == 2
    assert fetcher.is_loading is False


def test_malformed_success_body_is_retried():
    transport, _ = _scripted_transport((200, "<html>"), (200, {"success": True}), (200, CART_BODY))
    result = asyncio.run(_fetcher(transport, RecordingSleep()).fetch("s1"))

    assert result.ok
    assert result.attempts == 3


def test_network_error_is_retried():
    request = httpx.Request("POST", "http://admin.test" + CART_DETAIL_PATH)
    transport, _ = _scripted_transport(httpx.ConnectError("connection refused", request=request), (200, CART_BODY))

    result = asyncio.run(_fetcher(transport, RecordingSleep()).fetch("s1"))

    assert result.ok
    assert result.attempts == 2


def test_cancel_during_retry_wait():
    transport, seen = _scripted_transport((500, {}), (200, CART_BODY))

    async def scenario():
        cancel = asyncio.Event()

        async def cancelling_sleep(delay):
            cancel.set()

        fetcher = CartDetailsFetcher("http://admin.test", transport=transport, sleep=cancelling_sleep)
        return fetcher, await fetcher.fetch("s1", cancel_event=cancel)

    fetcher, result = asyncio.run(scenario())

    assert result.cancelled is True
    assert not result.ok
    assert result.attempts == 1
    assert len(seen) == 1
    assert fetcher.is_loading is False


def test_cancel_before_start():
    transport, seen = _scripted_transport((200, CART_BODY))

    async def scenario():
        cancel = asyncio.Event()
        cancel.set()
        return await CartDetailsFetcher("http://admin.test", transport=transport).fetch("s1", cancel_event=cancel)

    result = asyncio.run(scenario())

    assert result.cancelled is True
    assert result.attempts == 0
    assert seen == []
