import asyncio

async def retry_async(
    fn,
    *,
    attempts=3,
    base_delay=0.4,
    exc=(Exception,),
    backoff="exponential",
    on_retry=None,
    sleep=asyncio.sleep,
):
    """
    Reintenta await fn() hasta `attempts` veces.
    Entre intentos espera un 'backoff':
    - "exponential": base, 2*base, 4*base, ...
    - "fixed": siempre base_delay
    - fn: función sin argumentos que devuelve una coroutine (p.ej. lambda: client.get(url))
    - attempts: cuántos intentos en total (p.ej. 3)
    - base_delay: segundos de espera (p.ej. 1.0)
    - exc: tupla de tipos de excepción que deben activar el retry (por defecto Exception)
    - on_retry: callback(intento, error, espera) antes de cada espera
    - sleep: coroutine de espera (se inyecta en tests o para cancelar la espera)
    """
    for i in range(attempts):
        try:
            return await fn()
        except exc as e:
            if i == attempts - 1:
                raise
            delay = base_delay if backoff == "fixed" else base_delay * (2 ** i)
            if on_retry is not None:
                on_retry(i + 1, e, delay)
            await sleep(delay)
