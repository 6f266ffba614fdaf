from app.models.visit import VisitStatus


def format_session_time(seconds: int) -> str:
    """45 → '45s', 720 → '12min', 3900 → '1h 5min'."""
    seconds = max(0, int(seconds or 0))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}min"
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    return f"{hours}h {minutes}min"


def order_status(status: VisitStatus, has_cart: bool) -> dict:
    """Etiqueta del panel admin para la columna de pedido."""
    if status == VisitStatus.COMPLETED:
        return {"status": "finalizado", "label": "Finalizado", "color": "green"}
    if has_cart and status == VisitStatus.ACTIVE:
        return {"status": "carrinho_ativo", "label": "Carrinho Ativo", "color": "yellow"}
    return {"status": "abandonado", "label": "Abandonado", "color": "red"}
