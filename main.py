import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.routers import admin_visits, visits
from app.utils.error_handlers import register_exception_handlers
from config.settings import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Storefront Tracking API",
    description="API de tracking de visitas y carritos de la tienda mayorista",
    version="1.0.0",

    debug=settings.DEBUG
)

# Configurar rate limiting (SlowAPI, por IP)
app.state.limiter = visits.limiter
register_exception_handlers(app)

# Configurar CORS más específico para producción
if settings.DEBUG:
    # En desarrollo, permitir todos los orígenes
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    # En producción, ser más específico
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

# Incluir routers
app.include_router(visits.router, tags=["tracking"])
app.include_router(admin_visits.router, tags=["admin"])


@app.get("/")
async def root():
    return {
        "message": "Storefront Tracking API funcionando!",
        "docs": "/docs",
        "status": "activo"
    }

@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "storefront-tracking"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000, log_level="debug" if settings.DEBUG else "info")
