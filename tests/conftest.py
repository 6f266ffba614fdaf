# tests/conftest.py
import os

# La app lee DATABASE_URL al importar database.connection: SQLite en memoria para tests
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database.connection import Base, get_db
from app.models.visit import Visit  # noqa: F401  (registra la tabla)
from app.routers import admin_visits, visits
from app.services.flat_file_store import (
    CartFileStore,
    TrackingFileStore,
    get_cart_store,
    get_tracking_store,
)
from app.services.throttle_service import rate_limiter
from app.utils.error_handlers import register_exception_handlers

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db():
    """Sesión sobre una BD SQLite en memoria, recreada en cada test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def cart_store(tmp_path):
    return CartFileStore(str(tmp_path / "abandoned-carts.json"))


@pytest.fixture
def tracking_store(tmp_path):
    return TrackingFileStore(str(tmp_path / "visits-tracking.json"))


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Los limitadores son globales del proceso: limpiar entre tests."""
    rate_limiter.reset()
    visits.limiter.reset()
    yield
    rate_limiter.reset()


@pytest.fixture
def app(db, cart_store, tracking_store):
    """Crear aplicación FastAPI de test con dependencias sobrescritas."""
    app = FastAPI()
    app.state.limiter = visits.limiter
    register_exception_handlers(app)
    app.include_router(visits.router)
    app.include_router(admin_visits.router)

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_cart_store] = lambda: cart_store
    app.dependency_overrides[get_tracking_store] = lambda: tracking_store
    return app


@pytest.fixture
def client(app):
    """Cliente de test para la aplicación."""
    return TestClient(app)
