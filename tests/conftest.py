#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: conftest.py
# NG-HEADER: Ubicación: tests/conftest.py
# NG-HEADER: Descripción: Fixtures y configuración compartida de Pytest.
# NG-HEADER: Lineamientos: Ver AGENTS.md
import os
import sys
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio

# Asegurar path del proyecto antes de importar módulos internos
project_root = Path(__file__).resolve().parents[1]
if str(project_root) not in sys.path:
    sys.path.append(str(project_root))

# -------- Entorno base de tests --------
# DB en memoria, entorno dev (admin sin token) y poller apagado
os.environ["DB_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENV"] = "dev"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.pop("ADMIN_TOKEN", None)
os.environ.pop("LEGACY_SENTINEL_MARKER", None)

import db.session as _session  # noqa: E402
import db.base as _base  # noqa: E402
import db.models  # noqa: F401,E402
from db.models import Ingrediente, Pedido  # noqa: E402
from services.jobs.scheduler import JobScheduler  # noqa: E402

Base = _base.Base

# Miércoles: ayer martes, semana anterior 2026-10-05..2026-10-11
FIXED_NOW = datetime(2026, 10, 14, 12, 0)


@pytest_asyncio.fixture(scope="function", autouse=True)
async def db_session():
    """DB limpia por test (SQLite memoria compartida). Retorna sesión para usar en fixtures/tests."""
    engine = _session.engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with _session.SessionLocal() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture()
def session_factory():
    return _session.SessionLocal


class FakeClock:
    """Reloj controlable para el scheduler."""

    def __init__(self, now: datetime) -> None:
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(FIXED_NOW)


@pytest.fixture()
def job_scheduler(session_factory, clock) -> JobScheduler:
    return JobScheduler(
        session_factory,
        timeout_seconds=5,
        max_attempts=3,
        retry_delay=timedelta(minutes=5),
        clock=clock,
    )


@pytest.fixture()
def add_orders(session_factory):
    """Inserta pedidos: ``await add_orders([(fecha_pedido, total), ...])``."""

    async def _add(rows):
        async with session_factory() as session:
            async with session.begin():
                for fecha, total in rows:
                    session.add(Pedido(fecha_pedido=fecha, total=Decimal(str(total))))

    return _add


@pytest.fixture()
def add_ingredient(session_factory):
    """Inserta un ingrediente y devuelve su id."""

    async def _add(nombre: str, stock: int) -> int:
        async with session_factory() as session:
            async with session.begin():
                ing = Ingrediente(nombre=nombre, stock=stock)
                session.add(ing)
            return ing.id

    return _add


# -------- Cliente HTTP --------
from services.api import app  # noqa: E402
from services.jobs.scheduler import get_job_scheduler  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402


@pytest.fixture()
def client(job_scheduler) -> TestClient:
    """Cliente HTTP con el scheduler de reloj fijo inyectado."""
    app.dependency_overrides[get_job_scheduler] = lambda: job_scheduler
    yield TestClient(app)
    app.dependency_overrides.pop(get_job_scheduler, None)
