# NG-HEADER: Nombre de archivo: session.py
# NG-HEADER: Ubicación: db/session.py
# NG-HEADER: Descripción: Creación del engine y sesiones asíncronas de SQLAlchemy.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Sesión asíncrona para SQLAlchemy."""
import os
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from db.urls import resolve_db_url

# ``DEBUG_SQL=1`` activa el modo ``echo`` para ver las consultas generadas.
ECHO = os.getenv("DEBUG_SQL", "0") == "1"


def _enable_sqlite_fk(engine: AsyncEngine) -> None:
    """SQLite ignora las FOREIGN KEY salvo que se active el pragma por conexión."""

    @event.listens_for(engine.sync_engine, "connect")
    def _fk_pragma(dbapi_conn, _record):  # pragma: no cover - callback del driver
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(db_url: str) -> AsyncEngine:
    """Crea el engine; SQLite en memoria comparte una única conexión."""
    kwargs: dict = {"echo": ECHO, "future": True}
    if db_url.startswith("sqlite+") and ":memory:" in db_url:
        # Una DB en memoria con nombre, visible para todas las sesiones
        # Referencia: https://www.sqlite.org/inmemorydb.html (URI mode)
        db_url = "sqlite+aiosqlite:///file:pizzeria_mem?mode=memory&cache=shared&uri=true"
        kwargs.update({"poolclass": StaticPool})
    elif not db_url.startswith("sqlite"):
        kwargs["pool_pre_ping"] = True
    engine = create_async_engine(db_url, **kwargs)
    if db_url.startswith("sqlite"):
        _enable_sqlite_fk(engine)
    return engine


db_url = resolve_db_url()
engine = build_engine(db_url)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_schema() -> None:
    """Crea las tablas faltantes (dev/tests). En producción usar Alembic."""
    import db.models  # noqa: F401  registra metadata
    from db.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session


# Compatibilidad: algunos módulos esperan ``get_db`` como alias.
get_db = get_session
