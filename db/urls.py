# NG-HEADER: Nombre de archivo: urls.py
# NG-HEADER: Ubicación: db/urls.py
# NG-HEADER: Descripción: Resolución de la URL de base de datos compartida por la app y Alembic.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""URL efectiva de la base de datos.

La app (async) y Alembic (sync) deben apuntar a la misma base: ambos pasan
por ``resolve_db_url``, que respeta ``DB_URL`` y si no la compone desde
``DB_HOST``/``DB_USER``/``DB_PASS`` vía ``pizzeria_core.config``.
"""
from __future__ import annotations

import os

# Drivers async -> sus pares sync (Alembic corre sincrónico)
SYNC_DRIVERS = {
    "postgresql+asyncpg": "postgresql+psycopg",
    "sqlite+aiosqlite": "sqlite",
    "mysql+aiomysql": "mysql+pymysql",
}


def resolve_db_url() -> str:
    # DB_URL del entorno primero (los tests la setean a :memory:)
    from pizzeria_core.config import settings

    return os.getenv("DB_URL") or settings.db_url


def sync_db_url(url: str) -> str:
    """Traduce una URL con driver async a su equivalente sync."""
    for async_prefix, sync_prefix in SYNC_DRIVERS.items():
        if url.startswith(async_prefix + "://"):
            return sync_prefix + url[len(async_prefix):]
    return url
