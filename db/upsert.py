# NG-HEADER: Nombre de archivo: upsert.py
# NG-HEADER: Ubicación: db/upsert.py
# NG-HEADER: Descripción: INSERT ... ON CONFLICT según el dialecto (PostgreSQL, SQLite, MySQL).
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Helpers de upsert independientes del motor.

PostgreSQL y SQLite comparten ``ON CONFLICT``; MySQL usa
``ON DUPLICATE KEY UPDATE`` (y un update no-op para "do nothing").
"""
from __future__ import annotations

from typing import Any, Iterable, Sequence

from sqlalchemy import Table
from sqlalchemy.ext.asyncio import AsyncSession


def _dialect(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


def _insert_for(dialect: str):
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    elif dialect in {"mysql", "mariadb"}:
        from sqlalchemy.dialects.mysql import insert
    else:
        raise NotImplementedError(f"Upsert no soportado para dialecto {dialect}")
    return insert


async def upsert(
    session: AsyncSession,
    table: Table,
    values: dict[str, Any],
    conflict_cols: Sequence[str],
    update_cols: Iterable[str],
) -> None:
    """Inserta ``values`` o, si choca con ``conflict_cols``, actualiza ``update_cols``."""
    dialect = _dialect(session)
    stmt = _insert_for(dialect)(table).values(**values)
    cols = list(update_cols)
    if dialect in {"mysql", "mariadb"}:
        stmt = stmt.on_duplicate_key_update({c: stmt.inserted[c] for c in cols})
    else:
        stmt = stmt.on_conflict_do_update(
            index_elements=list(conflict_cols),
            set_={c: stmt.excluded[c] for c in cols},
        )
    await session.execute(stmt)


async def insert_ignore(
    session: AsyncSession,
    table: Table,
    rows: list[dict[str, Any]],
    conflict_cols: Sequence[str],
) -> int:
    """Inserta ``rows`` salteando los que ya existen. Devuelve filas insertadas."""
    if not rows:
        return 0
    dialect = _dialect(session)
    stmt = _insert_for(dialect)(table).values(rows)
    if dialect in {"mysql", "mariadb"}:
        # Update sobre la misma columna: no modifica la fila existente
        first = conflict_cols[0]
        stmt = stmt.on_duplicate_key_update({first: table.c[first]})
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_cols))
    result = await session.execute(stmt)
    return max(result.rowcount or 0, 0)
