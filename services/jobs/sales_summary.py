# NG-HEADER: Nombre de archivo: sales_summary.py
# NG-HEADER: Ubicación: services/jobs/sales_summary.py
# NG-HEADER: Descripción: Eventos de resumen de ventas diario y semanal sobre resumen_ventas
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Resúmenes de ventas.

Ambos eventos agregan ``pedido`` (cantidad y suma de ``total``) y hacen
upsert en ``resumen_ventas`` por fecha. Recalcular la misma fecha deja la
fila idéntica, así que reintentos y re-ejecuciones son seguros.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Pedido, ResumenVentas
from db.upsert import upsert
from services.jobs.dates import previous_day, previous_week, range_bounds

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


async def aggregate_orders(session: AsyncSession, first: date, last: date) -> tuple[int, Decimal]:
    """Cantidad de pedidos y facturación entre ``first`` y ``last`` (inclusive)."""
    start, end = range_bounds(first, last)
    row = (
        await session.execute(
            select(func.count(Pedido.id), func.coalesce(func.sum(Pedido.total), 0)).where(
                Pedido.fecha_pedido >= start,
                Pedido.fecha_pedido < end,
            )
        )
    ).one()
    count = int(row[0] or 0)
    revenue = Decimal(str(row[1] or 0)).quantize(CENTS)
    return count, revenue


async def upsert_summary(
    session: AsyncSession,
    fecha: date,
    total_pedidos: int,
    total_ingresos: Decimal,
    now: datetime,
) -> None:
    """Inserta o pisa la fila de ``fecha``; ``created_at`` queda el del primer insert."""
    await upsert(
        session,
        ResumenVentas.__table__,
        {
            "fecha": fecha,
            "total_pedidos": total_pedidos,
            "total_ingresos": total_ingresos,
            "created_at": now,
        },
        conflict_cols=["fecha"],
        update_cols=["total_pedidos", "total_ingresos"],
    )


async def run_daily_summary(session: AsyncSession, now: datetime) -> dict:
    """Resume los pedidos de ayer en ``resumen_ventas``."""
    yesterday = previous_day(now.date())
    count, revenue = await aggregate_orders(session, yesterday, yesterday)
    await upsert_summary(session, yesterday, count, revenue, now)
    logger.info(f"[JOBS] Resumen diario {yesterday.isoformat()}: {count} pedidos, ingresos {revenue}")
    return {"fecha": yesterday.isoformat(), "total_pedidos": count, "total_ingresos": str(revenue)}


async def run_weekly_summary(session: AsyncSession, now: datetime) -> dict:
    """Resume la última semana lunes-domingo completa, guardada con la fecha del domingo."""
    week_start, week_end = previous_week(now.date())
    count, revenue = await aggregate_orders(session, week_start, week_end)
    await upsert_summary(session, week_end, count, revenue, now)
    logger.info(
        f"[JOBS] Resumen semanal {week_start.isoformat()}..{week_end.isoformat()}: "
        f"{count} pedidos, ingresos {revenue}"
    )
    return {
        "semana_desde": week_start.isoformat(),
        "fecha": week_end.isoformat(),
        "total_pedidos": count,
        "total_ingresos": str(revenue),
    }
