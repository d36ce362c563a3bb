# NG-HEADER: Nombre de archivo: stock_alerts.py
# NG-HEADER: Ubicación: services/jobs/stock_alerts.py
# NG-HEADER: Descripción: Eventos de alerta de stock bajo y monitor periódico de ingredientes
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Alertas de stock.

``alerta_stock`` guarda como mucho una fila por ingrediente y día
(``dia_alerta``). Los dos eventos filtran los ingredientes ya alertados hoy
y además insertan con ``ON CONFLICT DO NOTHING``, de modo que un reintento
no duplica alertas.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import and_, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import AlertaStock, Ingrediente
from db.upsert import insert_ignore
from pizzeria_core.config import settings
from services.jobs.sales_summary import upsert_summary

logger = logging.getLogger(__name__)

# Marca legada: fila de resumen_ventas con -1/-1.00 para "la alerta corrió"
SENTINEL_ORDERS = -1
SENTINEL_REVENUE = Decimal("-1.00")


async def ingredients_below(
    session: AsyncSession, threshold: int, day: date, *, alerted: bool = False
) -> list[tuple[int, str, int]]:
    """Ingredientes con ``stock < threshold`` sin alerta en ``day`` (o con alerta si ``alerted``)."""
    already_alerted = exists().where(
        and_(AlertaStock.ingrediente_id == Ingrediente.id, AlertaStock.dia_alerta == day)
    )
    rows = await session.execute(
        select(Ingrediente.id, Ingrediente.nombre, Ingrediente.stock)
        .where(Ingrediente.stock < threshold, already_alerted if alerted else ~already_alerted)
        .order_by(Ingrediente.id)
    )
    return [(r[0], r[1], r[2]) for r in rows.all()]


async def create_alerts(session: AsyncSession, threshold: int, now: datetime) -> list[dict]:
    """Inserta una alerta por cada ingrediente bajo el umbral y sin alerta hoy."""
    today = now.date()
    candidates = await ingredients_below(session, threshold, today)
    rows = [
        {
            "ingrediente_id": ing_id,
            "stock_actual": stock,
            "fecha_alerta": now,
            "dia_alerta": today,
            "created_at": now,
        }
        for ing_id, _nombre, stock in candidates
    ]
    await insert_ignore(session, AlertaStock.__table__, rows, conflict_cols=["ingrediente_id", "dia_alerta"])
    for ing_id, nombre, stock in candidates:
        logger.warning(f"[JOBS] Stock bajo: {nombre} (id={ing_id}) stock={stock} < {threshold}")
    return [{"ingrediente_id": i, "nombre": n, "stock_actual": s} for i, n, s in candidates]


async def already_alerted_today(session: AsyncSession, threshold: int, now: datetime) -> list[dict]:
    """Bajo el umbral pero ya alertados hoy (por este evento o por el otro)."""
    rows = await ingredients_below(session, threshold, now.date(), alerted=True)
    return [{"ingrediente_id": i, "nombre": n, "stock_actual": s} for i, n, s in rows]


async def run_low_stock_alert(session: AsyncSession, now: datetime) -> dict:
    """Alerta única de ingredientes con stock menor a ``LOW_STOCK_THRESHOLD``."""
    threshold = settings.low_stock_threshold
    previous = await already_alerted_today(session, threshold, now)
    alerts = await create_alerts(session, threshold, now)
    if settings.legacy_sentinel_marker:
        await upsert_summary(session, now.date(), SENTINEL_ORDERS, SENTINEL_REVENUE, now)
    logger.info(
        f"[JOBS] Alerta de stock bajo: {len(alerts)} alertas nuevas, "
        f"{len(previous)} ya alertadas hoy (umbral {threshold})"
    )
    return {"umbral": threshold, "alertas_creadas": len(alerts), "alertas": alerts, "ya_alertadas_hoy": previous}


async def run_stock_monitor(session: AsyncSession, now: datetime) -> dict:
    """Chequeo periódico con ``STOCK_MONITOR_THRESHOLD``; nunca repite alerta en el día."""
    threshold = settings.stock_monitor_threshold
    previous = await already_alerted_today(session, threshold, now)
    alerts = await create_alerts(session, threshold, now)
    if alerts:
        logger.info(f"[JOBS] Monitor de stock: {len(alerts)} alertas nuevas (umbral {threshold})")
    else:
        logger.debug("[JOBS] Monitor de stock: sin alertas nuevas")
    return {"umbral": threshold, "alertas_creadas": len(alerts), "alertas": alerts, "ya_alertadas_hoy": previous}
