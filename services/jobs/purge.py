# NG-HEADER: Nombre de archivo: purge.py
# NG-HEADER: Ubicación: services/jobs/purge.py
# NG-HEADER: Descripción: Evento de limpieza de resúmenes, alertas y bitácora antiguos
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Limpieza de datos antiguos.

- ``resumen_ventas``: se borra si ``fecha < hoy - SUMMARY_RETENTION_DAYS``
  (antigüedad estrictamente mayor a 365 días; 365 exactos se conserva).
- ``alerta_stock``: se borra si ``fecha_alerta < ahora - ALERT_RETENTION_DAYS``.
- ``job_runs``: se borra si ``started_at < ahora - JOB_RUN_RETENTION_DAYS``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import AlertaStock, JobRun, ResumenVentas
from pizzeria_core.config import settings

logger = logging.getLogger(__name__)


async def run_purge_old_records(session: AsyncSession, now: datetime) -> dict:
    summary_cutoff = now.date() - timedelta(days=settings.summary_retention_days)
    alert_cutoff = now - timedelta(days=settings.alert_retention_days)
    runs_cutoff = now - timedelta(days=settings.job_run_retention_days)

    summaries = await session.execute(delete(ResumenVentas).where(ResumenVentas.fecha < summary_cutoff))
    alerts = await session.execute(delete(AlertaStock).where(AlertaStock.fecha_alerta < alert_cutoff))
    runs = await session.execute(delete(JobRun).where(JobRun.started_at < runs_cutoff))

    result = {
        "resumen_ventas_borrados": summaries.rowcount or 0,
        "alerta_stock_borradas": alerts.rowcount or 0,
        "job_runs_borrados": runs.rowcount or 0,
        "corte_resumen": summary_cutoff.isoformat(),
        "corte_alertas": alert_cutoff.isoformat(),
    }
    logger.info(
        f"[JOBS] Limpieza: {result['resumen_ventas_borrados']} resúmenes, "
        f"{result['alerta_stock_borradas']} alertas, {result['job_runs_borrados']} ejecuciones"
    )
    return result
