#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: runner.py
# NG-HEADER: Ubicación: services/jobs/runner.py
# NG-HEADER: Descripción: Poller APScheduler que dispara el tick del scheduler de eventos
# NG-HEADER: Lineamientos: Ver AGENTS.md

"""
Poller del scheduler de eventos.

Equivale a ``SET GLOBAL event_scheduler = ON``: un ``AsyncIOScheduler`` corre
``JobScheduler.tick`` cada ``SCHEDULER_POLL_SECONDS``. El estado de los
eventos vive en la base, así que reiniciar el proceso no pierde ni repite
ejecuciones.

Características:
- Un solo tick a la vez (``max_instances=1``) y ticks atrasados agrupados
- Recuperación de eventos que quedaron en ``running`` al arrancar
- Logging de cada tick para auditoría
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pizzeria_core.config import settings
from services.jobs.scheduler import JobScheduler, get_job_scheduler

logger = logging.getLogger(__name__)

POLL_JOB_ID = "pizzeria_events_tick"

# Instancia global del poller (singleton)
scheduler: Optional[AsyncIOScheduler] = None
_last_tick_at: Optional[datetime] = None
_last_tick_error: Optional[str] = None


async def poll_once(job_scheduler: Optional[JobScheduler] = None) -> int:
    """Un tick del scheduler; devuelve cuántos eventos se ejecutaron."""
    global _last_tick_at, _last_tick_error
    js = job_scheduler or get_job_scheduler()
    try:
        outcomes = await js.tick()
    except Exception as e:
        _last_tick_error = str(e)
        logger.error(f"[SCHEDULER] Error crítico en el tick: {e}", exc_info=True)
        raise
    _last_tick_at = js.now()
    _last_tick_error = None
    return len(outcomes)


def create_scheduler(poll_seconds: Optional[int] = None) -> AsyncIOScheduler:
    """
    Crea el poller configurado pero no iniciado.

    Args:
        poll_seconds: Segundos entre ticks. Si None, usa SCHEDULER_POLL_SECONDS
    """
    global scheduler

    if scheduler is not None:
        logger.warning("[SCHEDULER] Poller ya existe, retornando instancia existente")
        return scheduler

    seconds = poll_seconds or settings.scheduler_poll_seconds
    scheduler = AsyncIOScheduler(timezone=settings.scheduler_tz)
    scheduler.add_job(
        poll_once,
        trigger=IntervalTrigger(seconds=seconds),
        id=POLL_JOB_ID,
        name="Tick del scheduler de eventos",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=seconds,
    )
    logger.info(f"[SCHEDULER] Poller configurado: tick cada {seconds}s (tz {settings.scheduler_tz})")
    return scheduler


async def enable_scheduler(poll_seconds: Optional[int] = None) -> dict:
    """Arranca el poller (idempotente) tras recuperar eventos interrumpidos."""
    global scheduler

    recovered = await get_job_scheduler().recover_interrupted()
    if scheduler is None:
        scheduler = create_scheduler(poll_seconds)
    if not scheduler.running:
        scheduler.start()
        logger.info("[SCHEDULER] Poller iniciado correctamente")
    else:
        logger.warning("[SCHEDULER] Poller ya estaba en ejecución")
    return {**get_status(), "recovered": recovered}


def disable_scheduler() -> dict:
    """Detiene el poller. Los eventos quedan en la base tal como estaban."""
    global scheduler

    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("[SCHEDULER] Poller detenido correctamente")
    else:
        logger.info("[SCHEDULER] Poller no estaba en ejecución")
    scheduler = None
    return get_status()


async def start_if_enabled() -> None:
    """Hook de arranque de la API: solo inicia si SCHEDULER_ENABLED=true."""
    if not settings.scheduler_enabled:
        logger.info("[SCHEDULER] Deshabilitado por configuración (SCHEDULER_ENABLED=false)")
        return
    await enable_scheduler()


def get_status() -> dict:
    running = scheduler is not None and scheduler.running
    next_tick = None
    if running:
        job = scheduler.get_job(POLL_JOB_ID)
        if job and job.next_run_time:
            next_tick = job.next_run_time.isoformat()
    return {
        "running": running,
        "enabled_by_config": settings.scheduler_enabled,
        "poll_seconds": settings.scheduler_poll_seconds,
        "timezone": settings.scheduler_tz,
        "next_tick": next_tick,
        "last_tick_at": _last_tick_at.isoformat() if _last_tick_at else None,
        "last_tick_error": _last_tick_error,
    }
