# NG-HEADER: Nombre de archivo: definitions.py
# NG-HEADER: Ubicación: services/jobs/definitions.py
# NG-HEADER: Descripción: Descriptores de eventos (qué corre y cuándo) y registro de ejecutores
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Definiciones declarativas de eventos.

Un evento es ``{name, job_type, trigger, on_completion}``:

- ``At(run_at)``: se ejecuta una vez.
- ``Every(interval, starts_at, ends_at)``: se repite cada ``interval`` anclado
  a ``starts_at``.
- ``on_completion``: ``delete`` borra el evento al terminar bien;
  ``preserve`` lo deja deshabilitado (one-shot) o vivo (recurrente).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from services.jobs.dates import MONDAY, next_weekday_at
from services.jobs.errors import UnknownJobType
from services.jobs.purge import run_purge_old_records
from services.jobs.sales_summary import run_daily_summary, run_weekly_summary
from services.jobs.stock_alerts import run_low_stock_alert, run_stock_monitor

Executor = Callable[[AsyncSession, datetime], Awaitable[dict]]

ONE_SHOT = "one_shot"
RECURRING = "recurring"
DELETE_AFTER_RUN = "delete"
PRESERVE_AFTER_RUN = "preserve"

EXECUTORS: dict[str, Executor] = {
    "daily_summary": run_daily_summary,
    "weekly_summary": run_weekly_summary,
    "low_stock_alert": run_low_stock_alert,
    "stock_monitor": run_stock_monitor,
    "purge_old_records": run_purge_old_records,
}


def get_executor(job_type: str) -> Executor:
    try:
        return EXECUTORS[job_type]
    except KeyError:
        raise UnknownJobType(job_type) from None


@dataclass(frozen=True)
class At:
    run_at: datetime


@dataclass(frozen=True)
class Every:
    interval: timedelta
    starts_at: datetime
    ends_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.interval <= timedelta(0):
            raise ValueError("El intervalo debe ser positivo")
        if self.ends_at is not None and self.ends_at < self.starts_at:
            raise ValueError("ends_at no puede ser anterior a starts_at")


Trigger = Union[At, Every]


@dataclass(frozen=True)
class JobDefinition:
    name: str
    job_type: str
    trigger: Trigger
    on_completion: str = DELETE_AFTER_RUN
    description: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name or len(self.name) > 64:
            raise ValueError("El nombre del evento debe tener entre 1 y 64 caracteres")
        if self.on_completion not in (DELETE_AFTER_RUN, PRESERVE_AFTER_RUN):
            raise ValueError(f"on_completion inválido: {self.on_completion}")
        get_executor(self.job_type)

    @property
    def kind(self) -> str:
        return ONE_SHOT if isinstance(self.trigger, At) else RECURRING


def default_definitions(now: datetime) -> list[JobDefinition]:
    """Los cinco eventos de la pizzería, relativos al momento de activación."""
    return [
        JobDefinition(
            name="resumen_diario_ventas",
            job_type="daily_summary",
            trigger=At(now + timedelta(minutes=1)),
            description="Resumen de ventas de ayer (única vez)",
        ),
        JobDefinition(
            name="resumen_semanal_ventas",
            job_type="weekly_summary",
            trigger=Every(timedelta(days=7), next_weekday_at(now, MONDAY, hour=1, minute=0)),
            on_completion=PRESERVE_AFTER_RUN,
            description="Resumen de la semana anterior, lunes 01:00",
        ),
        JobDefinition(
            name="alerta_stock_bajo",
            job_type="low_stock_alert",
            trigger=At(now + timedelta(minutes=5)),
            description="Alerta de ingredientes con stock menor a 5 (única vez)",
        ),
        JobDefinition(
            name="monitor_stock",
            job_type="stock_monitor",
            trigger=Every(timedelta(minutes=30), now),
            on_completion=PRESERVE_AFTER_RUN,
            description="Monitor de stock menor a 10 cada 30 minutos",
        ),
        JobDefinition(
            name="limpiar_datos_antiguos",
            job_type="purge_old_records",
            trigger=At(now + timedelta(minutes=2)),
            description="Borra resúmenes de más de 365 días y alertas de más de 30",
        ),
    ]
