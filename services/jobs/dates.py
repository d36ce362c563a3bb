# NG-HEADER: Nombre de archivo: dates.py
# NG-HEADER: Ubicación: services/jobs/dates.py
# NG-HEADER: Descripción: Aritmética de fechas compartida por los eventos (días, semanas, anclas)
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Utilidades puras de fechas.

Semana ISO: lunes = 0 ... domingo = 6 (``date.weekday()``). Ninguna función
consulta el reloj; siempre reciben ``today``/``now``.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

MONDAY = 0


def now_local(tz: str = "UTC") -> datetime:
    """Hora actual en ``tz`` como datetime naive (así se persiste)."""
    return datetime.now(ZoneInfo(tz)).replace(tzinfo=None)


def previous_day(today: date) -> date:
    return today - timedelta(days=1)


def previous_week(today: date) -> tuple[date, date]:
    """Última semana completa lunes-domingo antes de ``today``.

    ``week_end = today - (weekday + 1)``, ``week_start = week_end - 6``.
    Un lunes devuelve la semana que terminó ayer.
    """
    week_end = today - timedelta(days=today.weekday() + 1)
    week_start = week_end - timedelta(days=6)
    return week_start, week_end


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Rango semiabierto ``[00:00 del día, 00:00 del día siguiente)``."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def range_bounds(first: date, last: date) -> tuple[datetime, datetime]:
    """Rango semiabierto que cubre ``first``..``last`` inclusive."""
    return datetime.combine(first, time.min), datetime.combine(last + timedelta(days=1), time.min)


def next_weekday_at(now: datetime, weekday: int = MONDAY, hour: int = 1, minute: int = 0) -> datetime:
    """Próxima ocurrencia de ``weekday`` a ``hour:minute`` estrictamente posterior a ``now``."""
    days_ahead = (weekday - now.weekday()) % 7
    candidate = datetime.combine(now.date() + timedelta(days=days_ahead), time(hour, minute))
    if candidate <= now:
        candidate += timedelta(days=7)
    return candidate


def next_anchored_run(due: datetime, interval: timedelta, now: datetime) -> tuple[datetime, int]:
    """Siguiente ejecución anclada a ``due`` (no al momento real de ejecución).

    Devuelve ``(due + k*interval, k - 1)`` con el menor ``k >= 1`` tal que el
    resultado sea posterior a ``now``; el segundo valor son las ocurrencias
    que se saltearon por estar vencidas.
    """
    if interval <= timedelta(0):
        raise ValueError("El intervalo debe ser positivo")
    if due + interval > now:
        return due + interval, 0
    elapsed = now - due
    k = elapsed // interval + 1
    return due + k * interval, k - 1
