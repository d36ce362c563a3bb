# NG-HEADER: Nombre de archivo: __init__.py
# NG-HEADER: Ubicación: services/jobs/__init__.py
# NG-HEADER: Descripción: Eventos programados: definiciones, ejecutores y scheduler persistido.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

from services.jobs.definitions import EXECUTORS, At, Every, JobDefinition, default_definitions
from services.jobs.scheduler import JobScheduler, TickOutcome, get_job_scheduler

__all__ = [
	"EXECUTORS",
	"At",
	"Every",
	"JobDefinition",
	"JobScheduler",
	"TickOutcome",
	"default_definitions",
	"get_job_scheduler",
]
