#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: admin_scheduler.py
# NG-HEADER: Ubicación: services/routers/admin_scheduler.py
# NG-HEADER: Descripción: Endpoints de administración de eventos programados
# NG-HEADER: Lineamientos: Ver AGENTS.md

"""
Router para administración de los eventos programados.

Endpoints:
- GET /admin/jobs - Lista de eventos (nombre, tipo, próxima ejecución, estado...)
- POST /admin/jobs - Crear un evento
- GET /admin/jobs/runs - Bitácora de ejecuciones
- GET /admin/jobs/scheduler - Estado del poller
- POST /admin/jobs/scheduler/enable - Iniciar poller
- POST /admin/jobs/scheduler/disable - Detener poller
- POST /admin/jobs/install-defaults - Crear los cinco eventos de la pizzería
- GET /admin/jobs/{name} - Detalle
- POST /admin/jobs/{name}/enable - Habilitar
- POST /admin/jobs/{name}/disable - Deshabilitar
- POST /admin/jobs/{name}/run - Ejecutar ya
- DELETE /admin/jobs/{name} - Eliminar
"""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, model_validator

from services.auth import require_admin
from services.jobs import runner
from services.jobs.definitions import DELETE_AFTER_RUN, At, Every, JobDefinition
from services.jobs.errors import JobAlreadyExists, JobAlreadyRunning, JobNotFound, UnknownJobType
from services.jobs.scheduler import JobScheduler, get_job_scheduler

router = APIRouter(prefix="/admin/jobs", tags=["Admin - Eventos"], dependencies=[Depends(require_admin)])


# ==================== SCHEMAS ====================

class JobOut(BaseModel):
    """Evento programado"""

    name: str
    type: str = Field(description="one_shot | recurring")
    job_type: str
    next_run: Optional[str] = Field(None, description="Próxima ejecución (ISO)")
    interval: Optional[int] = Field(None, description="Intervalo en segundos (recurrentes)")
    status: str
    persistence_mode: str = Field(description="delete | preserve")
    created: Optional[str] = None
    last_run: Optional[str] = None
    run_at: Optional[str] = None
    starts_at: Optional[str] = None
    ends_at: Optional[str] = None
    attempts: int = 0
    last_error: Optional[str] = None
    description: Optional[str] = None


class JobCreate(BaseModel):
    """Alta de evento: ``run_at`` (única vez) o ``interval_seconds`` (recurrente)"""

    name: str = Field(min_length=1, max_length=64)
    job_type: str
    run_at: Optional[datetime] = None
    interval_seconds: Optional[int] = Field(None, ge=1)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    on_completion: str = Field(DELETE_AFTER_RUN, pattern="^(delete|preserve)$")
    description: Optional[str] = Field(None, max_length=255)

    @model_validator(mode="after")
    def _one_trigger(self):
        if (self.run_at is None) == (self.interval_seconds is None):
            raise ValueError("Indicar run_at o interval_seconds (exactamente uno)")
        return self


class RunOut(BaseModel):
    name: str
    job_type: str
    outcome: str
    action: str
    due_at: Optional[str] = None
    next_run_at: Optional[str] = None
    error: Optional[str] = None
    result: dict = Field(default_factory=dict)


# ==================== ENDPOINTS ====================

@router.get("", response_model=list[JobOut])
async def list_jobs(js: JobScheduler = Depends(get_job_scheduler)):
    return await js.list_jobs()


@router.post("", response_model=JobOut, status_code=201)
async def create_job(payload: JobCreate, js: JobScheduler = Depends(get_job_scheduler)):
    now = js.now()
    try:
        if payload.run_at is not None:
            trigger = At(payload.run_at)
        else:
            trigger = Every(
                timedelta(seconds=payload.interval_seconds),
                payload.starts_at or now,
                payload.ends_at,
            )
        definition = JobDefinition(
            name=payload.name,
            job_type=payload.job_type,
            trigger=trigger,
            on_completion=payload.on_completion,
            description=payload.description,
        )
        return await js.create_job(definition, now)
    except JobAlreadyExists as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (UnknownJobType, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/runs")
async def list_runs(
    name: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    js: JobScheduler = Depends(get_job_scheduler),
):
    """Bitácora de ejecuciones, más recientes primero."""
    return await js.list_runs(name=name, limit=limit)


@router.get("/scheduler")
async def scheduler_status():
    return runner.get_status()


@router.post("/scheduler/enable")
async def scheduler_enable():
    """
    Inicia el poller que ejecuta los eventos vencidos.

    **Nota**: es independiente de SCHEDULER_ENABLED, que solo controla el
    arranque automático junto con la API.
    """
    try:
        return await runner.enable_scheduler()
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error al iniciar scheduler: {str(e)}")


@router.post("/scheduler/disable")
async def scheduler_disable():
    return runner.disable_scheduler()


@router.post("/install-defaults")
async def install_defaults(js: JobScheduler = Depends(get_job_scheduler)):
    created = await js.install_defaults()
    return {"created": created}


@router.get("/{name}", response_model=JobOut)
async def get_job(name: str, js: JobScheduler = Depends(get_job_scheduler)):
    try:
        return await js.get_job(name)
    except JobNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{name}/enable", response_model=JobOut)
async def enable_job(name: str, js: JobScheduler = Depends(get_job_scheduler)):
    try:
        return await js.enable_job(name)
    except JobNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{name}/disable", response_model=JobOut)
async def disable_job(name: str, js: JobScheduler = Depends(get_job_scheduler)):
    try:
        return await js.disable_job(name)
    except JobNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{name}/run", response_model=RunOut)
async def run_job(name: str, js: JobScheduler = Depends(get_job_scheduler)):
    """
    Ejecuta el evento de inmediato.

    Un one-shot ``delete`` que termina bien se elimina igual que si lo hubiera
    disparado el poller; un recurrente conserva su calendario.
    """
    try:
        outcome = await js.run_job_now(name)
    except JobNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except JobAlreadyRunning as e:
        raise HTTPException(status_code=409, detail=str(e))
    return outcome.as_dict()


@router.delete("/{name}", status_code=204)
async def drop_job(name: str, js: JobScheduler = Depends(get_job_scheduler)):
    try:
        await js.drop_job(name)
    except JobNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
