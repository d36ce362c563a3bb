# NG-HEADER: Nombre de archivo: scheduler.py
# NG-HEADER: Ubicación: services/jobs/scheduler.py
# NG-HEADER: Descripción: Scheduler persistido de eventos: tick, reprogramación anclada y administración
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Scheduler de eventos con estado en la tabla ``scheduled_jobs``.

Ciclo de vida de cada evento::

    scheduled -> running -> (borrado | scheduled con próxima fecha | disabled | failed)

- El trabajo del evento y la transición de estado se confirman en la misma
  transacción: un one-shot solo se borra si su trabajo hizo commit.
- Si el ejecutor falla se hace rollback, se registra un ``job_runs`` con
  ``outcome='failed'``/``'timeout'`` y el evento nunca se borra.
- Un proceso caído con eventos en ``running`` los devuelve a ``scheduled``
  con ``recover_interrupted`` (su trabajo no llegó a confirmarse).
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.models import JobRun, ScheduledJob
from pizzeria_core.config import settings
from services.jobs.dates import next_anchored_run, now_local
from services.jobs.definitions import (
    DELETE_AFTER_RUN,
    ONE_SHOT,
    At,
    JobDefinition,
    default_definitions,
    get_executor,
)
from services.jobs.errors import (
    JobAlreadyExists,
    JobAlreadyRunning,
    JobNotFound,
    JobTimeout,
    TransientStoreError,
    classify_db_error,
)

logger = logging.getLogger(__name__)

MAX_ERROR_CHARS = 2000


@dataclass
class TickOutcome:
    """Resultado de ejecutar un evento (por tick o manualmente)."""

    name: str
    job_type: str
    outcome: str  # success | failed | timeout
    action: str  # removed | rescheduled | disabled | retry | failed | unchanged
    due_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    error: Optional[str] = None
    result: dict = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "job_type": self.job_type,
            "outcome": self.outcome,
            "action": self.action,
            "due_at": _iso(self.due_at),
            "next_run_at": _iso(self.next_run_at),
            "error": self.error,
            "result": self.result,
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def job_to_dict(job: ScheduledJob) -> dict:
    """Fila de ``list_jobs``: forma de la introspección de eventos del motor."""
    return {
        "name": job.name,
        "type": job.kind,
        "job_type": job.job_type,
        "next_run": _iso(job.next_run_at),
        "interval": job.interval_seconds,
        "status": job.status,
        "persistence_mode": job.on_completion,
        "created": _iso(job.created_at),
        "last_run": _iso(job.last_run_at),
        "run_at": _iso(job.run_at),
        "starts_at": _iso(job.starts_at),
        "ends_at": _iso(job.ends_at),
        "attempts": job.attempts,
        "last_error": job.last_error,
        "description": job.description,
    }


def run_to_dict(run: JobRun) -> dict:
    return {
        "id": run.id,
        "job_name": run.job_name,
        "job_type": run.job_type,
        "due_at": _iso(run.due_at),
        "started_at": _iso(run.started_at),
        "finished_at": _iso(run.finished_at),
        "outcome": run.outcome,
        "error": run.error,
        "result": run.result,
    }


class JobScheduler:
    """Dispara los eventos vencidos y administra la tabla ``scheduled_jobs``."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        timeout_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._session_factory = session_factory
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.job_timeout_seconds
        self.max_attempts = max_attempts if max_attempts is not None else settings.job_max_attempts
        self.retry_delay = (
            retry_delay if retry_delay is not None else timedelta(seconds=settings.job_retry_delay_seconds)
        )
        self._clock = clock or (lambda: now_local(settings.scheduler_tz))
        # Evita que el poller y un "run" manual se pisen
        self._lock = asyncio.Lock()

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------ alta

    async def create_job(
        self, definition: JobDefinition, now: Optional[datetime] = None, *, if_not_exists: bool = False
    ) -> dict:
        now = now or self.now()
        async with self._session_factory() as session:
            async with session.begin():
                existing = await self._find(session, definition.name)
                if existing is not None:
                    if if_not_exists:
                        return job_to_dict(existing)
                    raise JobAlreadyExists(definition.name)
                job = ScheduledJob(
                    name=definition.name,
                    job_type=definition.job_type,
                    kind=definition.kind,
                    on_completion=definition.on_completion,
                    status="scheduled",
                    attempts=0,
                    description=definition.description,
                    created_at=now,
                    updated_at=now,
                )
                trigger = definition.trigger
                if isinstance(trigger, At):
                    job.run_at = trigger.run_at
                    job.next_run_at = trigger.run_at
                else:
                    job.interval_seconds = int(trigger.interval.total_seconds())
                    job.starts_at = trigger.starts_at
                    job.ends_at = trigger.ends_at
                    job.next_run_at = trigger.starts_at
                session.add(job)
            logger.info(
                f"[SCHEDULER] Evento creado: {job.name} ({job.job_type}, {job.kind}), "
                f"próxima ejecución {_iso(job.next_run_at)}"
            )
            return job_to_dict(job)

    async def install_defaults(self, now: Optional[datetime] = None) -> list[str]:
        """Crea los eventos por defecto que falten. Devuelve los nombres creados."""
        now = now or self.now()
        created: list[str] = []
        for definition in default_definitions(now):
            async with self._session_factory() as session:
                if await self._find(session, definition.name) is not None:
                    continue
            await self.create_job(definition, now, if_not_exists=True)
            created.append(definition.name)
        return created

    # ------------------------------------------------------- introspección

    async def list_jobs(self) -> list[dict]:
        async with self._session_factory() as session:
            jobs = (await session.scalars(select(ScheduledJob).order_by(ScheduledJob.name))).all()
            return [job_to_dict(j) for j in jobs]

    async def get_job(self, name: str) -> dict:
        async with self._session_factory() as session:
            return job_to_dict(await self._get(session, name))

    async def list_runs(self, name: Optional[str] = None, limit: int = 50) -> list[dict]:
        async with self._session_factory() as session:
            stmt = select(JobRun).order_by(JobRun.id.desc()).limit(limit)
            if name:
                stmt = stmt.where(JobRun.job_name == name)
            return [run_to_dict(r) for r in (await session.scalars(stmt)).all()]

    # ------------------------------------------------------------- admin

    async def enable_job(self, name: str, now: Optional[datetime] = None) -> dict:
        """Habilita un evento; un one-shot ya ejecutado o fallido se rearma para ``now``."""
        now = now or self.now()
        async with self._session_factory() as session:
            async with session.begin():
                job = await self._get(session, name)
                if job.kind == ONE_SHOT:
                    if job.next_run_at is None or job.status == "failed":
                        job.next_run_at = now
                elif job.next_run_at is None or job.status == "failed":
                    job.next_run_at = self._first_recurring_run(job, now)
                job.status = "scheduled"
                job.attempts = 0
                job.last_error = None
                job.updated_at = now
            logger.info(f"[SCHEDULER] Evento habilitado: {name}, próxima ejecución {_iso(job.next_run_at)}")
            return job_to_dict(job)

    async def disable_job(self, name: str) -> dict:
        async with self._session_factory() as session:
            async with session.begin():
                job = await self._get(session, name)
                job.status = "disabled"
                job.updated_at = self.now()
            logger.info(f"[SCHEDULER] Evento deshabilitado: {name}")
            return job_to_dict(job)

    async def drop_job(self, name: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                job = await self._get(session, name)
                await session.delete(job)
        logger.info(f"[SCHEDULER] Evento eliminado: {name}")

    async def recover_interrupted(
        self, now: Optional[datetime] = None, *, stale_before: Optional[datetime] = None
    ) -> int:
        """Devuelve a ``scheduled`` los eventos que quedaron en ``running``.

        Con ``stale_before`` solo toca los marcados antes de ese instante.
        """
        now = now or self.now()
        stmt = update(ScheduledJob).where(ScheduledJob.status == "running")
        if stale_before is not None:
            stmt = stmt.where(ScheduledJob.updated_at < stale_before)
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt.values(status="scheduled", updated_at=now))
        count = result.rowcount or 0
        if count:
            logger.warning(f"[SCHEDULER] {count} eventos interrumpidos vuelven a 'scheduled'")
        return count

    # ----------------------------------------------------------- ejecución

    async def tick(self, now: Optional[datetime] = None) -> list[TickOutcome]:
        """Ejecuta en orden todos los eventos habilitados con ``next_run_at <= now``."""
        now = now or self.now()
        async with self._lock:
            # Con el lock tomado nada corre en este proceso: un running más viejo
            # que el timeout quedó colgado (p. ej. BD caída al registrar la falla)
            await self.recover_interrupted(now, stale_before=now - timedelta(seconds=self.timeout_seconds))
            async with self._session_factory() as session:
                due_ids = (
                    await session.scalars(
                        select(ScheduledJob.id)
                        .where(ScheduledJob.status == "scheduled", ScheduledJob.next_run_at <= now)
                        .order_by(ScheduledJob.next_run_at, ScheduledJob.id)
                    )
                ).all()
            outcomes: list[TickOutcome] = []
            for job_id in due_ids:
                try:
                    outcome = await self._run_one(job_id, now, manual=False)
                except Exception as exc:  # noqa: BLE001
                    # Falla al marcar/registrar (BD caída): el evento sigue vencido y se reintenta
                    logger.error(f"[SCHEDULER] No se pudo procesar el evento id={job_id}: {exc}", exc_info=True)
                    continue
                if outcome is not None:
                    outcomes.append(outcome)
        if outcomes:
            ok = sum(1 for o in outcomes if o.outcome == "success")
            logger.info(f"[SCHEDULER] Tick {now.isoformat()}: {len(outcomes)} eventos, {ok} OK")
        return outcomes

    async def run_job_now(self, name: str, now: Optional[datetime] = None) -> TickOutcome:
        """Ejecuta un evento ya mismo, sin importar su próxima fecha ni su estado."""
        now = now or self.now()
        async with self._lock:
            async with self._session_factory() as session:
                job = await self._get(session, name)
                job_id = job.id
            outcome = await self._run_one(job_id, now, manual=True)
        if outcome is None:
            raise JobNotFound(name)
        return outcome

    async def _run_one(self, job_id: int, now: datetime, *, manual: bool) -> Optional[TickOutcome]:
        # 1) Marcar running (commit propio, visible para el admin)
        async with self._session_factory() as session:
            async with session.begin():
                job = await session.get(ScheduledJob, job_id, with_for_update=True)
                if job is None:
                    return None
                if job.status == "running":
                    logger.warning(f"[SCHEDULER] {job.name} ya está en ejecución; se omite")
                    if manual:
                        raise JobAlreadyRunning(job.name)
                    return None
                if not manual and (
                    job.status != "scheduled" or job.next_run_at is None or job.next_run_at > now
                ):
                    return None
                prev_status = job.status
                due = job.next_run_at if not manual else now
                name, job_type = job.name, job.job_type
                job.status = "running"
                job.attempts = (job.attempts or 0) + 1
                job.updated_at = now

        logger.info(f"[SCHEDULER] Ejecutando {name} ({job_type}) programado para {_iso(due)}")
        started = time.perf_counter()

        # 2) Trabajo + transición en una sola transacción
        try:
            executor = get_executor(job_type)
            async with self._session_factory() as session:
                async with session.begin():
                    result = await asyncio.wait_for(executor(session, now), timeout=self.timeout_seconds)
                    job = await session.get(ScheduledJob, job_id)
                    action, next_run = "removed", None
                    if job is not None:
                        action, next_run = await self._apply_success(session, job, due, now, manual, prev_status)
                    session.add(
                        JobRun(
                            job_name=name,
                            job_type=job_type,
                            due_at=due,
                            started_at=now,
                            finished_at=now + timedelta(seconds=time.perf_counter() - started),
                            outcome="success",
                            result=result,
                        )
                    )
        except asyncio.TimeoutError:
            err = JobTimeout(f"{name} superó {self.timeout_seconds}s")
            return await self._record_failure(job_id, name, job_type, due, now, err, started, manual, prev_status)
        except Exception as exc:  # noqa: BLE001
            err = classify_db_error(exc)
            logger.error(f"[SCHEDULER] Error en {name}: {err}", exc_info=True)
            return await self._record_failure(job_id, name, job_type, due, now, err, started, manual, prev_status)

        logger.info(
            f"[SCHEDULER] {name} completado en {time.perf_counter() - started:.2f}s; acción: {action}"
            + (f", próxima {_iso(next_run)}" if next_run else "")
        )
        return TickOutcome(name, job_type, "success", action, due, next_run, None, result or {})

    async def _apply_success(
        self,
        session: AsyncSession,
        job: ScheduledJob,
        due: datetime,
        now: datetime,
        manual: bool,
        prev_status: str,
    ) -> tuple[str, Optional[datetime]]:
        job.last_run_at = now
        job.attempts = 0
        job.last_error = None
        job.updated_at = now
        if job.kind == ONE_SHOT:
            return await self._complete(session, job)
        if manual:
            # Ejecución manual: no mueve el calendario del recurrente
            job.status = prev_status
            return "unchanged", job.next_run_at
        next_run = self._next_recurring_run(job, due, now)
        if next_run is None:
            return await self._complete(session, job)
        job.status = "scheduled"
        job.next_run_at = next_run
        return "rescheduled", next_run

    async def _complete(self, session: AsyncSession, job: ScheduledJob) -> tuple[str, Optional[datetime]]:
        if job.on_completion == DELETE_AFTER_RUN:
            await session.delete(job)
            return "removed", None
        job.status = "disabled"
        job.next_run_at = None
        return "disabled", None

    def _next_recurring_run(self, job: ScheduledJob, due: datetime, now: datetime) -> Optional[datetime]:
        interval = timedelta(seconds=job.interval_seconds or 0)
        next_run, skipped = next_anchored_run(due, interval, now)
        if skipped:
            logger.warning(
                f"[SCHEDULER] {job.name}: {skipped} ocurrencias vencidas se agrupan en esta ejecución"
            )
        if job.ends_at is not None and next_run > job.ends_at:
            return None
        return next_run

    def _first_recurring_run(self, job: ScheduledJob, now: datetime) -> Optional[datetime]:
        anchor = job.starts_at or now
        if anchor >= now:
            return anchor
        next_run, _ = next_anchored_run(anchor, timedelta(seconds=job.interval_seconds or 0), now)
        return next_run

    async def _record_failure(
        self,
        job_id: int,
        name: str,
        job_type: str,
        due: datetime,
        now: datetime,
        err: BaseException,
        started: float,
        manual: bool,
        prev_status: str,
    ) -> TickOutcome:
        outcome = "timeout" if isinstance(err, JobTimeout) else "failed"
        message = f"{type(err).__name__}: {err}"[:MAX_ERROR_CHARS]
        action, next_run = "failed", None
        async with self._session_factory() as session:
            async with session.begin():
                job = await session.get(ScheduledJob, job_id)
                if job is not None:
                    action, next_run = self._apply_failure(job, due, now, err, manual, prev_status)
                    job.last_error = message
                session.add(
                    JobRun(
                        job_name=name,
                        job_type=job_type,
                        due_at=due,
                        started_at=now,
                        finished_at=now + timedelta(seconds=time.perf_counter() - started),
                        outcome=outcome,
                        error=message,
                    )
                )
        logger.error(f"[SCHEDULER] {name} falló ({outcome}); acción: {action}. {message}")
        return TickOutcome(name, job_type, outcome, action, due, next_run, message, {})

    def _apply_failure(
        self,
        job: ScheduledJob,
        due: datetime,
        now: datetime,
        err: BaseException,
        manual: bool,
        prev_status: str,
    ) -> tuple[str, Optional[datetime]]:
        job.last_run_at = now
        job.updated_at = now
        if job.kind != ONE_SHOT:
            # Recurrente: se reintenta en su próxima ocurrencia
            job.attempts = 0
            if manual:
                job.status = prev_status
                return "unchanged", job.next_run_at
            next_run = self._next_recurring_run(job, due, now)
            if next_run is None:
                job.status = "failed"
                job.next_run_at = None
                return "failed", None
            job.status = "scheduled"
            job.next_run_at = next_run
            return "rescheduled", next_run
        if manual and prev_status in ("disabled", "failed"):
            # Un run manual fallido no rearma un evento apagado
            job.attempts = 0
            job.status = prev_status
            return "unchanged", job.next_run_at
        retryable = isinstance(err, TransientStoreError)
        if retryable and job.attempts < self.max_attempts:
            job.status = "scheduled"
            job.next_run_at = now + self.retry_delay
            return "retry", job.next_run_at
        job.status = "failed"
        job.next_run_at = None
        return "failed", None

    # ------------------------------------------------------------- helpers

    async def _find(self, session: AsyncSession, name: str) -> Optional[ScheduledJob]:
        return await session.scalar(select(ScheduledJob).where(ScheduledJob.name == name))

    async def _get(self, session: AsyncSession, name: str) -> ScheduledJob:
        job = await self._find(session, name)
        if job is None:
            raise JobNotFound(name)
        return job


_default: Optional[JobScheduler] = None


def get_job_scheduler() -> JobScheduler:
    """Instancia compartida sobre ``db.session.SessionLocal``."""
    global _default
    if _default is None:
        from db.session import SessionLocal

        _default = JobScheduler(SessionLocal)
    return _default
