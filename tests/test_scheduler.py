# NG-HEADER: Nombre de archivo: test_scheduler.py
# NG-HEADER: Ubicación: tests/test_scheduler.py
# NG-HEADER: Descripción: Tests del scheduler persistido: ciclo de vida, reprogramación y fallas.
# NG-HEADER: Lineamientos: Ver AGENTS.md
import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError

from db.models import JobRun, ResumenVentas, ScheduledJob
from services.jobs.definitions import EXECUTORS, At, Every, JobDefinition
from services.jobs.errors import JobAlreadyExists, JobAlreadyRunning, JobNotFound, UnknownJobType
from services.jobs.scheduler import JobScheduler

from conftest import FIXED_NOW


def one_shot(name="resumen_diario_ventas", job_type="daily_summary", minutes=1, **kw):
    return JobDefinition(name=name, job_type=job_type, trigger=At(FIXED_NOW + timedelta(minutes=minutes)), **kw)


def recurring(name="monitor_stock", job_type="stock_monitor", **kw):
    return JobDefinition(
        name=name,
        job_type=job_type,
        trigger=Every(timedelta(minutes=30), kw.pop("starts_at", FIXED_NOW), kw.pop("ends_at", None)),
        on_completion="preserve",
        **kw,
    )


async def _runs(session_factory, name=None):
    async with session_factory() as session:
        stmt = select(JobRun).order_by(JobRun.id)
        if name:
            stmt = stmt.where(JobRun.job_name == name)
        return (await session.scalars(stmt)).all()


async def _job_row(session_factory, name):
    async with session_factory() as session:
        return await session.scalar(select(ScheduledJob).where(ScheduledJob.name == name))


# ------------------------------------------------------------------ one-shot


@pytest.mark.asyncio
async def test_one_shot_no_corre_antes_de_tiempo(job_scheduler, session_factory):
    await job_scheduler.create_job(one_shot(), FIXED_NOW)
    assert await job_scheduler.tick(FIXED_NOW) == []
    assert (await _job_row(session_factory, "resumen_diario_ventas")).status == "scheduled"


@pytest.mark.asyncio
async def test_one_shot_delete_se_borra_tras_exito(job_scheduler, session_factory):
    await job_scheduler.create_job(one_shot(), FIXED_NOW)

    outcomes = await job_scheduler.tick(FIXED_NOW + timedelta(minutes=1))

    assert [(o.name, o.outcome, o.action) for o in outcomes] == [("resumen_diario_ventas", "success", "removed")]
    assert await _job_row(session_factory, "resumen_diario_ventas") is None
    runs = await _runs(session_factory)
    assert [(r.job_name, r.outcome) for r in runs] == [("resumen_diario_ventas", "success")]
    assert runs[0].result["fecha"] == "2026-10-13"
    # Un tick posterior no vuelve a ejecutarlo
    assert await job_scheduler.tick(FIXED_NOW + timedelta(hours=1)) == []


@pytest.mark.asyncio
async def test_one_shot_preserve_queda_deshabilitado_y_se_rearma(job_scheduler, session_factory):
    await job_scheduler.create_job(
        one_shot("limpiar_datos_antiguos", "purge_old_records", minutes=2, on_completion="preserve"), FIXED_NOW
    )
    later = FIXED_NOW + timedelta(minutes=2)
    outcomes = await job_scheduler.tick(later)
    assert outcomes[0].action == "disabled"

    job = await job_scheduler.get_job("limpiar_datos_antiguos")
    assert job["status"] == "disabled"
    assert job["next_run"] is None
    assert job["last_run"] == later.isoformat()

    rearmed_at = later + timedelta(days=1)
    job = await job_scheduler.enable_job("limpiar_datos_antiguos", rearmed_at)
    assert job["status"] == "scheduled"
    assert job["next_run"] == rearmed_at.isoformat()
    outcomes = await job_scheduler.tick(rearmed_at)
    assert [o.outcome for o in outcomes] == ["success"]


@pytest.mark.asyncio
async def test_one_shot_fallido_no_se_borra_y_hace_rollback(job_scheduler, session_factory, monkeypatch):
    async def broken(session, now):
        session.add(ResumenVentas(fecha=now.date(), total_pedidos=99, total_ingresos=Decimal("1.00"), created_at=now))
        await session.flush()
        raise RuntimeError("explotó")

    monkeypatch.setitem(EXECUTORS, "daily_summary", broken)
    await job_scheduler.create_job(one_shot(), FIXED_NOW)

    outcomes = await job_scheduler.tick(FIXED_NOW + timedelta(minutes=1))

    assert outcomes[0].outcome == "failed"
    assert outcomes[0].action == "failed"
    job = await _job_row(session_factory, "resumen_diario_ventas")
    assert job is not None
    assert job.status == "failed"
    assert "explotó" in job.last_error
    runs = await _runs(session_factory)
    assert [r.outcome for r in runs] == ["failed"]
    assert "RuntimeError" in runs[0].error
    async with session_factory() as session:
        assert await session.scalar(select(func.count(ResumenVentas.id))) == 0


@pytest.mark.asyncio
async def test_one_shot_error_transitorio_reintenta_hasta_el_maximo(job_scheduler, session_factory, monkeypatch):
    async def flaky(session, now):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setitem(EXECUTORS, "daily_summary", flaky)
    await job_scheduler.create_job(one_shot(), FIXED_NOW)

    when = FIXED_NOW + timedelta(minutes=1)
    actions = []
    for _ in range(3):
        outcomes = await job_scheduler.tick(when)
        actions.append(outcomes[0].action)
        if outcomes[0].next_run_at:
            assert outcomes[0].next_run_at == when + timedelta(minutes=5)
            when = outcomes[0].next_run_at

    assert actions == ["retry", "retry", "failed"]
    job = await _job_row(session_factory, "resumen_diario_ventas")
    assert job.status == "failed"
    assert "TransientStoreError" in job.last_error
    assert len(await _runs(session_factory)) == 3


@pytest.mark.asyncio
async def test_timeout_se_registra_y_reintenta(session_factory, clock, monkeypatch):
    async def slow(session, now):
        await asyncio.sleep(5)
        return {}

    monkeypatch.setitem(EXECUTORS, "daily_summary", slow)
    js = JobScheduler(session_factory, timeout_seconds=0.05, max_attempts=2, retry_delay=timedelta(minutes=1), clock=clock)
    await js.create_job(one_shot(), FIXED_NOW)

    outcomes = await js.tick(FIXED_NOW + timedelta(minutes=1))

    assert outcomes[0].outcome == "timeout"
    assert outcomes[0].action == "retry"
    runs = await _runs(session_factory)
    assert runs[0].outcome == "timeout"
    assert "JobTimeout" in runs[0].error


@pytest.mark.asyncio
async def test_un_evento_fallido_no_frena_a_los_demas(job_scheduler, session_factory, monkeypatch):
    async def broken(session, now):
        raise RuntimeError("no")

    monkeypatch.setitem(EXECUTORS, "daily_summary", broken)
    await job_scheduler.create_job(one_shot(), FIXED_NOW)
    await job_scheduler.create_job(one_shot("limpiar_datos_antiguos", "purge_old_records", minutes=2), FIXED_NOW)

    outcomes = await job_scheduler.tick(FIXED_NOW + timedelta(minutes=5))

    assert [(o.name, o.outcome) for o in outcomes] == [
        ("resumen_diario_ventas", "failed"),
        ("limpiar_datos_antiguos", "success"),
    ]


# ---------------------------------------------------------------- recurrentes


@pytest.mark.asyncio
async def test_recurrente_reprograma_anclado(job_scheduler, session_factory):
    await job_scheduler.create_job(recurring(), FIXED_NOW)

    # Se ejecuta 20 segundos tarde: la próxima sigue anclada a 12:30
    outcomes = await job_scheduler.tick(FIXED_NOW + timedelta(seconds=20))
    assert outcomes[0].action == "rescheduled"
    assert outcomes[0].next_run_at == datetime(2026, 10, 14, 12, 30)

    job = await job_scheduler.get_job("monitor_stock")
    assert job["status"] == "scheduled"
    assert job["interval"] == 1800
    assert job["persistence_mode"] == "preserve"


@pytest.mark.asyncio
async def test_recurrente_agrupa_ocurrencias_perdidas(job_scheduler):
    await job_scheduler.create_job(recurring(), FIXED_NOW)

    outcomes = await job_scheduler.tick(datetime(2026, 10, 14, 14, 10))

    assert len(outcomes) == 1
    assert outcomes[0].due_at == FIXED_NOW
    assert outcomes[0].next_run_at == datetime(2026, 10, 14, 14, 30)


@pytest.mark.asyncio
async def test_recurrente_con_fin_termina(job_scheduler):
    await job_scheduler.create_job(recurring(ends_at=FIXED_NOW + timedelta(minutes=45)), FIXED_NOW)

    first = await job_scheduler.tick(FIXED_NOW)
    assert first[0].action == "rescheduled"
    second = await job_scheduler.tick(FIXED_NOW + timedelta(minutes=30))
    assert second[0].action == "disabled"
    assert (await job_scheduler.get_job("monitor_stock"))["status"] == "disabled"


@pytest.mark.asyncio
async def test_recurrente_fallido_pasa_a_la_siguiente_ocurrencia(job_scheduler, monkeypatch):
    async def broken(session, now):
        raise RuntimeError("no")

    monkeypatch.setitem(EXECUTORS, "stock_monitor", broken)
    await job_scheduler.create_job(recurring(), FIXED_NOW)

    outcomes = await job_scheduler.tick(FIXED_NOW)

    assert outcomes[0].outcome == "failed"
    assert outcomes[0].action == "rescheduled"
    job = await job_scheduler.get_job("monitor_stock")
    assert job["status"] == "scheduled"
    assert job["next_run"] == datetime(2026, 10, 14, 12, 30).isoformat()


@pytest.mark.asyncio
async def test_ejecucion_manual_no_mueve_calendario(job_scheduler, session_factory):
    await job_scheduler.create_job(recurring(starts_at=FIXED_NOW + timedelta(hours=1)), FIXED_NOW)

    outcome = await job_scheduler.run_job_now("monitor_stock", FIXED_NOW)

    assert outcome.outcome == "success"
    assert outcome.action == "unchanged"
    job = await job_scheduler.get_job("monitor_stock")
    assert job["next_run"] == (FIXED_NOW + timedelta(hours=1)).isoformat()
    assert job["status"] == "scheduled"
    assert len(await _runs(session_factory, "monitor_stock")) == 1


# ---------------------------------------------------------------- admin


@pytest.mark.asyncio
async def test_deshabilitado_nunca_se_ejecuta(job_scheduler, session_factory):
    await job_scheduler.create_job(one_shot(), FIXED_NOW)
    await job_scheduler.disable_job("resumen_diario_ventas")

    assert await job_scheduler.tick(FIXED_NOW + timedelta(days=1)) == []
    assert await _runs(session_factory) == []

    await job_scheduler.enable_job("resumen_diario_ventas", FIXED_NOW + timedelta(days=1))
    outcomes = await job_scheduler.tick(FIXED_NOW + timedelta(days=1))
    assert [o.action for o in outcomes] == ["removed"]


@pytest.mark.asyncio
async def test_alta_duplicada_y_tipo_desconocido(job_scheduler):
    await job_scheduler.create_job(one_shot(), FIXED_NOW)
    with pytest.raises(JobAlreadyExists):
        await job_scheduler.create_job(one_shot(), FIXED_NOW)
    same = await job_scheduler.create_job(one_shot(), FIXED_NOW, if_not_exists=True)
    assert same["name"] == "resumen_diario_ventas"
    with pytest.raises(UnknownJobType):
        one_shot(name="x", job_type="no_existe")


@pytest.mark.asyncio
async def test_evento_inexistente(job_scheduler):
    with pytest.raises(JobNotFound):
        await job_scheduler.get_job("nada")
    with pytest.raises(JobNotFound):
        await job_scheduler.run_job_now("nada")
    with pytest.raises(JobNotFound):
        await job_scheduler.drop_job("nada")


@pytest.mark.asyncio
async def test_drop_elimina(job_scheduler):
    await job_scheduler.create_job(one_shot(), FIXED_NOW)
    await job_scheduler.drop_job("resumen_diario_ventas")
    assert await job_scheduler.list_jobs() == []


@pytest.mark.asyncio
async def test_recover_interrupted(job_scheduler, session_factory):
    await job_scheduler.create_job(one_shot(), FIXED_NOW)
    async with session_factory() as session:
        async with session.begin():
            await session.execute(
                update(ScheduledJob).values(status="running", updated_at=FIXED_NOW + timedelta(minutes=1))
            )

    # Un evento en running reciente no se vuelve a tomar
    assert await job_scheduler.tick(FIXED_NOW + timedelta(minutes=1)) == []
    assert await job_scheduler.recover_interrupted(FIXED_NOW) == 1
    outcomes = await job_scheduler.tick(FIXED_NOW + timedelta(minutes=1))
    assert [o.action for o in outcomes] == ["removed"]


@pytest.mark.asyncio
async def test_running_colgado_se_recupera_en_el_tick(job_scheduler, session_factory, monkeypatch):
    async def flaky(session, now):
        raise OperationalError("SELECT 1", {}, Exception("server closed the connection"))

    async def db_down(*args, **kwargs):
        raise OperationalError("INSERT INTO job_runs", {}, Exception("server closed the connection"))

    monkeypatch.setitem(EXECUTORS, "stock_monitor", flaky)
    monkeypatch.setattr(job_scheduler, "_record_failure", db_down)
    await job_scheduler.create_job(recurring(), FIXED_NOW)

    # La falla no se pudo registrar: la fila queda en running
    assert await job_scheduler.tick(FIXED_NOW) == []
    assert (await _job_row(session_factory, "monitor_stock")).status == "running"

    monkeypatch.undo()
    # Dentro del timeout todavía no se considera colgado
    assert await job_scheduler.tick(FIXED_NOW + timedelta(seconds=2)) == []
    assert (await _job_row(session_factory, "monitor_stock")).status == "running"

    outcomes = await job_scheduler.tick(FIXED_NOW + timedelta(minutes=1))
    assert [(o.name, o.outcome, o.action) for o in outcomes] == [("monitor_stock", "success", "rescheduled")]
    job = await _job_row(session_factory, "monitor_stock")
    assert job.status == "scheduled"
    assert job.next_run_at == FIXED_NOW + timedelta(minutes=30)


@pytest.mark.asyncio
async def test_run_manual_sobre_evento_en_ejecucion(job_scheduler, session_factory):
    await job_scheduler.create_job(one_shot(), FIXED_NOW)
    async with session_factory() as session:
        async with session.begin():
            await session.execute(update(ScheduledJob).values(status="running", updated_at=FIXED_NOW))

    with pytest.raises(JobAlreadyRunning):
        await job_scheduler.run_job_now("resumen_diario_ventas", FIXED_NOW)
    assert await _runs(session_factory) == []


@pytest.mark.asyncio
async def test_run_manual_fallido_no_rearma_one_shot_deshabilitado(job_scheduler, session_factory, monkeypatch):
    async def flaky(session, now):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setitem(EXECUTORS, "daily_summary", flaky)
    await job_scheduler.create_job(one_shot(), FIXED_NOW)
    await job_scheduler.disable_job("resumen_diario_ventas")

    outcome = await job_scheduler.run_job_now("resumen_diario_ventas", FIXED_NOW)

    assert (outcome.outcome, outcome.action) == ("failed", "unchanged")
    job = await _job_row(session_factory, "resumen_diario_ventas")
    assert job.status == "disabled"
    assert job.attempts == 0
    assert "TransientStoreError" in job.last_error
    # Sigue apagado: el poller no lo toma
    assert await job_scheduler.tick(FIXED_NOW + timedelta(hours=1)) == []
    assert len(await _runs(session_factory)) == 1


@pytest.mark.asyncio
async def test_install_defaults(job_scheduler):
    created = await job_scheduler.install_defaults(FIXED_NOW)
    assert sorted(created) == [
        "alerta_stock_bajo",
        "limpiar_datos_antiguos",
        "monitor_stock",
        "resumen_diario_ventas",
        "resumen_semanal_ventas",
    ]
    assert await job_scheduler.install_defaults(FIXED_NOW) == []

    jobs = {j["name"]: j for j in await job_scheduler.list_jobs()}
    assert jobs["resumen_diario_ventas"]["next_run"] == (FIXED_NOW + timedelta(minutes=1)).isoformat()
    assert jobs["limpiar_datos_antiguos"]["next_run"] == (FIXED_NOW + timedelta(minutes=2)).isoformat()
    assert jobs["alerta_stock_bajo"]["next_run"] == (FIXED_NOW + timedelta(minutes=5)).isoformat()
    assert jobs["monitor_stock"]["next_run"] == FIXED_NOW.isoformat()
    assert jobs["monitor_stock"]["interval"] == 1800
    assert jobs["resumen_semanal_ventas"]["next_run"] == datetime(2026, 10, 19, 1, 0).isoformat()
    assert jobs["resumen_semanal_ventas"]["interval"] == 7 * 24 * 3600
    assert jobs["resumen_semanal_ventas"]["persistence_mode"] == "preserve"
    assert jobs["resumen_diario_ventas"]["type"] == "one_shot"


@pytest.mark.asyncio
async def test_defaults_tras_una_hora(job_scheduler, session_factory):
    """A la hora de instalar: los one-shot desaparecen y quedan los recurrentes."""
    await job_scheduler.install_defaults(FIXED_NOW)
    for minute in range(0, 61):
        await job_scheduler.tick(FIXED_NOW + timedelta(minutes=minute))

    names = sorted(j["name"] for j in await job_scheduler.list_jobs())
    assert names == ["monitor_stock", "resumen_semanal_ventas"]
    monitor_runs = await _runs(session_factory, "monitor_stock")
    assert len(monitor_runs) == 3  # 12:00, 12:30, 13:00
