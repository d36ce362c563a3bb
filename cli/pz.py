# NG-HEADER: Nombre de archivo: pz.py
# NG-HEADER: Ubicación: cli/pz.py
# NG-HEADER: Descripción: CLI de administración de eventos programados y del poller.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""CLI principal de la pizzería usando Typer."""
from __future__ import annotations

import asyncio
import json
import os
import sys

import typer

from db.session import init_schema
from pizzeria_core.config import settings
from pizzeria_core.logging_setup import setup_logging
from services.jobs.errors import JobAlreadyRunning, JobNotFound
from services.jobs.scheduler import get_job_scheduler

app = typer.Typer(help="Herramientas de línea de comandos de la pizzería")
jobs_app = typer.Typer(help="Administración de eventos programados")
app.add_typer(jobs_app, name="jobs")
scheduler_app = typer.Typer(help="Poller del scheduler")
app.add_typer(scheduler_app, name="scheduler")


def _run(coro):
    return asyncio.run(coro)


def _echo_json(data) -> None:
    typer.echo(json.dumps(data, ensure_ascii=False, indent=2, default=str))


@app.command("db-init")
def db_init() -> None:
    """Crea las tablas faltantes (dev). En producción usar ``alembic upgrade head``."""
    _run(init_schema())
    typer.echo("Esquema creado/verificado")


@jobs_app.command("install")
def jobs_install() -> None:
    """Crea los cinco eventos por defecto que no existan."""
    created = _run(get_job_scheduler().install_defaults())
    if created:
        typer.echo("Eventos creados: " + ", ".join(created))
    else:
        typer.echo("Todos los eventos por defecto ya existen")


@jobs_app.command("list")
def jobs_list(as_json: bool = typer.Option(False, "--json", help="Salida JSON")) -> None:
    """Lista los eventos con su próxima ejecución y estado."""
    jobs = _run(get_job_scheduler().list_jobs())
    if as_json:
        _echo_json(jobs)
        return
    if not jobs:
        typer.echo("No hay eventos programados")
        return
    for j in jobs:
        interval = f"cada {j['interval']}s" if j["interval"] else "única vez"
        typer.echo(
            f"{j['name']:<26} {j['status']:<10} {interval:<14} "
            f"próxima={j['next_run'] or '-'} última={j['last_run'] or '-'} ({j['persistence_mode']})"
        )


@jobs_app.command("runs")
def jobs_runs(name: str = typer.Option(None, help="Filtrar por evento"), limit: int = 20) -> None:
    """Muestra la bitácora de ejecuciones."""
    runs = _run(get_job_scheduler().list_runs(name=name, limit=limit))
    for r in runs:
        typer.echo(f"{r['started_at']} {r['job_name']:<26} {r['outcome']:<8} {r['error'] or ''}")


def _admin(action: str, name: str) -> None:
    js = get_job_scheduler()
    ops = {
        "enable": js.enable_job,
        "disable": js.disable_job,
        "drop": js.drop_job,
        "run": js.run_job_now,
    }
    try:
        result = _run(ops[action](name))
    except JobNotFound as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=2)
    except JobAlreadyRunning as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=3)
    if action == "run":
        _echo_json(result.as_dict())
        if result.outcome != "success":
            raise typer.Exit(code=1)
    elif action == "drop":
        typer.echo(f"Evento eliminado: {name}")
    else:
        typer.echo(f"{name}: {result['status']} (próxima {result['next_run'] or '-'})")


@jobs_app.command("enable")
def jobs_enable(name: str) -> None:
    """Habilita un evento (un one-shot ya ejecutado se rearma para ahora)."""
    _admin("enable", name)


@jobs_app.command("disable")
def jobs_disable(name: str) -> None:
    """Deshabilita un evento sin borrarlo."""
    _admin("disable", name)


@jobs_app.command("drop")
def jobs_drop(name: str) -> None:
    """Elimina un evento."""
    _admin("drop", name)


@jobs_app.command("run")
def jobs_run(name: str) -> None:
    """Ejecuta un evento ya mismo."""
    _admin("run", name)


@jobs_app.command("tick")
def jobs_tick() -> None:
    """Un único tick: ejecuta los eventos vencidos (apto para cron)."""
    outcomes = _run(get_job_scheduler().tick())
    _echo_json([o.as_dict() for o in outcomes])
    if any(o.outcome != "success" for o in outcomes):
        raise typer.Exit(code=1)


@scheduler_app.command("serve")
def scheduler_serve(poll_seconds: int = typer.Option(None, help="Segundos entre ticks")) -> None:
    """Corre el poller en primer plano hasta Ctrl+C."""
    from services.jobs import runner

    async def _serve() -> None:
        await runner.enable_scheduler(poll_seconds)
        try:
            await asyncio.Event().wait()
        finally:
            runner.disable_scheduler()

    try:
        _run(_serve())
    except KeyboardInterrupt:
        typer.echo("Poller detenido")


@app.command("serve")
def serve(
    host: str = typer.Option(os.getenv("PIZZERIA_HOST", "127.0.0.1")),
    port: int = typer.Option(int(os.getenv("PIZZERIA_PORT", "8000"))),
) -> None:
    """Levanta la API (un solo worker: el poller no debe duplicarse)."""
    import uvicorn

    if sys.platform.startswith("win"):
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    uvicorn.run(
        "services.api:app",
        host=host,
        port=port,
        reload=settings.env == "dev",
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


def main() -> None:
    setup_logging()
    app()


if __name__ == "__main__":
    main()
