# NG-HEADER: Nombre de archivo: api.py
# NG-HEADER: Ubicación: services/api.py
# NG-HEADER: Descripción: Aplicación FastAPI: salud, administración de eventos y ciclo de vida del poller.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Aplicación FastAPI principal."""

# --- Windows psycopg async fix (no-op en otros SO) ---
import sys, asyncio
if sys.platform.startswith("win"):
    try:
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    except Exception:
        pass
# --- end fix ---

import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from starlette.responses import JSONResponse

from db.session import SessionLocal, engine, init_schema
from pizzeria_core.config import settings
from pizzeria_core.logging_setup import setup_logging
from services.jobs import runner
from services.routers import admin_scheduler

logger = setup_logging()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if settings.env == "dev" or os.getenv("AUTO_CREATE_SCHEMA") == "1":
        # En producción el esquema lo crean las migraciones Alembic
        await init_schema()
    await runner.start_if_enabled()
    try:
        yield
    finally:
        runner.disable_scheduler()
        await engine.dispose()


app = FastAPI(title="Pizzería - Eventos", redirect_slashes=False, lifespan=lifespan)

# Diagnóstico: loguear DB URL efectiva al importar la app (sin credenciales)
logger.info("DB effective URL: %s", engine.url.render_as_string(hide_password=True))


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Registra cada solicitud con un correlation-id."""
    start = time.perf_counter()
    corr = request.headers.get("x-correlation-id") or f"req-{int(time.time()*1000):x}-{os.getpid():x}"
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Unhandled error [%s] %s %s", corr, request.method, request.url.path)
        raise
    duration = (time.perf_counter() - start) * 1000
    response.headers["X-Correlation-Id"] = corr
    logger.info("%s %s -> %s (%.1f ms) [%s]", request.method, request.url.path, response.status_code, duration, corr)
    return response


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning("IntegrityError en %s: %s", request.url.path, exc.orig)
    return JSONResponse(status_code=409, content={"detail": "Conflicto de integridad de datos"})


@app.get("/health")
async def health() -> dict:
    db_ok = True
    try:
        async with SessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Health DB check falló: %s", e)
        db_ok = False
    return {"status": "ok" if db_ok else "degraded", "db": db_ok, "scheduler": runner.get_status()["running"]}


app.include_router(admin_scheduler.router)
