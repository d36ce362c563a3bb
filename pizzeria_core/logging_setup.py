# NG-HEADER: Nombre de archivo: logging_setup.py
# NG-HEADER: Ubicación: pizzeria_core/logging_setup.py
# NG-HEADER: Descripción: Configura los loggers de la API y del scheduler con rotación
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Inicializa el logging del backend.

- Logger ``pizzeria`` con consola + ``logs/backend.log`` (RotatingFileHandler).
- Los loggers ``services.jobs.*`` propagan a root, que comparte los handlers.
- ``JOBS_LOG_JSON=1`` agrega ``logs/jobs.log`` en formato JSON compacto para
  auditar ejecuciones de eventos.
"""
from __future__ import annotations

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_DIR = Path(__file__).resolve().parents[1] / "logs"
FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_STD_ATTRS = {
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename", "module",
    "exc_info", "exc_text", "stack_info", "lineno", "funcName", "created", "msecs",
    "relativeCreated", "thread", "threadName", "processName", "process", "taskName",
}

_INITIALIZED = False


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        base = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        meta = {k: v for k, v in record.__dict__.items() if k not in _STD_ATTRS and not k.startswith("_")}
        if meta:
            base["extra"] = meta
        return json.dumps(base, ensure_ascii=False, default=str)


def _level_name() -> str:
    raw_level = os.getenv("LOG_LEVEL", "INFO") or "INFO"
    level_name = raw_level.strip().upper()
    if level_name not in logging.getLevelNamesMapping():
        level_name = "INFO"
    return level_name


def setup_logging(log_dir: Path | None = None) -> logging.Logger:
    """Configura handlers una sola vez y devuelve el logger ``pizzeria``."""
    global _INITIALIZED
    logger = logging.getLogger("pizzeria")
    if _INITIALIZED:
        return logger

    level_name = _level_name()
    fmt = logging.Formatter(FORMAT)
    handlers: list[logging.Handler] = []

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(fmt)
    handlers.append(stream_handler)

    target = log_dir or LOG_DIR
    try:
        target.mkdir(parents=True, exist_ok=True)
        # delay=True evita abrir el archivo hasta el primer log
        file_handler = RotatingFileHandler(
            str(target / "backend.log"), maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8", delay=True
        )
        file_handler.setFormatter(fmt)
        handlers.append(file_handler)
    except OSError:
        # Sin permisos: continuar solo con consola
        pass

    root = logging.getLogger()
    root.setLevel(level_name)
    for h in handlers:
        root.addHandler(h)

    if os.getenv("JOBS_LOG_JSON") == "1":
        try:
            json_handler = RotatingFileHandler(
                str(target / "jobs.log"), maxBytes=2_000_000, backupCount=5, encoding="utf-8", delay=True
            )
            json_handler.setFormatter(JsonFormatter())
            logging.getLogger("services.jobs").addHandler(json_handler)
        except OSError:
            pass

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.handlers = list(handlers)
        lg.setLevel(level_name)
        lg.propagate = False
    # APScheduler es muy verboso en INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    logger.setLevel(level_name)
    _INITIALIZED = True
    return logger
