# NG-HEADER: Nombre de archivo: config.py
# NG-HEADER: Ubicación: pizzeria_core/config.py
# NG-HEADER: Descripción: Configuración central leída de variables de entorno.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Configuración central de la pizzería."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from dotenv import load_dotenv

# Carga automática de variables definidas en .env
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    """Parámetros de configuración leídos de variables de entorno."""

    env: str = os.getenv("ENV", "dev")
    db_url: str = os.getenv("DB_URL", "")
    # Soporte para componer la URL si no se pasa DB_URL directamente
    db_host: str = os.getenv("DB_HOST", "localhost")
    db_port: str = os.getenv("DB_PORT", "5432")
    db_name: str = os.getenv("DB_NAME", "pizzeria")
    db_user: str = os.getenv("DB_USER", "pizzeria")
    db_pass: str = os.getenv("DB_PASS", "")
    # Token para los endpoints /admin; vacío = sin control (solo dev)
    admin_token: str = os.getenv("ADMIN_TOKEN", "")

    # Scheduler de eventos
    scheduler_enabled: bool = _env_bool("SCHEDULER_ENABLED", "false")
    scheduler_poll_seconds: int = int(os.getenv("SCHEDULER_POLL_SECONDS", "30"))
    scheduler_tz: str = os.getenv("SCHEDULER_TZ", "UTC")
    job_timeout_seconds: float = float(os.getenv("JOB_TIMEOUT_SECONDS", "60"))
    job_max_attempts: int = int(os.getenv("JOB_MAX_ATTEMPTS", "3"))
    job_retry_delay_seconds: int = int(os.getenv("JOB_RETRY_DELAY_SECONDS", "300"))

    # Umbrales de inventario
    low_stock_threshold: int = int(os.getenv("LOW_STOCK_THRESHOLD", "5"))
    stock_monitor_threshold: int = int(os.getenv("STOCK_MONITOR_THRESHOLD", "10"))

    # Retención (días)
    summary_retention_days: int = int(os.getenv("SUMMARY_RETENTION_DAYS", "365"))
    alert_retention_days: int = int(os.getenv("ALERT_RETENTION_DAYS", "30"))
    job_run_retention_days: int = int(os.getenv("JOB_RUN_RETENTION_DAYS", "90"))

    # Fila -1/-1.00 en resumen_ventas al correr la alerta de stock (compatibilidad)
    legacy_sentinel_marker: bool = _env_bool("LEGACY_SENTINEL_MARKER", "0")

    def __post_init__(self) -> None:
        if not self.db_url:
            # Intentar construir desde variables sueltas
            if self.db_pass:
                from urllib.parse import quote_plus as _qp
                pw_enc = _qp(self.db_pass)
            else:
                pw_enc = ""
            if self.db_user and pw_enc:
                candidate = f"postgresql+psycopg://{self.db_user}:{pw_enc}@{self.db_host}:{self.db_port}/{self.db_name}"
            elif self.db_user and os.getenv("DB_HOST"):
                candidate = f"postgresql+psycopg://{self.db_user}@{self.db_host}:{self.db_port}/{self.db_name}"
            else:
                candidate = ""
            if candidate:
                self.db_url = candidate
        if not self.db_url:
            if self.env == "dev":
                # Fallback para no bloquear el arranque local sin Postgres
                self.db_url = "sqlite+aiosqlite:///./dev.db"
            else:
                raise RuntimeError("DB_URL debe definirse en el entorno")
        if self.scheduler_poll_seconds < 1:
            raise RuntimeError("SCHEDULER_POLL_SECONDS debe ser >= 1")
        if self.job_max_attempts < 1:
            raise RuntimeError("JOB_MAX_ATTEMPTS debe ser >= 1")
        if self.env != "dev" and not self.admin_token:
            logging.getLogger("pizzeria.config").warning(
                "SEGURIDAD: ADMIN_TOKEN vacío con ENV=%s; los endpoints /admin quedan abiertos",
                self.env,
            )


settings = Settings()
