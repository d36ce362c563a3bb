# NG-HEADER: Nombre de archivo: env.py
# NG-HEADER: Ubicación: db/migrations/env.py
# NG-HEADER: Descripción: Script de entorno Alembic: carga .env, prepara logging y ejecuta migraciones
# NG-HEADER: Lineamientos: Ver AGENTS.md
import logging
import traceback
from logging.config import fileConfig
from pathlib import Path
from urllib.parse import urlsplit

from alembic import context
from alembic.runtime.migration import MigrationContext
from dotenv import load_dotenv
from sqlalchemy import engine_from_config
from sqlalchemy.pool import NullPool

logger = logging.getLogger("alembic.env")

config = context.config

# Logging (si alembic.ini tiene secciones de logging)
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# .env desde la raíz del repo (dos niveles hacia arriba)
REPO_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(REPO_ROOT / ".env")

from db.urls import resolve_db_url, sync_db_url  # noqa: E402

# Misma URL que la app (DB_URL o DB_HOST/DB_USER/DB_PASS), con driver sync
db_url = sync_db_url(resolve_db_url())


def _safe_url(url: str) -> str:
    """DB_URL sin contraseña para el log."""
    try:
        parts = urlsplit(url)
        netloc = parts.netloc
        if "@" in netloc and ":" in netloc.split("@")[0]:
            user = netloc.split("@")[0].split(":")[0]
            host = netloc.split("@")[1]
            netloc = f"{user}:***@{host}"
        return parts._replace(netloc=netloc).geturl()
    except ValueError:
        return "(formato no imprimible)"


logger.info("DB_URL: %s", _safe_url(db_url))

from db.base import Base  # noqa: E402
import db.models  # noqa: F401,E402

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=db_url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        render_as_batch=db_url.startswith("sqlite"),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = db_url
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=NullPool, future=True)
    with connectable.connect() as connection:
        current_rev = MigrationContext.configure(connection).get_current_revision()
        logger.info("Revisión actual: %s", current_rev)
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        try:
            with context.begin_transaction():
                context.run_migrations()
            logger.info("Migraciones aplicadas con éxito")
        except Exception:  # pragma: no cover - logging
            logger.error("Error al ejecutar migraciones:\n%s", traceback.format_exc())
            raise


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
