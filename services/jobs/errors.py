# NG-HEADER: Nombre de archivo: errors.py
# NG-HEADER: Ubicación: services/jobs/errors.py
# NG-HEADER: Descripción: Jerarquía de errores de los eventos programados y clasificación de errores de BD
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Errores del scheduler.

- ``ConstraintViolation``: FK/PK/UNIQUE rota al escribir. Indica un bug de
  datos: se informa y no se reintenta.
- ``TransientStoreError``: conexión caída, lock timeout, timeout del job.
  Se reintenta en la próxima ocurrencia (recurrentes) o tras
  ``JOB_RETRY_DELAY_SECONDS`` (one-shot, hasta ``JOB_MAX_ATTEMPTS``).
"""
from __future__ import annotations

from sqlalchemy.exc import DBAPIError, DisconnectionError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError


class JobError(Exception):
    """Error base de la ejecución de un evento."""


class ConstraintViolation(JobError):
    pass


class TransientStoreError(JobError):
    pass


class JobTimeout(TransientStoreError):
    pass


class JobNotFound(LookupError):
    def __init__(self, name: str) -> None:
        super().__init__(f"No existe el evento '{name}'")
        self.name = name


class JobAlreadyExists(ValueError):
    def __init__(self, name: str) -> None:
        super().__init__(f"El evento '{name}' ya existe")
        self.name = name


class JobAlreadyRunning(RuntimeError):
    def __init__(self, name: str) -> None:
        super().__init__(f"El evento '{name}' ya está en ejecución")
        self.name = name


class UnknownJobType(ValueError):
    def __init__(self, job_type: str) -> None:
        super().__init__(f"Tipo de evento desconocido: '{job_type}'")
        self.job_type = job_type


def classify_db_error(exc: BaseException) -> BaseException:
    """Traduce excepciones de SQLAlchemy a la jerarquía de ``JobError``.

    Las que no son de base de datos se devuelven sin cambios.
    """
    if isinstance(exc, JobError):
        return exc
    if isinstance(exc, IntegrityError):
        return ConstraintViolation(str(exc.orig or exc))
    if isinstance(exc, (OperationalError, DisconnectionError, PoolTimeoutError)):
        return TransientStoreError(str(exc))
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return TransientStoreError(str(exc))
    return exc
