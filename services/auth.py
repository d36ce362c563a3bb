# NG-HEADER: Nombre de archivo: auth.py
# NG-HEADER: Ubicación: services/auth.py
# NG-HEADER: Descripción: Control de acceso por token para los endpoints de administración.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Autenticación de los endpoints ``/admin``."""

from __future__ import annotations

import logging
import secrets

from fastapi import HTTPException, Request

from pizzeria_core.config import settings

logger = logging.getLogger(__name__)

ADMIN_TOKEN_HEADER = "X-Admin-Token"


def verify_admin_token(request: Request) -> bool:
    """Verifica el header ``X-Admin-Token`` contra ``ADMIN_TOKEN``.

    Sin ``ADMIN_TOKEN`` configurado solo se permite el acceso en ENV=dev.
    """
    expected_token = settings.admin_token
    if not expected_token:
        return settings.env == "dev"
    token_from_header = request.headers.get(ADMIN_TOKEN_HEADER)
    if not token_from_header:
        return False
    # Comparación de tiempo constante
    return secrets.compare_digest(token_from_header, expected_token)


async def require_admin(request: Request) -> None:
    """Dependencia FastAPI: 403 si el token no es válido."""
    if not verify_admin_token(request):
        logger.warning("Acceso admin rechazado desde %s", request.client.host if request.client else "?")
        raise HTTPException(status_code=403, detail="Forbidden")
