# NG-HEADER: Nombre de archivo: models.py
# NG-HEADER: Ubicación: db/models.py
# NG-HEADER: Descripción: Modelos ORM de ventas, inventario y eventos programados.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Modelos principales de la base de datos."""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


# --- Entidades externas (solo lectura para los eventos) ---

class Ingrediente(Base):
    __tablename__ = "ingrediente"

    id: Mapped[int] = mapped_column(primary_key=True)
    nombre: Mapped[str] = mapped_column(String(100))
    stock: Mapped[int] = mapped_column(Integer, default=0)

    alertas: Mapped[list["AlertaStock"]] = relationship(back_populates="ingrediente")


class Pedido(Base):
    __tablename__ = "pedido"

    id: Mapped[int] = mapped_column(primary_key=True)
    fecha_pedido: Mapped[datetime] = mapped_column(DateTime, index=True)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))


# --- Tablas escritas por los eventos ---

class ResumenVentas(Base):
    """Resumen de ventas por fecha (diario o cierre semanal)."""

    __tablename__ = "resumen_ventas"
    __table_args__ = (UniqueConstraint("fecha", name="ux_resumen_ventas_fecha"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    fecha: Mapped[date] = mapped_column(Date)
    total_pedidos: Mapped[int] = mapped_column(Integer, default=0)
    total_ingresos: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    # Se fija en el primer insert; los upserts no lo tocan
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class AlertaStock(Base):
    __tablename__ = "alerta_stock"
    __table_args__ = (
        # Una alerta por ingrediente y día: reintentos no duplican filas
        UniqueConstraint("ingrediente_id", "dia_alerta", name="ux_alerta_stock_ingrediente_dia"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    ingrediente_id: Mapped[int] = mapped_column(ForeignKey("ingrediente.id"), index=True)
    stock_actual: Mapped[int] = mapped_column(Integer)
    fecha_alerta: Mapped[datetime] = mapped_column(DateTime)
    dia_alerta: Mapped[date] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    ingrediente: Mapped["Ingrediente"] = relationship(back_populates="alertas")


# --- Scheduler persistido ---

class ScheduledJob(Base):
    __tablename__ = "scheduled_jobs"
    __table_args__ = (
        UniqueConstraint("name", name="ux_scheduled_jobs_name"),
        CheckConstraint("kind IN ('one_shot','recurring')", name="kind"),
        CheckConstraint("on_completion IN ('delete','preserve')", name="on_completion"),
        CheckConstraint(
            "status IN ('scheduled','running','disabled','failed')",
            name="status",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(64))
    job_type: Mapped[str] = mapped_column(String(64))
    kind: Mapped[str] = mapped_column(String(16))
    run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    interval_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    starts_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    on_completion: Mapped[str] = mapped_column(String(16), default="delete")
    status: Mapped[str] = mapped_column(String(16), default="scheduled")
    next_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class JobRun(Base):
    """Bitácora append-only de ejecuciones (reemplaza la fila centinela -1)."""

    __tablename__ = "job_runs"
    __table_args__ = (
        CheckConstraint("outcome IN ('success','failed','timeout')", name="outcome"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    job_name: Mapped[str] = mapped_column(String(64), index=True)
    job_type: Mapped[str] = mapped_column(String(64))
    due_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    outcome: Mapped[str] = mapped_column(String(16))
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    result: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
