"""tablas de resumen de ventas, alertas de stock y scheduler de eventos

``ingrediente`` y ``pedido`` pertenecen al sistema de pedidos; solo se crean
si no existen (bases nuevas de desarrollo).
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261018_eventos_programados"
down_revision = None
branch_labels = None
depends_on = None


def _has_table(name: str) -> bool:
    return sa.inspect(op.get_bind()).has_table(name)


def upgrade() -> None:
    if not _has_table("ingrediente"):
        op.create_table(
            "ingrediente",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("nombre", sa.String(100), nullable=False),
            sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
        )
    if not _has_table("pedido"):
        op.create_table(
            "pedido",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("fecha_pedido", sa.DateTime(), nullable=False),
            sa.Column("total", sa.Numeric(10, 2), nullable=False, server_default="0"),
        )
        op.create_index("ix_pedido_fecha_pedido", "pedido", ["fecha_pedido"])

    op.create_table(
        "resumen_ventas",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("fecha", sa.Date(), nullable=False),
        sa.Column("total_pedidos", sa.Integer(), nullable=False),
        sa.Column("total_ingresos", sa.Numeric(10, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("fecha", name="ux_resumen_ventas_fecha"),
    )

    op.create_table(
        "alerta_stock",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "ingrediente_id",
            sa.Integer(),
            sa.ForeignKey("ingrediente.id", name="fk_alerta_stock_ingrediente_id_ingrediente"),
            nullable=False,
        ),
        sa.Column("stock_actual", sa.Integer(), nullable=False),
        sa.Column("fecha_alerta", sa.DateTime(), nullable=False),
        sa.Column("dia_alerta", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("ingrediente_id", "dia_alerta", name="ux_alerta_stock_ingrediente_dia"),
    )
    op.create_index("ix_alerta_stock_ingrediente_id", "alerta_stock", ["ingrediente_id"])

    op.create_table(
        "scheduled_jobs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("job_type", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("run_at", sa.DateTime(), nullable=True),
        sa.Column("interval_seconds", sa.Integer(), nullable=True),
        sa.Column("starts_at", sa.DateTime(), nullable=True),
        sa.Column("ends_at", sa.DateTime(), nullable=True),
        sa.Column("on_completion", sa.String(16), nullable=False, server_default="delete"),
        sa.Column("status", sa.String(16), nullable=False, server_default="scheduled"),
        sa.Column("next_run_at", sa.DateTime(), nullable=True),
        sa.Column("last_run_at", sa.DateTime(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("name", name="ux_scheduled_jobs_name"),
        sa.CheckConstraint("kind IN ('one_shot','recurring')", name="ck_scheduled_jobs_kind"),
        sa.CheckConstraint("on_completion IN ('delete','preserve')", name="ck_scheduled_jobs_on_completion"),
        sa.CheckConstraint(
            "status IN ('scheduled','running','disabled','failed')", name="ck_scheduled_jobs_status"
        ),
    )
    op.create_index("ix_scheduled_jobs_next_run_at", "scheduled_jobs", ["next_run_at"])

    op.create_table(
        "job_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("job_name", sa.String(64), nullable=False),
        sa.Column("job_type", sa.String(64), nullable=False),
        sa.Column("due_at", sa.DateTime(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.Column("outcome", sa.String(16), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.CheckConstraint("outcome IN ('success','failed','timeout')", name="ck_job_runs_outcome"),
    )
    op.create_index("ix_job_runs_job_name", "job_runs", ["job_name"])


def downgrade() -> None:
    op.drop_index("ix_job_runs_job_name", table_name="job_runs")
    op.drop_table("job_runs")
    op.drop_index("ix_scheduled_jobs_next_run_at", table_name="scheduled_jobs")
    op.drop_table("scheduled_jobs")
    op.drop_index("ix_alerta_stock_ingrediente_id", table_name="alerta_stock")
    op.drop_table("alerta_stock")
    op.drop_table("resumen_ventas")
    # ingrediente/pedido quedan: pertenecen al sistema de pedidos
