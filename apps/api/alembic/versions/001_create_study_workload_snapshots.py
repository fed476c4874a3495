"""create study_workload_snapshots

Revision ID: 001_workload_snapshots
Revises:
Create Date: 2026-10-19

Per-study cache of computed workload responses. One row per study,
fully overwritten on every refresh.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers, used by Alembic.
revision = "001_workload_snapshots"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    # Deployments that ran the earlier SQL bootstrap already have the table.
    if "study_workload_snapshots" in inspect(bind).get_table_names():
        return

    op.create_table(
        "study_workload_snapshots",
        sa.Column("id", sa.String(36).with_variant(UUID(as_uuid=False), "postgresql"), primary_key=True),
        sa.Column("study_id", sa.String(36).with_variant(UUID(as_uuid=False), "postgresql"), nullable=False),
        sa.Column("payload", sa.JSON().with_variant(JSONB(), "postgresql"), nullable=False),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("study_id", name="uq_workload_snapshots_study_id"),
    )
    op.create_index("idx_workload_snapshots_expires_at", "study_workload_snapshots", ["expires_at"])


def downgrade() -> None:
    op.drop_index("idx_workload_snapshots_expires_at", table_name="study_workload_snapshots")
    op.drop_table("study_workload_snapshots")
