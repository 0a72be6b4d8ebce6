"""add job_decisions

Revision ID: 9a4e2c7f1d63
Revises: 5c1e9a7d2b40
Create Date: 2026-10-16 15:40:02.117834

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "9a4e2c7f1d63"
down_revision: Union[str, None] = "5c1e9a7d2b40"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "job_decisions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("job_id", sa.String(length=36), nullable=False),
        sa.Column("seeker_id", sa.String(length=36), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=True),
        sa.CheckConstraint("kind IN ('applied', 'skipped')", name="ck_job_decisions_kind"),
        sa.ForeignKeyConstraint(["job_id"], ["jobs.id"]),
        sa.ForeignKeyConstraint(["seeker_id"], ["profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_id", "seeker_id", name="uq_job_decisions_job_seeker"),
    )
    op.create_index(op.f("ix_job_decisions_job_id"), "job_decisions", ["job_id"], unique=False)
    op.create_index(op.f("ix_job_decisions_seeker_id"), "job_decisions", ["seeker_id"], unique=False)

    # Backfill from existing decisions; applications win if a pair is in both
    op.execute(
        """
        INSERT INTO job_decisions (id, job_id, seeker_id, kind, created_at)
        SELECT id, job_id, seeker_id, 'applied', created_at FROM applications
        """
    )
    op.execute(
        """
        INSERT INTO job_decisions (id, job_id, seeker_id, kind, created_at)
        SELECT s.id, s.job_id, s.seeker_id, 'skipped', s.created_at
        FROM skipped_jobs s
        WHERE NOT EXISTS (
            SELECT 1 FROM applications a
            WHERE a.job_id = s.job_id AND a.seeker_id = s.seeker_id
        )
        """
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_job_decisions_seeker_id"), table_name="job_decisions")
    op.drop_index(op.f("ix_job_decisions_job_id"), table_name="job_decisions")
    op.drop_table("job_decisions")
