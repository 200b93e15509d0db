"""Initial hit task and imported assignment schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "hit_tasks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("hit_id", sa.String(), nullable=False),
        sa.Column("sandbox", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("hit_title", sa.String(), nullable=False),
        sa.Column("hit_description", sa.Text(), nullable=True),
        sa.Column("hit_reward", sa.Float(), nullable=False, server_default="0"),
        sa.Column("hit_num_assignments", sa.Integer(), nullable=False),
        sa.Column("hit_lifetime", sa.Integer(), nullable=False),
        sa.Column("hit_duration", sa.Integer(), nullable=True),
        sa.Column("task_type", sa.String(), nullable=False),
        sa.Column("form_url", sa.String(), nullable=True),
        sa.Column("hit_url", sa.String(), nullable=True),
        sa.Column("complete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expired", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_assignments", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "completed_assignments <= hit_num_assignments",
            name="ck_hit_tasks_completed_within_target",
        ),
    )
    op.create_index("ix_hit_tasks_hit_id", "hit_tasks", ["hit_id"], unique=True)
    op.create_index("ix_hit_tasks_sandbox", "hit_tasks", ["sandbox"])
    op.create_index("ix_hit_tasks_complete", "hit_tasks", ["complete"])

    op.create_table(
        "imported_assignments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("assignment_id", sa.String(), nullable=False),
        sa.Column("task_id", sa.Integer(), nullable=False),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("result_type", sa.String(), nullable=True),
        sa.Column("result_id", sa.String(), nullable=True),
        sa.Column("imported_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["hit_tasks.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("assignment_id", name="uq_imported_assignments_assignment_id"),
    )
    op.create_index(
        "ix_imported_assignments_assignment_id",
        "imported_assignments",
        ["assignment_id"],
    )
    op.create_index("ix_imported_assignments_task_id", "imported_assignments", ["task_id"])


def downgrade() -> None:
    op.drop_index("ix_imported_assignments_task_id", table_name="imported_assignments")
    op.drop_index("ix_imported_assignments_assignment_id", table_name="imported_assignments")
    op.drop_table("imported_assignments")
    op.drop_index("ix_hit_tasks_complete", table_name="hit_tasks")
    op.drop_index("ix_hit_tasks_sandbox", table_name="hit_tasks")
    op.drop_index("ix_hit_tasks_hit_id", table_name="hit_tasks")
    op.drop_table("hit_tasks")
