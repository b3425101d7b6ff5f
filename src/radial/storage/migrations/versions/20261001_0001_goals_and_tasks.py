"""Initial goal/task schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261001_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "goals",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("parent_id", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("state", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_goals_state", "goals", ["state"], unique=False)

    op.create_table(
        "tasks",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("goal_id", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("contract_receives", sa.Text(), nullable=True),
        sa.Column("contract_produces", sa.Text(), nullable=True),
        sa.Column("contract_verify", sa.Text(), nullable=True),
        sa.Column("state", sa.String(), nullable=False),
        sa.Column("blocked_by_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("result_summary", sa.Text(), nullable=True),
        sa.Column("result_artifacts_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("elapsed_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["goal_id"], ["goals.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_tasks_goal_id", "tasks", ["goal_id"], unique=False)
    op.create_index("idx_tasks_state", "tasks", ["state"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_tasks_state", table_name="tasks")
    op.drop_index("idx_tasks_goal_id", table_name="tasks")
    op.drop_table("tasks")
    op.drop_index("idx_goals_state", table_name="goals")
    op.drop_table("goals")
