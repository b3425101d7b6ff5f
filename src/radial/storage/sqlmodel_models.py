"""SQLModel ORM tables for the goal/task store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class GoalRow(SQLModel, table=True):
    __tablename__ = "goals"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_goals_state", "state"),)

    id: str = Field(primary_key=True)
    parent_id: str | None = None
    description: str = Field(sa_column=Column(Text, nullable=False))
    state: str
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class TaskRow(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_tasks_goal_id", "goal_id"),
        Index("idx_tasks_state", "state"),
    )

    id: str = Field(primary_key=True)
    goal_id: str = Field(
        sa_column=Column(ForeignKey("goals.id", ondelete="CASCADE"), nullable=False),
    )
    description: str = Field(sa_column=Column(Text, nullable=False))
    contract_receives: str | None = Field(default=None, sa_column=Column(Text))
    contract_produces: str | None = Field(default=None, sa_column=Column(Text))
    contract_verify: str | None = Field(default=None, sa_column=Column(Text))
    state: str
    blocked_by_json: str = Field(
        default="[]",
        sa_column=Column(Text, nullable=False, server_default="[]"),
    )
    result_summary: str | None = Field(default=None, sa_column=Column(Text))
    result_artifacts_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    tokens: int = 0
    elapsed_ms: int = 0
    retry_count: int = 0


class TaskCommentRow(SQLModel, table=True):
    __tablename__ = "task_comments"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_comments_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
    )
    body: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
