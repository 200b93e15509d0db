"""SQLModel ORM tables for hit reconciliation storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class HitTask(SQLModel, table=True):
    __tablename__ = "hit_tasks"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    hit_id: str = Field(unique=True, index=True)
    sandbox: bool = Field(default=True, index=True)
    hit_title: str
    hit_description: str | None = Field(default=None, sa_column=Column(Text))
    hit_reward: float = 0.0
    hit_num_assignments: int
    hit_lifetime: int
    hit_duration: int | None = None
    task_type: str
    form_url: str | None = None
    hit_url: str | None = None
    complete: bool = Field(default=False, index=True)
    expired: bool = False
    completed_assignments: int = 0
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ImportedAssignment(SQLModel, table=True):
    __tablename__ = "imported_assignments"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("assignment_id", name="uq_imported_assignments_assignment_id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    assignment_id: str = Field(index=True)
    task_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("hit_tasks.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    worker_id: str | None = None
    result_type: str | None = None
    result_id: str | None = None
    imported_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ProcessLease(SQLModel, table=True):
    __tablename__ = "process_leases"  # type: ignore[bad-override]

    name: str = Field(primary_key=True)
    holder_id: str
    acquired_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
