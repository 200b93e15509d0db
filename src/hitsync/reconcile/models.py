"""Domain models for hit tasks, the import ledger, and reconciliation runs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum


class AssignmentStatus(str, Enum):
    """Marketplace assignment states."""

    SUBMITTED = "Submitted"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class TaskState(str, Enum):
    """Local lifecycle state derived from the task flags."""

    ACTIVE = "active"
    EXPIRED = "expired"
    COMPLETE = "complete"


@dataclass(slots=True)
class TaskCreate:
    """Input payload for registering a posted hit locally."""

    hit_id: str
    hit_title: str
    hit_num_assignments: int
    hit_lifetime: int
    task_type: str
    hit_description: str | None = None
    hit_reward: float = 0.0
    hit_duration: int | None = None
    sandbox: bool = True
    hit_url: str | None = None
    form_url: str | None = None


@dataclass(slots=True)
class HitTaskView:
    """Readable task view for the reconciler and the CLI."""

    id: int
    hit_id: str
    sandbox: bool
    hit_title: str
    hit_description: str | None
    hit_reward: float
    hit_num_assignments: int
    hit_lifetime: int
    hit_duration: int | None
    task_type: str
    form_url: str | None
    hit_url: str | None
    complete: bool
    expired: bool
    completed_assignments: int
    created_at: datetime
    updated_at: datetime

    @property
    def state(self) -> TaskState:
        if self.complete:
            return TaskState.COMPLETE
        if self.expired:
            return TaskState.EXPIRED
        return TaskState.ACTIVE

    @property
    def expires_at(self) -> datetime:
        return self.created_at + timedelta(days=self.hit_lifetime)

    def has_all_assignments(self) -> bool:
        return self.completed_assignments == self.hit_num_assignments


@dataclass(slots=True)
class ImportedAssignmentView:
    """One import ledger entry."""

    id: int
    assignment_id: str
    task_id: int
    worker_id: str | None
    result_type: str | None
    result_id: str | None
    imported_at: datetime


@dataclass(slots=True)
class ReconcileSummary:
    """Aggregate counters of one reconciliation pass for CLI reporting."""

    lease_acquired: bool = False
    aborted: bool = False
    tasks_seen: int = 0
    tasks_failed: int = 0
    assignments_imported: int = 0
    approved: int = 0
    rejected: int = 0
    skipped_not_submitted: int = 0
    skipped_already_imported: int = 0
    skipped_unresolved: int = 0
    duplicates: int = 0
    tasks_completed: int = 0
    tasks_expired: int = 0
