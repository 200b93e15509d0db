"""Error types raised by the reconciliation core."""

from __future__ import annotations

from dataclasses import dataclass


class ReconcileError(Exception):
    """Base class for reconciliation errors."""


@dataclass(slots=True)
class LeaseUnavailableError(ReconcileError):
    """Another holder owns the processing lease and it is not stale yet."""

    name: str
    holder_id: str | None = None
    attempts: int = 0

    def __str__(self) -> str:
        return (
            f"Lease {self.name!r} is held by {self.holder_id or 'unknown holder'} "
            f"(attempts={self.attempts})"
        )


@dataclass(slots=True)
class DuplicateImportError(ReconcileError):
    """An imported-assignment ledger entry already exists for the assignment."""

    assignment_id: str

    def __str__(self) -> str:
        return f"Assignment already imported: {self.assignment_id}"


@dataclass(slots=True)
class TaskNotFoundError(ReconcileError):
    """No local task record matches the given identifier."""

    task_ref: str

    def __str__(self) -> str:
        return f"Task not found: {self.task_ref}"
