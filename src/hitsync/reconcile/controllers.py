"""Controllers for hit reconciliation CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from hitsync.config import Settings
from hitsync.marketplace.memory import InMemoryMarketplace
from hitsync.reconcile.engine import HitReconciler
from hitsync.reconcile.entities import load_registry
from hitsync.reconcile.models import TaskCreate
from hitsync.reconcile.repository import HitRepository


@dataclass(slots=True)
class ProcessHitsCommand:
    """CLI inputs for one reconciliation pass."""

    db_path: Path | None
    task_id: int | None
    snapshot_path: Path | None


@dataclass(slots=True)
class TaskAddCommand:
    """CLI inputs for registering an already-posted hit."""

    db_path: Path | None
    hit_id: str
    title: str
    task_type: str
    assignments: int
    lifetime_days: int
    reward: float
    description: str | None
    duration_hours: int | None
    hit_url: str | None
    form_url: str | None


@dataclass(slots=True)
class TaskListCommand:
    """CLI inputs for task listing."""

    db_path: Path | None
    pending_only: bool
    limit: int


@dataclass(slots=True)
class TaskInspectCommand:
    """CLI inputs for task inspection."""

    db_path: Path | None
    task_id: int


class HitsCliController:
    """Coordinates reconciliation and task inspection CLI operations."""

    def process(self, command: ProcessHitsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        snapshot_path = command.snapshot_path or settings.marketplace.snapshot_path
        if snapshot_path is None:
            raise ValueError(
                "A marketplace snapshot is required. "
                "Set HITSYNC_MARKETPLACE_SNAPSHOT or pass --snapshot.",
            )
        if settings.entities.registry_path is None:
            raise ValueError("HITSYNC_ENTITY_REGISTRY must name the result entity registry.")

        registry = load_registry(settings.entities.registry_path)
        marketplace = InMemoryMarketplace.from_snapshot(
            snapshot_path,
            sandbox=settings.marketplace.sandbox,
        )
        with _repository(settings) as repository:
            reconciler = HitReconciler(
                repository=repository,
                marketplace=marketplace,
                registry=registry,
                sandbox=settings.marketplace.sandbox,
                lease=settings.lease,
            )
            summary = reconciler.process_hits(command.task_id)
        marketplace.write_snapshot(snapshot_path)

        if summary.aborted:
            return ["Hit processing aborted: see the log for the error."]
        if not summary.lease_acquired:
            return ["Hit processing skipped: another run holds the processing lease."]
        return [
            "Hit processing summary: "
            f"tasks={summary.tasks_seen} failed={summary.tasks_failed} "
            f"imported={summary.assignments_imported} approved={summary.approved} "
            f"rejected={summary.rejected} duplicates={summary.duplicates}",
            "Skipped assignments: "
            f"not_submitted={summary.skipped_not_submitted} "
            f"already_imported={summary.skipped_already_imported} "
            f"unresolved={summary.skipped_unresolved}",
            f"Task transitions: completed={summary.tasks_completed} "
            f"expired={summary.tasks_expired}",
        ]

    def add_task(self, command: TaskAddCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with _repository(settings) as repository:
            task = repository.create_task(
                TaskCreate(
                    hit_id=command.hit_id,
                    hit_title=command.title,
                    hit_description=command.description,
                    hit_reward=command.reward,
                    hit_num_assignments=command.assignments,
                    hit_lifetime=command.lifetime_days,
                    hit_duration=command.duration_hours,
                    task_type=command.task_type,
                    sandbox=settings.marketplace.sandbox,
                    hit_url=command.hit_url,
                    form_url=command.form_url,
                ),
            )
        return [
            "Task registered: "
            f"task_id={task.id} hit_id={task.hit_id} type={task.task_type} "
            f"assignments={task.hit_num_assignments} sandbox={'yes' if task.sandbox else 'no'}",
        ]

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(
                complete=False if command.pending_only else None,
                limit=command.limit,
            )

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.id} hit_id={task.hit_id} type={task.task_type} "
                f"state={task.state.value} "
                f"assignments={task.completed_assignments}/{task.hit_num_assignments} "
                f"sandbox={'yes' if task.sandbox else 'no'} "
                f"expires_at={task.expires_at.isoformat()}",
            )
        return lines

    def inspect_task(self, command: TaskInspectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            task = repository.get_task(command.task_id)
            imports = (
                repository.list_imported_assignments(task_id=command.task_id)
                if task is not None
                else []
            )
        if task is None:
            return [f"Task not found: {command.task_id}"]

        lines = [
            f"Task: {task.id}",
            f"Hit: {task.hit_id}",
            f"Title: {task.hit_title}",
            f"Type: {task.task_type}",
            f"State: {task.state.value}",
            f"Assignments: {task.completed_assignments}/{task.hit_num_assignments}",
            f"Reward: {task.hit_reward:.2f}",
            f"Lifetime days: {task.hit_lifetime}",
            f"Created: {task.created_at.isoformat()}",
            f"Hit URL: {task.hit_url or '-'}",
            f"Imported assignments: {len(imports)}",
        ]
        for entry in imports:
            lines.append(
                f"  {entry.imported_at.isoformat()} assignment={entry.assignment_id} "
                f"worker={entry.worker_id or '-'} "
                f"result={entry.result_type or '-'}#{entry.result_id or '-'}",
            )
        return lines


@contextmanager
def _repository(settings: Settings) -> Iterator[HitRepository]:
    repository = HitRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
