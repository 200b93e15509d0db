"""SQLModel-backed storage facade for hit tasks, the import ledger, and leases."""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import NamedTuple

from sqlalchemy import delete as sa_delete
from sqlalchemy import inspect as sa_inspect
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, col, select

from hitsync.reconcile.errors import DuplicateImportError, TaskNotFoundError
from hitsync.reconcile.models import HitTaskView, ImportedAssignmentView, TaskCreate
from hitsync.storage.alembic_runner import upgrade_head
from hitsync.storage.common import build_sqlite_engine, to_utc, utc_now
from hitsync.storage.sqlmodel_models import HitTask, ImportedAssignment, ProcessLease

logger = logging.getLogger(__name__)


class LeaseClaim(NamedTuple):
    acquired: bool
    holder_id: str | None


class HitRepository:
    """Facade that persists hit tasks and import ledger entries using SQLModel and Alembic."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        upgrade_head(self.db_path)

    # Tasks

    def create_task(self, payload: TaskCreate) -> HitTaskView:
        """Register a hit that was already posted to the marketplace."""

        if payload.hit_num_assignments <= 0:
            raise ValueError("hit_num_assignments must be > 0")
        if payload.hit_lifetime <= 0:
            raise ValueError("hit_lifetime must be > 0")

        now = utc_now()
        with Session(self.engine) as session:
            row = HitTask(
                hit_id=payload.hit_id,
                sandbox=payload.sandbox,
                hit_title=payload.hit_title,
                hit_description=payload.hit_description,
                hit_reward=float(payload.hit_reward),
                hit_num_assignments=payload.hit_num_assignments,
                hit_lifetime=payload.hit_lifetime,
                hit_duration=payload.hit_duration,
                task_type=payload.task_type,
                form_url=payload.form_url,
                hit_url=payload.hit_url,
                complete=False,
                expired=False,
                completed_assignments=0,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise ValueError(f"Task already registered for hit_id={payload.hit_id}") from error
            session.refresh(row)
            return _to_task_view(row)

    def get_task(self, task_id: int) -> HitTaskView | None:
        with Session(self.engine) as session:
            row = session.get(HitTask, task_id)
            return _to_task_view(row) if row is not None else None

    def find_task_by_hit_id(self, hit_id: str) -> HitTaskView | None:
        with Session(self.engine) as session:
            row = session.exec(select(HitTask).where(HitTask.hit_id == hit_id)).one_or_none()
            return _to_task_view(row) if row is not None else None

    def list_tasks(self, *, complete: bool | None = None, limit: int = 50) -> list[HitTaskView]:
        with Session(self.engine) as session:
            statement = select(HitTask)
            if complete is not None:
                statement = statement.where(HitTask.complete == complete)
            rows = session.exec(
                statement.order_by(col(HitTask.created_at).desc(), col(HitTask.id).desc()).limit(
                    limit,
                ),
            ).all()
            return [_to_task_view(row) for row in rows]

    def list_unprocessed_tasks(self, *, sandbox: bool) -> list[HitTaskView]:
        """Tasks that are not complete and were posted in the given marketplace mode."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(HitTask)
                .where(
                    HitTask.complete == False,  # noqa: E712
                    HitTask.sandbox == sandbox,
                )
                .order_by(col(HitTask.id).asc()),
            ).all()
            return [_to_task_view(row) for row in rows]

    def increment_completed_assignments(self, *, task_id: int) -> HitTaskView:
        """Count one more reviewed assignment without passing the target count."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(HitTask)
                .where(
                    col(HitTask.id) == task_id,
                    col(HitTask.completed_assignments) < col(HitTask.hit_num_assignments),
                )
                .values(
                    completed_assignments=col(HitTask.completed_assignments) + 1,
                    updated_at=utc_now(),
                ),
            )
            session.commit()
            row = session.get(HitTask, task_id)
            if row is None:
                raise TaskNotFoundError(str(task_id))
            if result.rowcount != 1:
                logger.warning(
                    "Completed assignment counter already at target (task_id=%s hit_id=%s "
                    "completed=%s target=%s).",
                    row.id,
                    row.hit_id,
                    row.completed_assignments,
                    row.hit_num_assignments,
                )
            return _to_task_view(row)

    def mark_complete(self, *, task_id: int) -> HitTaskView:
        return self._set_task_flags(task_id=task_id, complete=True)

    def mark_expired(self, *, task_id: int) -> HitTaskView:
        return self._set_task_flags(task_id=task_id, expired=True)

    def _set_task_flags(self, *, task_id: int, **flags: bool) -> HitTaskView:
        with Session(self.engine) as session:
            row = session.get(HitTask, task_id)
            if row is None:
                raise TaskNotFoundError(str(task_id))
            for name, value in flags.items():
                setattr(row, name, value)
            row.updated_at = utc_now()
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    # Import ledger

    def is_assignment_imported(self, assignment_id: str) -> bool:
        with Session(self.engine) as session:
            return _ledger_has(session, assignment_id)

    def record_imported_assignment(
        self,
        *,
        assignment_id: str,
        task_id: int,
        worker_id: str | None,
        result_type: str | None,
        result_id: str | None,
    ) -> ImportedAssignmentView:
        """Append one ledger entry; the unique constraint rejects a second import."""

        with Session(self.engine) as session:
            row = ImportedAssignment(
                assignment_id=assignment_id,
                task_id=task_id,
                worker_id=worker_id,
                result_type=result_type,
                result_id=result_id,
                imported_at=utc_now(),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                if _ledger_has(session, assignment_id):
                    raise DuplicateImportError(assignment_id) from error
                raise
            session.refresh(row)
            return _to_import_view(row)

    def list_imported_assignments(self, *, task_id: int) -> list[ImportedAssignmentView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ImportedAssignment)
                .where(ImportedAssignment.task_id == task_id)
                .order_by(col(ImportedAssignment.id).asc()),
            ).all()
            return [_to_import_view(row) for row in rows]

    # Result entities

    def save_result(self, record: SQLModel) -> str:
        """Persist an application result entity and return its primary-key identity."""

        with Session(self.engine, expire_on_commit=False) as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            identity = sa_inspect(record).identity
        if not identity:
            raise RuntimeError(f"Saved {type(record).__name__} has no primary key identity")
        return ":".join(str(part) for part in identity)

    # Leases

    def claim_lease(self, *, name: str, holder_id: str, max_age: timedelta) -> LeaseClaim:
        """Try once to take the named lease, breaking it when older than ``max_age``."""

        if max_age.total_seconds() <= 0:
            raise ValueError("max_age must be > 0")

        while True:
            with Session(self.engine) as session:
                session.add(ProcessLease(name=name, holder_id=holder_id, acquired_at=utc_now()))
                try:
                    session.commit()
                    return LeaseClaim(acquired=True, holder_id=holder_id)
                except IntegrityError:
                    session.rollback()

                current = session.get(ProcessLease, name)
                if current is None:
                    continue
                acquired_at = to_utc(current.acquired_at)
                if utc_now() - acquired_at <= max_age:
                    return LeaseClaim(acquired=False, holder_id=current.holder_id)

                broken = session.exec(
                    sa_delete(ProcessLease).where(
                        col(ProcessLease.name) == name,
                        col(ProcessLease.holder_id) == current.holder_id,
                    ),
                )
                session.commit()
                if broken.rowcount:
                    logger.warning(
                        "Broke stale processing lease (name=%s stale_holder=%s acquired_at=%s).",
                        name,
                        current.holder_id,
                        acquired_at.isoformat(),
                    )

    def release_lease(self, *, name: str, holder_id: str) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(ProcessLease).where(
                    col(ProcessLease.name) == name,
                    col(ProcessLease.holder_id) == holder_id,
                ),
            )
            session.commit()
            return bool(result.rowcount)


def _ledger_has(session: Session, assignment_id: str) -> bool:
    row = session.exec(
        select(ImportedAssignment.id).where(ImportedAssignment.assignment_id == assignment_id),
    ).first()
    return row is not None


def _to_task_view(row: HitTask) -> HitTaskView:
    if row.id is None:
        raise RuntimeError("Task row is missing primary key")
    return HitTaskView(
        id=row.id,
        hit_id=row.hit_id,
        sandbox=row.sandbox,
        hit_title=row.hit_title,
        hit_description=row.hit_description,
        hit_reward=row.hit_reward,
        hit_num_assignments=row.hit_num_assignments,
        hit_lifetime=row.hit_lifetime,
        hit_duration=row.hit_duration,
        task_type=row.task_type,
        form_url=row.form_url,
        hit_url=row.hit_url,
        complete=row.complete,
        expired=row.expired,
        completed_assignments=row.completed_assignments,
        created_at=to_utc(row.created_at),
        updated_at=to_utc(row.updated_at),
    )


def _to_import_view(row: ImportedAssignment) -> ImportedAssignmentView:
    if row.id is None:
        raise RuntimeError("Imported assignment row is missing primary key")
    return ImportedAssignmentView(
        id=row.id,
        assignment_id=row.assignment_id,
        task_id=row.task_id,
        worker_id=row.worker_id,
        result_type=row.result_type,
        result_id=row.result_id,
        imported_at=to_utc(row.imported_at),
    )

