"""Reconciliation loop: import submitted assignments and advance task lifecycles."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta

from hitsync.config import LeaseSettings
from hitsync.marketplace.base import Assignment, MarketplaceClient, MarketplaceUnavailableError
from hitsync.reconcile.answers import AnswerParseError, parse_answers, resolve_entity
from hitsync.reconcile.decisions import ApprovalPolicy, Decision
from hitsync.reconcile.entities import EntityRegistry, build_result
from hitsync.reconcile.errors import DuplicateImportError, LeaseUnavailableError, TaskNotFoundError
from hitsync.reconcile.lease import with_exclusive_lease
from hitsync.reconcile.lifecycle import TaskLifecycle
from hitsync.reconcile.models import AssignmentStatus, HitTaskView, ReconcileSummary
from hitsync.reconcile.repository import HitRepository
from hitsync.storage.common import utc_now

logger = logging.getLogger(__name__)

TaskRef = HitTaskView | int


class HitReconciler:
    """Pulls completed work for local tasks from the marketplace exactly once.

    Each task's submitted assignments are parsed into a result entity,
    reviewed, and recorded in the import ledger. The whole pass runs under an
    exclusive lease so concurrent invocations across processes never overlap.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: HitRepository,
        marketplace: MarketplaceClient,
        registry: EntityRegistry,
        sandbox: bool,
        lease: LeaseSettings | None = None,
        now: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if marketplace.sandbox != sandbox:
            raise ValueError(
                f"Marketplace client sandbox={marketplace.sandbox} does not match "
                f"configured sandbox={sandbox}",
            )
        self.repository = repository
        self.marketplace = marketplace
        self.registry = registry
        self.sandbox = sandbox
        self.lease = lease or LeaseSettings()
        self.approval = ApprovalPolicy(repository=repository)
        self.lifecycle = TaskLifecycle(repository=repository, now=now)
        self._sleep = sleep

    def process_hits(self, task: TaskRef | None = None) -> ReconcileSummary:
        """Run one pass over ``task`` or over every unprocessed task in the current mode."""

        summary = ReconcileSummary()
        try:
            with_exclusive_lease(
                self.repository,
                lambda: self._process_tasks(task, summary),
                name=self.lease.name,
                max_age=timedelta(seconds=self.lease.max_age_seconds),
                retries=self.lease.retries,
                retry_backoff_seconds=self.lease.retry_backoff_seconds,
                sleep=self._sleep,
            )
        except LeaseUnavailableError as error:
            logger.info(
                "Hit processing is already running or a lease from an improperly shut down "
                "process has not expired yet; exiting (%s).",
                error,
            )
        except Exception:  # noqa: BLE001
            summary.aborted = True
            logger.exception("Hit processing pass aborted by an unexpected error.")
        return summary

    def _process_tasks(self, task_ref: TaskRef | None, summary: ReconcileSummary) -> None:
        summary.lease_acquired = True
        try:
            tasks = self._task_items(task_ref)
        except TaskNotFoundError as error:
            logger.error("Cannot process hits: %s", error)
            return

        for task in tasks:
            summary.tasks_seen += 1
            try:
                self._process_task(task, summary)
            except MarketplaceUnavailableError as error:
                summary.tasks_failed += 1
                logger.warning(
                    "Marketplace unavailable for task (task_id=%s hit_id=%s): %s; "
                    "it stays eligible for the next run.",
                    task.id,
                    task.hit_id,
                    error,
                )
            except Exception:  # noqa: BLE001
                summary.tasks_failed += 1
                logger.exception(
                    "Processing failed for task (task_id=%s hit_id=%s); continuing.",
                    task.id,
                    task.hit_id,
                )

    def _task_items(self, task_ref: TaskRef | None) -> list[HitTaskView]:
        if task_ref is None:
            return self.repository.list_unprocessed_tasks(sandbox=self.sandbox)
        task_id = task_ref.id if isinstance(task_ref, HitTaskView) else task_ref
        task = self.repository.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(str(task_id))
        return [task]

    def _process_task(self, task: HitTaskView, summary: ReconcileSummary) -> None:
        if task.complete:
            logger.info("Skipping complete task (task_id=%s hit_id=%s).", task.id, task.hit_id)
            return

        posting = self.marketplace.get_posting(task.hit_id)
        callback_targets: dict[type, None] = {}
        for assignment in posting.assignments:
            if assignment.status != AssignmentStatus.SUBMITTED.value:
                summary.skipped_not_submitted += 1
                continue
            if self.repository.is_assignment_imported(assignment.id):
                summary.skipped_already_imported += 1
                continue
            task = self._import_assignment(task, assignment, callback_targets, summary)

        completed, task = self.lifecycle.check_complete(task, posting, callback_targets)
        if completed:
            summary.tasks_completed += 1
            return
        expired, task = self.lifecycle.check_expired(task, callback_targets)
        if expired:
            summary.tasks_expired += 1

    def _import_assignment(
        self,
        task: HitTaskView,
        assignment: Assignment,
        callback_targets: dict[type, None],
        summary: ReconcileSummary,
    ) -> HitTaskView:
        try:
            answers = parse_answers(assignment.answers)
        except AnswerParseError as error:
            logger.info("Skipping assignment %s with unusable answers: %s", assignment.id, error)
            summary.skipped_unresolved += 1
            return task

        entity_type, values = resolve_entity(answers, self.registry)
        if entity_type is None or values is None:
            summary.skipped_unresolved += 1
            return task
        callback_targets[entity_type] = None

        result = build_result(entity_type, values)
        result_id = self.repository.save_result(result.record) if result.is_valid else None

        outcome = self.approval.review(task=task, assignment=assignment, result=result)
        if outcome.decision is Decision.APPROVED:
            summary.approved += 1
        else:
            summary.rejected += 1

        try:
            self.repository.record_imported_assignment(
                assignment_id=assignment.id,
                task_id=task.id,
                worker_id=assignment.worker_id,
                result_type=entity_type.__name__,
                result_id=result_id,
            )
        except DuplicateImportError as error:
            summary.duplicates += 1
            logger.info("%s; treating as already handled.", error)
        else:
            summary.assignments_imported += 1
        return outcome.task
