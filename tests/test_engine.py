from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

import allure
import pytest
from sqlalchemy import text

from hitsync.config import LeaseSettings
from hitsync.marketplace.base import MarketplaceUnavailableError
from hitsync.marketplace.memory import InMemoryMarketplace, MemoryAssignment, MemoryPosting
from hitsync.reconcile.decisions import INVALID_DATA_MESSAGE
from hitsync.reconcile.engine import HitReconciler
from hitsync.reconcile.entities import EntityRegistry
from hitsync.reconcile.lease import ExclusiveLease
from hitsync.reconcile.models import AssignmentStatus, HitTaskView
from hitsync.reconcile.repository import HitRepository
from hitsync.storage.common import utc_now

pytestmark = [
    allure.epic("Hit Reconciliation"),
    allure.feature("Reconciliation Loop"),
]

WIDGET_ANSWERS = [("submit", "Create"), ("widget[name]", "x")]


def _reconciler(
    repository: HitRepository,
    marketplace: InMemoryMarketplace,
    registry: EntityRegistry,
    *,
    now: Callable[[], datetime] = utc_now,
) -> HitReconciler:
    return HitReconciler(
        repository=repository,
        marketplace=marketplace,
        registry=registry,
        sandbox=marketplace.sandbox,
        lease=LeaseSettings(retries=0, retry_backoff_seconds=0),
        now=now,
        sleep=lambda _seconds: None,
    )


def _count(repository: HitRepository, table: str) -> int:
    with repository.engine.connect() as connection:
        return int(connection.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one())


def test_submitted_assignment_is_imported_approved_and_counted(
    repository: HitRepository,
    marketplace: InMemoryMarketplace,
    registry: EntityRegistry,
    make_task: Callable[..., HitTaskView],
    make_posting: Callable[..., MemoryPosting],
) -> None:
    task = make_task(assignments=3)
    assignment = MemoryAssignment(id="A1", worker_id="W1", answers=WIDGET_ANSWERS)
    make_posting(task.hit_id, assignment)

    summary = _reconciler(repository, marketplace, registry).process_hits()

    assert summary.lease_acquired
    assert summary.assignments_imported == 1
    assert summary.approved == 1
    assert assignment.status == AssignmentStatus.APPROVED.value
    assert repository.get_task(task.id).completed_assignments == 1

    [entry] = repository.list_imported_assignments(task_id=task.id)
    assert (entry.assignment_id, entry.worker_id, entry.result_type, entry.result_id) == (
        "A1",
        "W1",
        "Widget",
        "1",
    )
    with repository.engine.connect() as connection:
        names = connection.execute(text("SELECT name FROM sample_widgets")).scalars().all()
    assert names == ["x"]


def test_invalid_result_is_rejected_but_still_recorded(
    repository: HitRepository,
    marketplace: InMemoryMarketplace,
    registry: EntityRegistry,
    make_task: Callable[..., HitTaskView],
    make_posting: Callable[..., MemoryPosting],
) -> None:
    task = make_task(assignments=3)
    assignment = MemoryAssignment(id="A1", worker_id="W1", answers=[("gizmo[label]", " ")])
    make_posting(task.hit_id, assignment)

    summary = _reconciler(repository, marketplace, registry).process_hits()

    assert summary.rejected == 1
    assert assignment.status == AssignmentStatus.REJECTED.value
    assert assignment.feedback == INVALID_DATA_MESSAGE
    assert repository.get_task(task.id).completed_assignments == 0
    [entry] = repository.list_imported_assignments(task_id=task.id)
    assert entry.result_type == "Gizmo"
    assert entry.result_id is None
    assert _count(repository, "sample_gizmos") == 0


def test_non_submitted_assignment_is_skipped_entirely(
    repository: HitRepository,
    marketplace: InMemoryMarketplace,
    registry: EntityRegistry,
    make_task: Callable[..., HitTaskView],
    make_posting: Callable[..., MemoryPosting],
) -> None:
    task = make_task()
    make_posting(
        task.hit_id,
        MemoryAssignment(
            id="A1",
            status=AssignmentStatus.REJECTED.value,
            answers=WIDGET_ANSWERS,
        ),
    )

    summary = _reconciler(repository, marketplace, registry).process_hits()

    assert summary.skipped_not_submitted == 1
    assert _count(repository, "imported_assignments") == 0
    assert _count(repository, "sample_widgets") == 0


def test_last_counted_assignment_completes_task_and_notifies_once(
    repository: HitRepository,
    marketplace: InMemoryMarketplace,
    registry: EntityRegistry,
    make_task: Callable[..., HitTaskView],
    make_posting: Callable[..., MemoryPosting],
    notifications: list[tuple[str, str, str]],
) -> None:
    task = make_task(assignments=3)
    repository.increment_completed_assignments(task_id=task.id)
    repository.increment_completed_assignments(task_id=task.id)
    posting = make_posting(
        task.hit_id,
        MemoryAssignment(id="A3", worker_id="W3", answers=WIDGET_ANSWERS),
    )

    summary = _reconciler(repository, marketplace, registry).process_hits()

    stored = repository.get_task(task.id)
    assert stored.completed_assignments == 3
    assert stored.complete
    assert posting.disposed
    assert summary.tasks_completed == 1
    assert notifications == [("Widget", "complete", task.hit_id)]


def test_callbacks_fire_once_per_resolved_type(
    repository: HitRepository,
    marketplace: InMemoryMarketplace,
    registry: EntityRegistry,
    make_task: Callable[..., HitTaskView],
    make_posting: Callable[..., MemoryPosting],
    notifications: list[tuple[str, str, str]],
) -> None:
    task = make_task(assignments=3)
    make_posting(
        task.hit_id,
        MemoryAssignment(id="A1", answers=WIDGET_ANSWERS),
        MemoryAssignment(id="A2", answers=[("widget[name]", "y")]),
        MemoryAssignment(id="A3", answers=[("gadget[name]", "g"), ("gadget[rating]", "1")]),
    )

    summary = _reconciler(repository, marketplace, registry).process_hits()

    assert summary.approved == 2
    assert summary.rejected == 1
    assert repository.get_task(task.id).complete
    assert notifications == [("Widget", "complete", task.hit_id)]


def test_second_run_does_not_import_twice(
    repository: HitRepository,
    marketplace: InMemoryMarketplace,
    registry: EntityRegistry,
    make_task: Callable[..., HitTaskView],
    make_posting: Callable[..., MemoryPosting],
) -> None:
    task = make_task(assignments=3)
    assignment = MemoryAssignment(id="A1", answers=WIDGET_ANSWERS)
    make_posting(task.hit_id, assignment)
    reconciler = _reconciler(repository, marketplace, registry)

    reconciler.process_hits()
    # Marketplace still reports the assignment as submitted.
    assignment.status = AssignmentStatus.SUBMITTED.value
    second = reconciler.process_hits()

    assert second.skipped_already_imported == 1
    assert second.assignments_imported == 0
    assert _count(repository, "imported_assignments") == 1
    assert _count(repository, "sample_widgets") == 1
    assert repository.get_task(task.id).completed_assignments == 1


def test_ledger_race_is_treated_as_already_handled(
    repository: HitRepository,
    marketplace: InMemoryMarketplace,
    registry: EntityRegistry,
    make_task: Callable[..., HitTaskView],
    make_posting: Callable[..., MemoryPosting],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    task = make_task(assignments=3)
    make_posting(task.hit_id, MemoryAssignment(id="A1", answers=WIDGET_ANSWERS))
    repository.record_imported_assignment(
        assignment_id="A1",
        task_id=task.id,
        worker_id=None,
        result_type="Widget",
        result_id=None,
    )
    monkeypatch.setattr(repository, "is_assignment_imported", lambda _assignment_id: False)

    summary = _reconciler(repository, marketplace, registry).process_hits()

    assert summary.duplicates == 1
    assert summary.assignments_imported == 0
    assert summary.tasks_failed == 0
    assert _count(repository, "imported_assignments") == 1


def test_contended_lease_returns_without_processing(
    repository: HitRepository,
    marketplace: InMemoryMarketplace,
    registry: EntityRegistry,
    make_task: Callable[..., HitTaskView],
    make_posting: Callable[..., MemoryPosting],
    caplog: pytest.LogCaptureFixture,
) -> None:
    task = make_task()
    assignment = MemoryAssignment(id="A1", answers=WIDGET_ANSWERS)
    make_posting(task.hit_id, assignment)
    caplog.set_level(logging.INFO, logger="hitsync.reconcile.engine")

    with ExclusiveLease(
        repository,
        name=LeaseSettings().name,
        max_age=timedelta(hours=1),
        retries=0,
        retry_backoff_seconds=0,
        holder_id="other-process",
    ):
        summary = _reconciler(repository, marketplace, registry).process_hits()

    assert not summary.lease_acquired
    assert summary.tasks_seen == 0
    assert marketplace.fetch_count == 0
    assert assignment.status == AssignmentStatus.SUBMITTED.value
    assert "already running" in caplog.text


def test_failing_task_is_logged_and_does_not_stop_the_pass(
    repository: HitRepository,
    marketplace: InMemoryMarketplace,
    registry: EntityRegistry,
    make_task: Callable[..., HitTaskView],
    make_posting: Callable[..., MemoryPosting],
    caplog: pytest.LogCaptureFixture,
) -> None:
    make_task("MISSING")
    healthy = make_task("HIT2")
    make_posting(healthy.hit_id, MemoryAssignment(id="A1", answers=WIDGET_ANSWERS))
    caplog.set_level(logging.INFO, logger="hitsync.reconcile.engine")

    summary = _reconciler(repository, marketplace, registry).process_hits()

    assert summary.tasks_seen == 2
    assert summary.tasks_failed == 1
    assert summary.assignments_imported == 1
    assert "Processing failed for task" in caplog.text
    assert _count(repository, "process_leases") == 0


def test_unresolvable_answers_are_skipped_quietly(
    repository: HitRepository,
    marketplace: InMemoryMarketplace,
    registry: EntityRegistry,
    make_task: Callable[..., HitTaskView],
    make_posting: Callable[..., MemoryPosting],
) -> None:
    task = make_task()
    first = MemoryAssignment(id="A1", answers=[("comment", "flat only")])
    second = MemoryAssignment(id="A2", answers=[("widget", "x"), ("widget[name]", "y")])
    make_posting(task.hit_id, first, second)

    summary = _reconciler(repository, marketplace, registry).process_hits()

    assert summary.skipped_unresolved == 2
    assert summary.tasks_failed == 0
    assert first.status == AssignmentStatus.SUBMITTED.value
    assert _count(repository, "imported_assignments") == 0


def test_only_tasks_for_the_current_marketplace_mode_are_selected(
    repository: HitRepository,
    marketplace: InMemoryMarketplace,
    registry: EntityRegistry,
    make_task: Callable[..., HitTaskView],
    make_posting: Callable[..., MemoryPosting],
) -> None:
    production = make_task("PROD", sandbox=False)
    make_posting(production.hit_id, MemoryAssignment(id="A1", answers=WIDGET_ANSWERS))
    reconciler = _reconciler(repository, marketplace, registry)

    assert reconciler.process_hits().tasks_seen == 0

    explicit = reconciler.process_hits(production)
    assert explicit.tasks_seen == 1
    assert explicit.assignments_imported == 1


def test_unknown_task_reference_is_logged_not_raised(
    repository: HitRepository,
    marketplace: InMemoryMarketplace,
    registry: EntityRegistry,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger="hitsync.reconcile.engine")

    summary = _reconciler(repository, marketplace, registry).process_hits(404)

    assert summary.lease_acquired
    assert summary.tasks_seen == 0
    assert "Task not found: 404" in caplog.text


def test_task_past_lifetime_is_expired_and_stays_eligible(
    repository: HitRepository,
    marketplace: InMemoryMarketplace,
    registry: EntityRegistry,
    make_task: Callable[..., HitTaskView],
    make_posting: Callable[..., MemoryPosting],
    notifications: list[tuple[str, str, str]],
) -> None:
    task = make_task(assignments=2, lifetime_days=1)
    make_posting(task.hit_id, MemoryAssignment(id="A1", answers=WIDGET_ANSWERS))
    later = _reconciler(
        repository,
        marketplace,
        registry,
        now=lambda: task.expires_at + timedelta(minutes=1),
    )

    summary = later.process_hits()

    stored = repository.get_task(task.id)
    assert summary.tasks_expired == 1
    assert stored.expired
    assert not stored.complete
    assert notifications == [("Widget", "expired", task.hit_id)]
    assert [item.id for item in repository.list_unprocessed_tasks(sandbox=True)] == [task.id]


def test_counter_stops_at_target_when_extra_submissions_arrive(
    repository: HitRepository,
    marketplace: InMemoryMarketplace,
    registry: EntityRegistry,
    make_task: Callable[..., HitTaskView],
    make_posting: Callable[..., MemoryPosting],
) -> None:
    task = make_task(assignments=1)
    make_posting(
        task.hit_id,
        MemoryAssignment(id="A1", answers=WIDGET_ANSWERS),
        MemoryAssignment(id="A2", answers=[("widget[name]", "late")]),
    )

    summary = _reconciler(repository, marketplace, registry).process_hits()

    stored = repository.get_task(task.id)
    assert summary.assignments_imported == 2
    assert stored.completed_assignments == 1
    assert stored.complete


def test_reconciler_refuses_mismatched_marketplace_mode(
    repository: HitRepository,
    registry: EntityRegistry,
) -> None:
    with pytest.raises(ValueError, match="does not match"):
        HitReconciler(
            repository=repository,
            marketplace=InMemoryMarketplace(sandbox=False),
            registry=registry,
            sandbox=True,
        )


def test_completion_only_entity_hears_about_completion(
    repository: HitRepository,
    marketplace: InMemoryMarketplace,
    registry: EntityRegistry,
    make_task: Callable[..., HitTaskView],
    make_posting: Callable[..., MemoryPosting],
    notifications: list[tuple[str, str, str]],
) -> None:
    task = make_task(assignments=1, task_type="Sprocket")
    make_posting(task.hit_id, MemoryAssignment(id="A1", answers=[("sprocket[size]", "4")]))

    summary = _reconciler(repository, marketplace, registry).process_hits()

    assert summary.tasks_completed == 1
    assert summary.tasks_failed == 0
    assert notifications == [("Sprocket", "complete", task.hit_id)]


def test_storage_failure_outside_task_loop_is_logged_not_raised(
    repository: HitRepository,
    marketplace: InMemoryMarketplace,
    registry: EntityRegistry,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    def _broken(*, sandbox: bool) -> list[HitTaskView]:
        raise RuntimeError("database is locked")

    monkeypatch.setattr(repository, "list_unprocessed_tasks", _broken)
    caplog.set_level(logging.ERROR, logger="hitsync.reconcile.engine")

    summary = _reconciler(repository, marketplace, registry).process_hits()

    assert summary.aborted
    assert summary.lease_acquired
    assert summary.tasks_seen == 0
    assert "Hit processing pass aborted" in caplog.text
    assert _count(repository, "process_leases") == 0


class _OfflineForPosting(InMemoryMarketplace):
    def __init__(self, offline_id: str) -> None:
        super().__init__(sandbox=True)
        self.offline_id = offline_id

    def get_posting(self, posting_id: str) -> MemoryPosting:
        if posting_id == self.offline_id:
            raise MarketplaceUnavailableError(f"Timed out fetching {posting_id}")
        return super().get_posting(posting_id)


def test_unavailable_marketplace_leaves_task_for_next_run(
    repository: HitRepository,
    registry: EntityRegistry,
    make_task: Callable[..., HitTaskView],
    caplog: pytest.LogCaptureFixture,
) -> None:
    offline = make_task("HIT-OFFLINE")
    online = make_task("HIT-ONLINE")
    marketplace = _OfflineForPosting(offline.hit_id)
    marketplace.add_posting(
        MemoryPosting(
            id=online.hit_id,
            assignments=[MemoryAssignment(id="A1", answers=WIDGET_ANSWERS)],
        ),
    )
    caplog.set_level(logging.WARNING, logger="hitsync.reconcile.engine")

    summary = _reconciler(repository, marketplace, registry).process_hits()

    assert summary.tasks_failed == 1
    assert summary.assignments_imported == 1
    assert "Marketplace unavailable for task" in caplog.text
    assert "Timed out fetching HIT-OFFLINE" in caplog.text
    assert offline.id in [task.id for task in repository.list_unprocessed_tasks(sandbox=True)]
