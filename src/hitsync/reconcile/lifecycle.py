"""Task completion and expiration transitions with entity callbacks."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime

from hitsync.marketplace.base import Posting
from hitsync.reconcile.entities import CompletionNotifiable, ExpirationNotifiable
from hitsync.reconcile.models import HitTaskView
from hitsync.reconcile.repository import HitRepository
from hitsync.storage.common import utc_now

logger = logging.getLogger(__name__)


class TaskLifecycle:
    """Moves a task from active to complete, or marks it expired."""

    def __init__(
        self,
        *,
        repository: HitRepository,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self._now = now

    def check_complete(
        self,
        task: HitTaskView,
        posting: Posting,
        callback_targets: Iterable[type],
    ) -> tuple[bool, HitTaskView]:
        """Complete the task once every assignment slot has been counted."""

        if task.complete:
            return True, task
        if not task.has_all_assignments():
            return False, task

        posting.dispose()
        completed = self.repository.mark_complete(task_id=task.id)
        logger.info(
            "Task complete (task_id=%s hit_id=%s assignments=%s).",
            completed.id,
            completed.hit_id,
            completed.completed_assignments,
        )
        for target in _distinct(callback_targets):
            if isinstance(target, CompletionNotifiable):
                _notify(target, "on_hit_complete", completed)
        return True, completed

    def check_expired(
        self,
        task: HitTaskView,
        callback_targets: Iterable[type],
    ) -> tuple[bool, HitTaskView]:
        """Mark an incomplete task expired once its lifetime has passed."""

        if task.complete or task.expired or self._now() < task.expires_at:
            return False, task

        expired = self.repository.mark_expired(task_id=task.id)
        logger.info(
            "Task expired (task_id=%s hit_id=%s assignments=%s/%s).",
            expired.id,
            expired.hit_id,
            expired.completed_assignments,
            expired.hit_num_assignments,
        )
        for target in _distinct(callback_targets):
            if isinstance(target, ExpirationNotifiable):
                _notify(target, "on_hit_expired", expired)
        return True, expired


def _distinct(callback_targets: Iterable[type]) -> list[type]:
    return list(dict.fromkeys(callback_targets))


def _notify(target: type, hook: str, task: HitTaskView) -> None:
    # Task state is already committed when hooks run.
    try:
        getattr(target, hook)(task)
    except Exception:  # noqa: BLE001
        logger.exception(
            "Lifecycle callback failed (callback=%s.%s task_id=%s hit_id=%s).",
            target.__name__,
            hook,
            task.id,
            task.hit_id,
        )
