"""Cross-process exclusive lease guarding reconciliation passes."""

from __future__ import annotations

import logging
import os
import socket
import time
from collections.abc import Callable
from datetime import timedelta
from types import TracebackType
from typing import TypeVar
from uuid import uuid4

from hitsync.reconcile.errors import LeaseUnavailableError
from hitsync.reconcile.repository import HitRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


def default_holder_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"


class ExclusiveLease:
    """Named lease row with a staleness ceiling and linear retry backoff.

    Only one holder may own a lease name at a time across processes sharing
    the database. A lease older than ``max_age`` is considered abandoned by a
    crashed holder and is broken by the next claimant.
    """

    def __init__(  # noqa: PLR0913
        self,
        repository: HitRepository,
        *,
        name: str,
        max_age: timedelta,
        retries: int,
        retry_backoff_seconds: float,
        holder_id: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if retries < 0:
            raise ValueError("retries must be >= 0")
        self.repository = repository
        self.name = name
        self.max_age = max_age
        self.retries = retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.holder_id = holder_id or default_holder_id()
        self._sleep = sleep
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        current_holder: str | None = None
        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            claim = self.repository.claim_lease(
                name=self.name,
                holder_id=self.holder_id,
                max_age=self.max_age,
            )
            if claim.acquired:
                self._held = True
                logger.debug("Lease acquired (name=%s holder=%s).", self.name, self.holder_id)
                return
            current_holder = claim.holder_id
            if attempt < attempts:
                self._sleep(self.retry_backoff_seconds * attempt)
        raise LeaseUnavailableError(name=self.name, holder_id=current_holder, attempts=attempts)

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        if not self.repository.release_lease(name=self.name, holder_id=self.holder_id):
            logger.warning(
                "Lease was no longer held at release (name=%s holder=%s).",
                self.name,
                self.holder_id,
            )

    def __enter__(self) -> ExclusiveLease:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.release()


def with_exclusive_lease(  # noqa: PLR0913
    repository: HitRepository,
    fn: Callable[[], T],
    *,
    name: str,
    max_age: timedelta,
    retries: int,
    retry_backoff_seconds: float,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``fn`` while holding the named lease; raises ``LeaseUnavailableError`` if taken."""

    with ExclusiveLease(
        repository,
        name=name,
        max_age=max_age,
        retries=retries,
        retry_backoff_seconds=retry_backoff_seconds,
        sleep=sleep,
    ):
        return fn()
