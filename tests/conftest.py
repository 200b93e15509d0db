"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
from sample_entities import NOTIFICATIONS, build_registry, create_sample_tables
from sqlalchemy import Row, text

from hitsync.marketplace.memory import InMemoryMarketplace, MemoryAssignment, MemoryPosting
from hitsync.reconcile.entities import EntityRegistry
from hitsync.reconcile.models import HitTaskView, TaskCreate
from hitsync.reconcile.repository import HitRepository


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[HitRepository]:
    repo = HitRepository(tmp_path / "hits.db")
    repo.init_schema()
    create_sample_tables(repo.engine)
    yield repo
    repo.close()


@pytest.fixture()
def sql(repository: HitRepository) -> Callable[..., list[Row]]:
    """Run one raw statement against the repository database and commit."""

    def _sql(statement: str, **params: object) -> list[Row]:
        with repository.engine.begin() as connection:
            result = connection.execute(text(statement), params)
            return list(result) if result.returns_rows else []

    return _sql


@pytest.fixture()
def registry() -> EntityRegistry:
    return build_registry()


@pytest.fixture()
def marketplace() -> InMemoryMarketplace:
    return InMemoryMarketplace(sandbox=True)


@pytest.fixture()
def notifications() -> Iterator[list[tuple[str, str, str]]]:
    NOTIFICATIONS.clear()
    yield NOTIFICATIONS
    NOTIFICATIONS.clear()


@pytest.fixture()
def make_task(repository: HitRepository) -> Callable[..., HitTaskView]:
    def _make_task(
        hit_id: str = "HIT1",
        *,
        assignments: int = 3,
        lifetime_days: int = 7,
        sandbox: bool = True,
        task_type: str = "Widget",
    ) -> HitTaskView:
        return repository.create_task(
            TaskCreate(
                hit_id=hit_id,
                hit_title=f"Title {hit_id}",
                hit_num_assignments=assignments,
                hit_lifetime=lifetime_days,
                task_type=task_type,
                hit_reward=0.1,
                sandbox=sandbox,
            ),
        )

    return _make_task


@pytest.fixture()
def make_posting(marketplace: InMemoryMarketplace) -> Callable[..., MemoryPosting]:
    def _make_posting(hit_id: str = "HIT1", *assignments: MemoryAssignment) -> MemoryPosting:
        return marketplace.add_posting(
            MemoryPosting(
                id=hit_id,
                url=f"https://example.com/{hit_id}",
                assignments=list(assignments),
            ),
        )

    return _make_posting
