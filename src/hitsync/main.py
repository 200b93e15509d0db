"""CLI entrypoint for hitsync."""

import logging
import os
from pathlib import Path

import rich_click as click

from hitsync import __version__
from hitsync.reconcile.controllers import (
    HitsCliController,
    ProcessHitsCommand,
    TaskAddCommand,
    TaskInspectCommand,
    TaskListCommand,
)

click.rich_click.USE_MARKDOWN = True
HITS_CONTROLLER = HitsCliController()


@click.group()
@click.version_option(version=__version__, prog_name="hitsync")
@click.option(
    "--log-level",
    default=None,
    help="Logging level. Defaults to HITSYNC_LOG_LEVEL or INFO.",
)
def hitsync(log_level: str | None) -> None:
    """Marketplace hit reconciliation CLI."""

    level = (log_level or os.getenv("HITSYNC_LOG_LEVEL", "INFO")).strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise click.BadParameter(f"Unknown log level: {level}", param_hint="--log-level")
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@hitsync.command("process")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--task-id",
    type=click.IntRange(min=1),
    default=None,
    help="Process only this local task id instead of every unprocessed task.",
)
@click.option(
    "--snapshot",
    "snapshot_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="Marketplace JSON snapshot. Defaults to HITSYNC_MARKETPLACE_SNAPSHOT.",
)
def process(db_path: Path | None, task_id: int | None, snapshot_path: Path | None) -> None:
    """Import submitted assignments and complete or expire tasks."""

    _emit_lines(
        _run(
            HITS_CONTROLLER.process,
            ProcessHitsCommand(db_path=db_path, task_id=task_id, snapshot_path=snapshot_path),
        ),
    )


@hitsync.group()
def tasks() -> None:
    """Local task record commands."""


@tasks.command("add")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--hit-id", required=True, help="Marketplace posting id.")
@click.option("--title", required=True, help="Posting title.")
@click.option("--task-type", required=True, help="Result entity type name.")
@click.option(
    "--assignments",
    type=click.IntRange(min=1),
    required=True,
    help="Number of assignments to collect.",
)
@click.option(
    "--lifetime-days",
    type=click.IntRange(min=1),
    required=True,
    help="Posting lifetime in days.",
)
@click.option("--reward", type=click.FloatRange(min=0), default=0.0, show_default=True)
@click.option("--description", default=None, help="Posting description.")
@click.option(
    "--duration-hours",
    type=click.IntRange(min=1),
    default=None,
    help="Optional assignment duration override in hours.",
)
@click.option("--hit-url", default=None, help="Posting URL on the marketplace.")
@click.option("--form-url", default=None, help="URL of the form workers submit.")
def tasks_add(  # noqa: PLR0913
    db_path: Path | None,
    hit_id: str,
    title: str,
    task_type: str,
    assignments: int,
    lifetime_days: int,
    reward: float,
    description: str | None,
    duration_hours: int | None,
    hit_url: str | None,
    form_url: str | None,
) -> None:
    """Register a posted hit so it gets reconciled."""

    _emit_lines(
        _run(
            HITS_CONTROLLER.add_task,
            TaskAddCommand(
                db_path=db_path,
                hit_id=hit_id,
                title=title,
                task_type=task_type,
                assignments=assignments,
                lifetime_days=lifetime_days,
                reward=reward,
                description=description,
                duration_hours=duration_hours,
                hit_url=hit_url,
                form_url=form_url,
            ),
        ),
    )


@tasks.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--pending/--all",
    "pending_only",
    default=True,
    show_default=True,
    help="Only show tasks that are not complete yet.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max number of tasks to print.",
)
def tasks_list(db_path: Path | None, pending_only: bool, limit: int) -> None:
    """List local task records."""

    _emit_lines(
        HITS_CONTROLLER.list_tasks(
            TaskListCommand(db_path=db_path, pending_only=pending_only, limit=limit),
        ),
    )


@tasks.command("inspect")
@click.argument("task_id", type=click.IntRange(min=1))
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def tasks_inspect(task_id: int, db_path: Path | None) -> None:
    """Show one task and its imported assignments."""

    _emit_lines(HITS_CONTROLLER.inspect_task(TaskInspectCommand(db_path=db_path, task_id=task_id)))


def _run(handler, command) -> list[str]:  # noqa: ANN001
    try:
        return handler(command)
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    hitsync()
