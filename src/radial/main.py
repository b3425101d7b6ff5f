"""CLI entrypoint for radial (``rd``)."""

import json
import logging
import sys
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from radial import __version__
from radial.config import LOG_LEVELS, Settings
from radial.tracker.controllers import (
    CleanCommand,
    EditGoalCommand,
    EditTaskCommand,
    GoalCreateCommand,
    GoalScopedCommand,
    InitCommand,
    ListCommand,
    RadialCliController,
    ShowCommand,
    StatusCommand,
    TaskCommentCommand,
    TaskCompleteCommand,
    TaskCreateCommand,
    TaskMutateCommand,
)
from radial.tracker.errors import RadialError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = RadialCliController()

EXIT_CODES = {
    "not_found": 3,
    "invalid_state": 4,
    "concurrency_conflict": 5,
    "validation": 6,
    "storage": 7,
}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path. Skips .radial discovery.",
)
json_option = click.option(
    "--json",
    "json_output",
    is_flag=True,
    default=False,
    help="Print machine-readable JSON.",
)


class RadialCliError(click.ClickException):
    """Tracker error carrying a per-kind exit status."""

    def __init__(self, error: RadialError) -> None:
        super().__init__(str(error))
        self.error_code = error.code
        self.exit_code = EXIT_CODES.get(error.code, 1)


@click.group()
@click.version_option(version=__version__, prog_name="radial")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Log level for stderr diagnostics. Defaults to RADIAL_LOG_LEVEL or WARNING.",
)
def radial(log_level: str | None) -> None:
    """Track goals and tasks with contracts and dependencies."""

    try:
        settings = Settings.from_env()
        if log_level is not None:
            settings.log_level = log_level.upper()
        settings.validate()
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    logging.basicConfig(level=settings.log_level_value, format=LOG_FORMAT, stream=sys.stderr)


@radial.command("init")
@db_path_option
@click.option("--stealth", is_flag=True, default=False, help="Keep .radial/ out of git.")
@click.option(
    "--redirect",
    type=click.Path(path_type=Path),
    default=None,
    help="Point the new .radial/ at an existing store directory.",
)
def init_command(db_path: Path | None, stealth: bool, redirect: Path | None) -> None:
    """Create a `.radial/` store in the current directory."""

    _run(
        lambda: CONTROLLER.init(
            InitCommand(root=Path.cwd(), db_path=db_path, stealth=stealth, redirect=redirect),
        ),
    )


@radial.command("prep")
def prep_command() -> None:
    """Print the agent workflow guide."""

    _run(CONTROLLER.prep)


@radial.group()
def goal() -> None:
    """Goal commands."""


@goal.command("create")
@db_path_option
@json_option
@click.argument("description")
@click.option("--parent", "parent_id", default=None, help="Parent goal id.")
def goal_create(
    db_path: Path | None,
    json_output: bool,
    description: str,
    parent_id: str | None,
) -> None:
    """Create a goal."""

    _run(
        lambda: CONTROLLER.create_goal(
            GoalCreateCommand(
                db_path=db_path,
                description=description,
                parent_id=parent_id,
                json_output=json_output,
            ),
        ),
        json_output=json_output,
    )


@goal.command("list")
@db_path_option
@json_option
def goal_list(db_path: Path | None, json_output: bool) -> None:
    """List goals, newest first."""

    _run(
        lambda: CONTROLLER.list_goals(ListCommand(db_path=db_path, json_output=json_output)),
        json_output=json_output,
    )


@radial.group()
def task() -> None:
    """Task commands."""


@task.command("create")
@db_path_option
@json_option
@click.argument("goal_id")
@click.argument("description")
@click.option("--receives", default=None, help="Contract: what the task receives.")
@click.option("--produces", default=None, help="Contract: what the task produces.")
@click.option("--verify", default=None, help="Contract: how the output is verified.")
@click.option("--blocked-by", default=None, help="Comma-separated task ids in the same goal.")
def task_create(  # noqa: PLR0913
    db_path: Path | None,
    json_output: bool,
    goal_id: str,
    description: str,
    receives: str | None,
    produces: str | None,
    verify: str | None,
    blocked_by: str | None,
) -> None:
    """Create a task under a goal."""

    _run(
        lambda: CONTROLLER.create_task(
            TaskCreateCommand(
                db_path=db_path,
                goal_id=goal_id,
                description=description,
                receives=receives,
                produces=produces,
                verify=verify,
                blocked_by=_split_csv(blocked_by) or (),
                json_output=json_output,
            ),
        ),
        json_output=json_output,
    )


@task.command("list")
@db_path_option
@json_option
@click.argument("goal_id")
def task_list(db_path: Path | None, json_output: bool, goal_id: str) -> None:
    """List tasks of a goal in dependency order."""

    _run(
        lambda: CONTROLLER.list_tasks(
            GoalScopedCommand(db_path=db_path, goal_id=goal_id, json_output=json_output),
        ),
        json_output=json_output,
    )


@task.command("start")
@db_path_option
@json_option
@click.argument("task_id")
def task_start(db_path: Path | None, json_output: bool, task_id: str) -> None:
    """Start a pending task. Requires a contract."""

    _run(
        lambda: CONTROLLER.start_task(_mutate(db_path, task_id, json_output)),
        json_output=json_output,
    )


@task.command("complete")
@db_path_option
@json_option
@click.argument("task_id")
@click.option("--result", "result_summary", required=True, help="Result summary.")
@click.option("--artifacts", default=None, help="Comma-separated artifact references.")
@click.option("--tokens", type=click.IntRange(min=0), default=0, show_default=True)
@click.option(
    "--elapsed",
    "elapsed_ms",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Elapsed time in milliseconds.",
)
def task_complete(  # noqa: PLR0913
    db_path: Path | None,
    json_output: bool,
    task_id: str,
    result_summary: str,
    artifacts: str | None,
    tokens: int,
    elapsed_ms: int,
) -> None:
    """Complete an in-progress task and release its dependents."""

    _run(
        lambda: CONTROLLER.complete_task(
            TaskCompleteCommand(
                db_path=db_path,
                task_id=task_id,
                result=result_summary,
                artifacts=_split_csv(artifacts) or (),
                tokens=tokens,
                elapsed_ms=elapsed_ms,
                json_output=json_output,
            ),
        ),
        json_output=json_output,
    )


@task.command("fail")
@db_path_option
@json_option
@click.argument("task_id")
def task_fail(db_path: Path | None, json_output: bool, task_id: str) -> None:
    """Mark an in-progress or verifying task as failed."""

    _run(
        lambda: CONTROLLER.fail_task(_mutate(db_path, task_id, json_output)),
        json_output=json_output,
    )


@task.command("retry")
@db_path_option
@json_option
@click.argument("task_id")
def task_retry(db_path: Path | None, json_output: bool, task_id: str) -> None:
    """Move a failed task back to in-progress."""

    _run(
        lambda: CONTROLLER.retry_task(_mutate(db_path, task_id, json_output)),
        json_output=json_output,
    )


@task.command("delete")
@db_path_option
@json_option
@click.argument("task_id")
def task_delete(db_path: Path | None, json_output: bool, task_id: str) -> None:
    """Delete a pending task nothing depends on."""

    _run(
        lambda: CONTROLLER.delete_task(_mutate(db_path, task_id, json_output)),
        json_output=json_output,
    )


@task.command("comment")
@db_path_option
@json_option
@click.argument("task_id")
@click.argument("body")
def task_comment(db_path: Path | None, json_output: bool, task_id: str, body: str) -> None:
    """Append a comment to a task."""

    _run(
        lambda: CONTROLLER.comment_task(
            TaskCommentCommand(
                db_path=db_path,
                task_id=task_id,
                body=body,
                json_output=json_output,
            ),
        ),
        json_output=json_output,
    )


@radial.group()
def edit() -> None:
    """Edit goals and tasks."""


@edit.command("goal")
@db_path_option
@json_option
@click.argument("goal_id")
@click.option("--description", required=True, help="New description.")
def edit_goal(db_path: Path | None, json_output: bool, goal_id: str, description: str) -> None:
    """Change a goal description."""

    _run(
        lambda: CONTROLLER.edit_goal(
            EditGoalCommand(
                db_path=db_path,
                goal_id=goal_id,
                description=description,
                json_output=json_output,
            ),
        ),
        json_output=json_output,
    )


@edit.command("task")
@db_path_option
@json_option
@click.argument("task_id")
@click.option("--description", default=None, help="New description.")
@click.option("--receives", default=None, help="Contract: what the task receives.")
@click.option("--produces", default=None, help="Contract: what the task produces.")
@click.option("--verify", default=None, help="Contract: how the output is verified.")
@click.option(
    "--blocked-by",
    default=None,
    help="Replace dependencies with these comma-separated task ids. Empty clears them.",
)
def edit_task(  # noqa: PLR0913
    db_path: Path | None,
    json_output: bool,
    task_id: str,
    description: str | None,
    receives: str | None,
    produces: str | None,
    verify: str | None,
    blocked_by: str | None,
) -> None:
    """Edit a task; contract fields merge with existing values."""

    _run(
        lambda: CONTROLLER.edit_task(
            EditTaskCommand(
                db_path=db_path,
                task_id=task_id,
                description=description,
                receives=receives,
                produces=produces,
                verify=verify,
                blocked_by=_split_csv(blocked_by),
                json_output=json_output,
            ),
        ),
        json_output=json_output,
    )


@radial.command("list")
@db_path_option
@json_option
def list_command(db_path: Path | None, json_output: bool) -> None:
    """All goals with their tasks in dependency order."""

    _run(
        lambda: CONTROLLER.list_all(ListCommand(db_path=db_path, json_output=json_output)),
        json_output=json_output,
    )


@radial.command("status")
@db_path_option
@json_option
@click.option("--goal", "goal_id", default=None, help="Show one goal and its tasks.")
@click.option("--task", "task_id", default=None, help="Show one task.")
def status_command(
    db_path: Path | None,
    json_output: bool,
    goal_id: str | None,
    task_id: str | None,
) -> None:
    """Compact status of every goal, one goal, or one task."""

    _run(
        lambda: CONTROLLER.status(
            StatusCommand(
                db_path=db_path,
                goal_id=goal_id,
                task_id=task_id,
                json_output=json_output,
            ),
        ),
        json_output=json_output,
    )


@radial.command("show")
@db_path_option
@json_option
@click.argument("entity_id")
def show_command(db_path: Path | None, json_output: bool, entity_id: str) -> None:
    """Full details of a goal or task."""

    _run(
        lambda: CONTROLLER.show(
            ShowCommand(db_path=db_path, entity_id=entity_id, json_output=json_output),
        ),
        json_output=json_output,
    )


@radial.command("ready")
@db_path_option
@json_option
@click.argument("goal_id")
def ready_command(db_path: Path | None, json_output: bool, goal_id: str) -> None:
    """Pending tasks with a contract, ready to start."""

    _run(
        lambda: CONTROLLER.ready(
            GoalScopedCommand(db_path=db_path, goal_id=goal_id, json_output=json_output),
        ),
        json_output=json_output,
    )


@radial.command("reconcile")
@db_path_option
@json_option
@click.argument("goal_id")
def reconcile_command(db_path: Path | None, json_output: bool, goal_id: str) -> None:
    """Re-run unblocking and goal rollup for a goal."""

    _run(
        lambda: CONTROLLER.reconcile(
            GoalScopedCommand(db_path=db_path, goal_id=goal_id, json_output=json_output),
        ),
        json_output=json_output,
    )


@radial.command("clean")
@db_path_option
@click.option("--force", is_flag=True, default=False, help="Remove all goals.")
@click.option("--yes", is_flag=True, default=False, help="Skip confirmation.")
def clean_command(db_path: Path | None, force: bool, yes: bool) -> None:
    """Remove completed goals (or all with --force) and their tasks."""

    if not yes:
        scope = "ALL goals" if force else "completed goals"
        click.confirm(f"Remove {scope} and their tasks?", abort=True)
    _run(lambda: CONTROLLER.clean(CleanCommand(db_path=db_path, include_incomplete=force)))


def _run(action: Callable[[], list[str]], *, json_output: bool = False) -> None:
    try:
        lines = action()
    except RadialError as error:
        if json_output:
            click.echo(
                json.dumps({"error": {"code": error.code, "message": str(error)}}, indent=2),
            )
            click.get_current_context().exit(EXIT_CODES.get(error.code, 1))
        raise RadialCliError(error) from error
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _mutate(db_path: Path | None, task_id: str, json_output: bool) -> TaskMutateCommand:
    return TaskMutateCommand(db_path=db_path, task_id=task_id, json_output=json_output)


def _split_csv(value: str | None) -> tuple[str, ...] | None:
    if value is None:
        return None
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    radial()
