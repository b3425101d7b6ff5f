"""Controllers for tracker CLI commands."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from radial.config import Settings
from radial.storage.workspace import init_store
from radial.tracker.errors import StorageError
from radial.tracker.guide import PREP_GUIDE
from radial.tracker.lifecycle import LifecycleEngine
from radial.tracker.models import (
    Contract,
    GoalDetails,
    GoalState,
    GoalView,
    TaskDetails,
    TaskView,
)
from radial.tracker.repository import TrackerRepository
from radial.tracker.serialization import (
    cascade_to_dict,
    comment_to_dict,
    completion_to_dict,
    details_to_dict,
    goal_to_dict,
    overview_to_dict,
    task_to_dict,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class InitCommand:
    """CLI input for store bootstrap."""

    root: Path
    db_path: Path | None
    stealth: bool
    redirect: Path | None


@dataclass(slots=True)
class ListCommand:
    """CLI input for store-wide reads."""

    db_path: Path | None
    json_output: bool = False


@dataclass(slots=True)
class GoalCreateCommand:
    db_path: Path | None
    description: str
    parent_id: str | None = None
    json_output: bool = False


@dataclass(slots=True)
class GoalScopedCommand:
    """CLI input for commands that take one goal id."""

    db_path: Path | None
    goal_id: str
    json_output: bool = False


@dataclass(slots=True)
class TaskCreateCommand:
    """CLI input for task creation."""

    db_path: Path | None
    goal_id: str
    description: str
    receives: str | None
    produces: str | None
    verify: str | None
    blocked_by: tuple[str, ...]
    json_output: bool = False


@dataclass(slots=True)
class TaskMutateCommand:
    """CLI input for start/fail/retry/delete."""

    db_path: Path | None
    task_id: str
    json_output: bool = False


@dataclass(slots=True)
class TaskCompleteCommand:
    db_path: Path | None
    task_id: str
    result: str
    artifacts: tuple[str, ...]
    tokens: int
    elapsed_ms: int
    json_output: bool = False


@dataclass(slots=True)
class TaskCommentCommand:
    db_path: Path | None
    task_id: str
    body: str
    json_output: bool = False


@dataclass(slots=True)
class EditGoalCommand:
    db_path: Path | None
    goal_id: str
    description: str
    json_output: bool = False


@dataclass(slots=True)
class EditTaskCommand:
    """CLI input for task edits; ``None`` leaves a field unchanged."""

    db_path: Path | None
    task_id: str
    description: str | None
    receives: str | None
    produces: str | None
    verify: str | None
    blocked_by: tuple[str, ...] | None
    json_output: bool = False


@dataclass(slots=True)
class ShowCommand:
    db_path: Path | None
    entity_id: str
    json_output: bool = False


@dataclass(slots=True)
class StatusCommand:
    db_path: Path | None
    goal_id: str | None
    task_id: str | None
    json_output: bool = False


@dataclass(slots=True)
class CleanCommand:
    db_path: Path | None
    include_incomplete: bool


class RadialCliController:
    """Coordinates lifecycle engine calls and renders their results as lines."""

    def init(self, command: InitCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        if settings.db_path is not None:
            db_path = settings.db_path
        else:
            try:
                db_path = init_store(
                    command.root,
                    stealth=command.stealth,
                    redirect=command.redirect,
                )
            except OSError as error:
                raise StorageError(str(error)) from error

        repository = TrackerRepository(db_path, busy_timeout_ms=settings.busy_timeout_ms)
        try:
            repository.init_schema()
        finally:
            repository.close()

        lines = [f"Initialized radial store: {db_path}"]
        if command.stealth:
            lines.append("  Stealth mode: .radial/ is ignored by git")
        if command.redirect is not None:
            lines.append(f"  Redirected to: {command.redirect}")
        return lines

    def prep(self) -> list[str]:
        return PREP_GUIDE.splitlines()

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    def create_goal(self, command: GoalCreateCommand) -> list[str]:
        with _engine(command.db_path) as engine:
            goal = engine.create_goal(command.description, parent_id=command.parent_id)
        if command.json_output:
            return _json_lines(goal_to_dict(goal))
        return [f"Created goal: {goal.goal_id}", f"  Description: {goal.description}"]

    def list_goals(self, command: ListCommand) -> list[str]:
        with _engine(command.db_path) as engine:
            goals = engine.list_goals()
        if command.json_output:
            return _json_lines([goal_to_dict(goal) for goal in goals])
        if not goals:
            return ["No goals found."]
        lines: list[str] = []
        for goal in goals:
            lines.extend(_goal_summary_lines(goal))
        return lines

    def edit_goal(self, command: EditGoalCommand) -> list[str]:
        with _engine(command.db_path) as engine:
            goal = engine.edit_goal(command.goal_id, description=command.description)
        if command.json_output:
            return _json_lines(goal_to_dict(goal))
        return [f"Updated goal: {goal.goal_id}", f"  Description: {goal.description}"]

    def reconcile(self, command: GoalScopedCommand) -> list[str]:
        with _engine(command.db_path) as engine:
            result = engine.reconcile(command.goal_id)
        if command.json_output:
            return _json_lines(cascade_to_dict(result))
        lines = [f"Reconciled goal: {result.goal.goal_id} [{result.goal.state.value}]"]
        lines.extend(_unblocked_lines(result.unblocked_task_ids))
        return lines

    def clean(self, command: CleanCommand) -> list[str]:
        with _engine(command.db_path) as engine:
            removed = engine.clean(include_incomplete=command.include_incomplete)
        if not removed:
            if command.include_incomplete:
                return ["No goals found."]
            return ["No completed goals to clean."]
        lines = [f"  Removed {goal.goal_id} - {_first_line(goal.description)}" for goal in removed]
        lines.append(f"Cleaned {len(removed)} goal(s).")
        return lines

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, command: TaskCreateCommand) -> list[str]:
        contract = Contract.from_fields(
            receives=command.receives,
            produces=command.produces,
            verify=command.verify,
        )
        with _engine(command.db_path) as engine:
            task = engine.create_task(
                command.goal_id,
                command.description,
                contract=contract,
                blocked_by=command.blocked_by,
            )
        if command.json_output:
            return _json_lines(task_to_dict(task))
        lines = [
            f"Created task: {task.task_id}",
            f"  Description: {task.description}",
            f"  State: {task.state.value}",
        ]
        if task.contract is None:
            lines.append("  Contract: (not set - required before starting)")
        return lines

    def list_tasks(self, command: GoalScopedCommand) -> list[str]:
        with _engine(command.db_path) as engine:
            goal = engine.get_goal(command.goal_id)
            tasks = engine.list_tasks(command.goal_id)
        if command.json_output:
            return _json_lines([task_to_dict(task) for task in tasks])
        lines = [
            f"Tasks for goal: {goal.goal_id} [{goal.state.value}]",
            f"  {goal.description}",
            "",
        ]
        if not tasks:
            lines.append("No tasks found.")
            return lines
        for task in tasks:
            lines.extend(_task_summary_lines(task))
        return lines

    def ready(self, command: GoalScopedCommand) -> list[str]:
        with _engine(command.db_path) as engine:
            goal = engine.get_goal(command.goal_id)
            tasks = engine.ready(command.goal_id)
        if command.json_output:
            return _json_lines([task_to_dict(task) for task in tasks])
        lines = [
            f"Ready tasks for goal: {goal.goal_id} [{goal.state.value}]",
            f"  {goal.description}",
            "",
        ]
        if not tasks:
            lines.append("No tasks ready to start.")
            return lines
        lines.append(f"{len(tasks)} task(s) ready:")
        for task in tasks:
            lines.extend(_task_summary_lines(task))
        return lines

    def start_task(self, command: TaskMutateCommand) -> list[str]:
        with _engine(command.db_path) as engine:
            task = engine.start_task(command.task_id)
        if command.json_output:
            return _json_lines(task_to_dict(task))
        return [f"Started task: {task.task_id}", f"  Description: {task.description}"]

    def complete_task(self, command: TaskCompleteCommand) -> list[str]:
        with _engine(command.db_path) as engine:
            result = engine.complete_task(
                command.task_id,
                summary=command.result,
                artifacts=command.artifacts,
                tokens=command.tokens,
                elapsed_ms=command.elapsed_ms,
            )
        if command.json_output:
            return _json_lines(completion_to_dict(result))
        lines = [f"Completed task: {result.task.task_id}"]
        if result.task.result is not None:
            lines.append(f"  Result: {result.task.result.summary}")
        lines.extend(_unblocked_lines(result.unblocked_task_ids))
        if result.goal.state in (GoalState.COMPLETED, GoalState.FAILED):
            lines.append(f"Goal {result.goal.goal_id} is now {result.goal.state.value}")
        return lines

    def fail_task(self, command: TaskMutateCommand) -> list[str]:
        with _engine(command.db_path) as engine:
            task = engine.fail_task(command.task_id)
        if command.json_output:
            return _json_lines(task_to_dict(task))
        return [f"Failed task: {task.task_id}", f"  Description: {task.description}"]

    def retry_task(self, command: TaskMutateCommand) -> list[str]:
        with _engine(command.db_path) as engine:
            task = engine.retry_task(command.task_id)
        if command.json_output:
            return _json_lines(task_to_dict(task))
        return [
            f"Retrying task: {task.task_id}",
            f"  Description: {task.description}",
            f"  Retry count: {task.metrics.retry_count}",
        ]

    def delete_task(self, command: TaskMutateCommand) -> list[str]:
        with _engine(command.db_path) as engine:
            task = engine.delete_task(command.task_id)
        if command.json_output:
            return _json_lines(task_to_dict(task))
        return [f"Deleted task: {task.task_id}"]

    def comment_task(self, command: TaskCommentCommand) -> list[str]:
        with _engine(command.db_path) as engine:
            comment = engine.comment_task(command.task_id, command.body)
        if command.json_output:
            return _json_lines(comment_to_dict(comment))
        return [f"Added comment to task: {comment.task_id}"]

    def edit_task(self, command: EditTaskCommand) -> list[str]:
        with _engine(command.db_path) as engine:
            task = engine.edit_task(
                command.task_id,
                description=command.description,
                receives=command.receives,
                produces=command.produces,
                verify=command.verify,
                blocked_by=command.blocked_by,
            )
        if command.json_output:
            return _json_lines(task_to_dict(task))
        return [f"Updated task: {task.task_id}", *_task_summary_lines(task)]

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def list_all(self, command: ListCommand) -> list[str]:
        with _engine(command.db_path) as engine:
            overview = engine.list_overview()
        if command.json_output:
            return _json_lines([overview_to_dict(item) for item in overview])
        if not overview:
            return ["No goals found."]
        lines: list[str] = []
        for item in overview:
            lines.extend(_goal_summary_lines(item.goal))
            for task in item.tasks:
                lines.extend(f"  {line}" for line in _task_summary_lines(task))
        return lines

    def show(self, command: ShowCommand) -> list[str]:
        with _engine(command.db_path) as engine:
            details = engine.show(command.entity_id)
        if command.json_output:
            return _json_lines(details_to_dict(details))
        return _details_lines(details)

    def status(self, command: StatusCommand) -> list[str]:
        with _engine(command.db_path) as engine:
            result = engine.status(goal_id=command.goal_id, task_id=command.task_id)
        if isinstance(result, TaskDetails | GoalDetails):
            if command.json_output:
                return _json_lines(details_to_dict(result))
            return _details_lines(result)
        if command.json_output:
            return _json_lines([goal_to_dict(goal) for goal in result])
        if not result:
            return ["No goals found."]
        lines = ["All Goals:", ""]
        for goal in result:
            lines.extend(_goal_summary_lines(goal))
        return lines


def _details_lines(details: TaskDetails | GoalDetails) -> list[str]:
    if isinstance(details, TaskDetails):
        return _task_detail_lines(details.task)

    goal = details.goal
    lines = [
        f"Goal: {goal.goal_id} [{goal.state.value}]",
        f"  Description: {goal.description}",
        f"  Created: {goal.created_at.isoformat()}",
        f"  Updated: {goal.updated_at.isoformat()}",
    ]
    if goal.completed_at is not None:
        lines.append(f"  Completed: {goal.completed_at.isoformat()}")
    lines.extend(
        [
            "",
            "Metrics:",
            f"  Tasks: {goal.metrics.tasks_completed}/{goal.metrics.task_count} completed, "
            f"{goal.metrics.tasks_failed} failed",
            f"  Tokens: {goal.metrics.total_tokens}",
            f"  Elapsed: {goal.metrics.elapsed_ms}ms",
        ],
    )
    if details.tasks:
        lines.extend(["", "Tasks:"])
        lines.extend(
            f"  {task.task_id} [{task.state.value}] {_first_line(task.description)}"
            for task in details.tasks
        )
    return lines


def _task_detail_lines(task: TaskView) -> list[str]:
    lines = [
        f"Task: {task.task_id} [{task.state.value}]",
        f"  Goal: {task.goal_id}",
        f"  Description: {task.description}",
        f"  Created: {task.created_at.isoformat()}",
        f"  Updated: {task.updated_at.isoformat()}",
        "",
    ]
    if task.contract is not None:
        lines.extend(
            [
                "Contract:",
                f"  Receives: {task.contract.receives}",
                f"  Produces: {task.contract.produces}",
                f"  Verify: {task.contract.verify}",
            ],
        )
    else:
        lines.append("Contract: (not set)")
    if task.blocked_by:
        lines.extend(["", f"Blocked by: {', '.join(task.blocked_by)}"])
    if task.result is not None:
        lines.extend(["", "Result:", f"  Summary: {task.result.summary}"])
        if task.result.artifacts:
            lines.append("  Artifacts:")
            lines.extend(f"    - {artifact}" for artifact in task.result.artifacts)
    lines.extend(
        [
            "",
            "Metrics:",
            f"  Tokens: {task.metrics.tokens}",
            f"  Elapsed: {task.metrics.elapsed_ms}ms",
            f"  Retries: {task.metrics.retry_count}",
        ],
    )
    if task.comments:
        lines.extend(["", "Comments:"])
        lines.extend(
            f"  [{comment.created_at.isoformat()}] {comment.body}" for comment in task.comments
        )
    return lines


def _goal_summary_lines(goal: GoalView) -> list[str]:
    return [
        f"{goal.goal_id} [{goal.state.value}]",
        f"  Description: {goal.description}",
        f"  Tasks: {goal.metrics.tasks_completed}/{goal.metrics.task_count} completed",
    ]


def _task_summary_lines(task: TaskView) -> list[str]:
    lines = [f"{task.task_id} [{task.state.value}]", f"  Description: {task.description}"]
    if task.contract is not None:
        lines.extend(
            [
                f"  Receives: {task.contract.receives}",
                f"  Produces: {task.contract.produces}",
                f"  Verify: {task.contract.verify}",
            ],
        )
    if task.blocked_by:
        lines.append(f"  Blocked by: {', '.join(task.blocked_by)}")
    return lines


def _unblocked_lines(task_ids: list[str]) -> list[str]:
    if not task_ids:
        return []
    return ["", "Unblocked tasks:", *(f"  - {task_id}" for task_id in task_ids)]


def _first_line(text: str) -> str:
    return text.splitlines()[0] if text else text


def _json_lines(payload: object) -> list[str]:
    return [json.dumps(payload, indent=2, ensure_ascii=False)]


@contextmanager
def _engine(db_path: Path | None) -> Iterator[LifecycleEngine]:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    repository = TrackerRepository(
        settings.resolve_db_path(),
        busy_timeout_ms=settings.busy_timeout_ms,
    )
    logger.debug("Opening store %s", repository.db_path)
    repository.init_schema()
    try:
        yield LifecycleEngine(repository)
    finally:
        repository.close()
