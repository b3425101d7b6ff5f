"""Goal/task lifecycle engine: state machine, completion cascade, goal rollup."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence

from radial.tracker.errors import (
    ConcurrencyConflictError,
    ContractRequiredError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from radial.tracker.ids import generate_id
from radial.tracker.models import (
    CascadeResult,
    CompletionResult,
    Contract,
    GoalCreate,
    GoalDetails,
    GoalOverview,
    GoalState,
    GoalView,
    Outcome,
    ShowResult,
    TaskComment,
    TaskCreate,
    TaskDetails,
    TaskState,
    TaskView,
)
from radial.tracker.ordering import find_cycle, topo_sort
from radial.tracker.repository import TrackerRepository
from radial.tracker.similarity import find_similar_id

logger = logging.getLogger(__name__)

_FAILABLE_STATES = (TaskState.IN_PROGRESS, TaskState.VERIFYING)
_ROLLUP_SOURCE_STATES = (GoalState.PENDING, GoalState.IN_PROGRESS, GoalState.FAILED)


class LifecycleEngine:
    """Drives every lifecycle change through conditional store updates.

    The engine performs no output; callers render the returned views.
    """

    def __init__(
        self,
        repository: TrackerRepository,
        *,
        id_factory: Callable[[], str] = generate_id,
    ) -> None:
        self.repository = repository
        self._new_id = id_factory

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    def create_goal(self, description: str, *, parent_id: str | None = None) -> GoalView:
        description = _require_text(description, "Goal description")
        if parent_id is not None:
            self.get_goal(parent_id)
        goal = self.repository.create_goal(
            GoalCreate(goal_id=self._new_id(), description=description, parent_id=parent_id),
        )
        logger.info("Created goal %s", goal.goal_id)
        return goal

    def list_goals(self) -> list[GoalView]:
        return self.repository.list_goals()

    def get_goal(self, goal_id: str) -> GoalView:
        goal = self.repository.get_goal(goal_id)
        if goal is None:
            raise NotFoundError(
                "goal",
                goal_id,
                suggestion=find_similar_id(goal_id, self.repository.list_goal_ids()),
            )
        return goal

    def edit_goal(self, goal_id: str, *, description: str) -> GoalView:
        description = _require_text(description, "Goal description")
        self.get_goal(goal_id)
        if not self.repository.update_goal_description(goal_id, description):
            raise NotFoundError("goal", goal_id)
        return self.get_goal(goal_id)

    def delete_goal(self, goal_id: str, *, cascade: bool = False) -> int:
        """Remove a goal; with tasks present this requires ``cascade``.

        Returns the number of tasks removed.
        """

        goal = self.get_goal(goal_id)
        if goal.metrics.task_count and not cascade:
            raise InvalidStateError(
                goal_id,
                goal.state.value,
                f"Goal {goal_id} has {goal.metrics.task_count} task(s); "
                "delete with cascade to remove them too.",
            )
        removed = self.repository.delete_goal(goal_id)
        if removed is None:
            raise NotFoundError("goal", goal_id)
        logger.info("Deleted goal %s with %d task(s)", goal_id, removed)
        return removed

    def clean(self, *, include_incomplete: bool = False) -> list[GoalView]:
        """Delete completed goals (or every goal) with their tasks."""

        removed: list[GoalView] = []
        for goal in self.repository.list_goals():
            if not include_incomplete and goal.state != GoalState.COMPLETED:
                continue
            if self.repository.delete_goal(goal.goal_id) is not None:
                removed.append(goal)
        logger.info("Cleaned %d goal(s)", len(removed))
        return removed

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(
        self,
        goal_id: str,
        description: str,
        *,
        contract: Contract | None = None,
        blocked_by: Sequence[str] = (),
    ) -> TaskView:
        """Create a task; it starts ``blocked`` iff ``blocked_by`` is non-empty."""

        description = _require_text(description, "Task description")
        self.get_goal(goal_id)
        blockers = self._validate_blockers(goal_id, blocked_by)
        task = self.repository.create_task(
            TaskCreate(
                task_id=self._new_id(),
                goal_id=goal_id,
                description=description,
                contract=contract,
                blocked_by=blockers,
            ),
        )
        logger.info("Created task %s in goal %s as %s", task.task_id, goal_id, task.state.value)
        return task

    def get_task(self, task_id: str) -> TaskView:
        task = self.repository.get_task(task_id)
        if task is None:
            raise NotFoundError(
                "task",
                task_id,
                suggestion=find_similar_id(task_id, self.repository.list_task_ids()),
            )
        return task

    def list_tasks(self, goal_id: str) -> list[TaskView]:
        """Tasks of a goal in dependency order."""

        self.get_goal(goal_id)
        return topo_sort(self.repository.list_tasks(goal_id))

    def ready(self, goal_id: str) -> list[TaskView]:
        """Pending tasks with a contract, in dependency order."""

        return [task for task in self.list_tasks(goal_id) if task.is_ready]

    def edit_task(  # noqa: PLR0913
        self,
        task_id: str,
        *,
        description: str | None = None,
        receives: str | None = None,
        produces: str | None = None,
        verify: str | None = None,
        blocked_by: Sequence[str] | None = None,
    ) -> TaskView:
        """Edit description, contract fields (merged) and dependencies."""

        task = self.get_task(task_id)
        if description is not None:
            description = _require_text(description, "Task description")

        contract = None
        if receives is not None or produces is not None or verify is not None:
            contract = (task.contract or Contract()).merged(
                receives=receives,
                produces=produces,
                verify=verify,
            )

        if description is not None or contract is not None:
            if not self.repository.update_task_details(
                task_id,
                description=description,
                contract=contract,
            ):
                raise NotFoundError("task", task_id)

        if blocked_by is not None:
            self._replace_blockers(task, blocked_by)

        logger.info("Edited task %s", task_id)
        return self.get_task(task_id)

    def delete_task(self, task_id: str) -> TaskView:
        """Delete a pending task that nothing else depends on."""

        task = self.get_task(task_id)
        if task.state != TaskState.PENDING:
            raise InvalidStateError(
                task_id,
                task.state.value,
                "Task must be in 'pending' state to delete. "
                f"Current state: {task.state.value}",
            )
        dependents = [
            other.task_id
            for other in self.repository.list_tasks(task.goal_id)
            if task_id in other.blocked_by
        ]
        if dependents:
            raise InvalidStateError(
                task_id,
                task.state.value,
                f"Task is a blocker for: {', '.join(dependents)}",
            )
        if not self.repository.delete_task(task_id, expected_state=TaskState.PENDING):
            raise ConcurrencyConflictError(task_id, "delete")
        logger.info("Deleted task %s", task_id)
        return task

    def comment_task(self, task_id: str, body: str) -> TaskComment:
        body = _require_text(body, "Comment")
        self.get_task(task_id)
        comment = self.repository.add_comment(task_id, body)
        if comment is None:
            raise NotFoundError("task", task_id)
        return comment

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start_task(self, task_id: str) -> TaskView:
        """``pending -> in_progress``; requires a contract."""

        task = self.get_task(task_id)
        if not task.has_contract:
            raise ContractRequiredError(task_id, task.state.value)
        if task.state == TaskState.BLOCKED:
            raise InvalidStateError(
                task_id,
                task.state.value,
                f"Task is blocked by: {', '.join(task.blocked_by)}\n"
                "Complete those tasks first.",
            )
        if task.state != TaskState.PENDING:
            raise _wrong_state(task, "start", (TaskState.PENDING,))

        if not self.repository.transition_task_state(
            task_id,
            from_states=(TaskState.PENDING,),
            to_state=TaskState.IN_PROGRESS,
        ):
            raise ConcurrencyConflictError(task_id, "start")
        logger.info("Started task %s", task_id)
        return self.get_task(task_id)

    def complete_task(  # noqa: PLR0913
        self,
        task_id: str,
        *,
        summary: str,
        artifacts: Iterable[str] = (),
        tokens: int = 0,
        elapsed_ms: int = 0,
    ) -> CompletionResult:
        """``in_progress -> completed``, then unblock dependents and roll up the goal."""

        summary = _require_text(summary, "Result summary")
        if tokens < 0 or elapsed_ms < 0:
            raise ValidationError("Tokens and elapsed time must be non-negative.")
        task = self.get_task(task_id)
        if task.state != TaskState.IN_PROGRESS:
            raise _wrong_state(task, "complete", (TaskState.IN_PROGRESS,))

        if not self.repository.complete_task(
            task_id,
            outcome=Outcome(summary=summary, artifacts=tuple(artifacts)),
            tokens=tokens,
            elapsed_ms=elapsed_ms,
        ):
            raise ConcurrencyConflictError(task_id, "complete")
        logger.info("Completed task %s", task_id)

        cascade = self.run_cascade(task_id)
        return CompletionResult(
            task=self.get_task(task_id),
            unblocked_task_ids=cascade.unblocked_task_ids,
            goal=cascade.goal,
        )

    def fail_task(self, task_id: str) -> TaskView:
        """``in_progress | verifying -> failed``."""

        task = self.get_task(task_id)
        if task.state not in _FAILABLE_STATES:
            raise _wrong_state(task, "fail", _FAILABLE_STATES)
        if not self.repository.transition_task_state(
            task_id,
            from_states=_FAILABLE_STATES,
            to_state=TaskState.FAILED,
        ):
            raise ConcurrencyConflictError(task_id, "fail")
        logger.info("Failed task %s", task_id)
        return self.get_task(task_id)

    def retry_task(self, task_id: str) -> TaskView:
        """``failed -> in_progress``, bumping ``retry_count`` by one."""

        task = self.get_task(task_id)
        if task.state != TaskState.FAILED:
            raise _wrong_state(task, "retry", (TaskState.FAILED,))
        if not self.repository.retry_task(task_id):
            raise ConcurrencyConflictError(task_id, "retry")
        task = self.get_task(task_id)
        logger.info("Retrying task %s (retry %d)", task_id, task.metrics.retry_count)
        return task

    # ------------------------------------------------------------------
    # Cascade
    # ------------------------------------------------------------------

    def run_cascade(self, task_id: str) -> CascadeResult:
        """Release dependents of a completed task and roll up its goal.

        Safe to re-run: tasks that already left ``blocked`` are skipped.
        """

        task = self.get_task(task_id)
        if task.state != TaskState.COMPLETED:
            raise _wrong_state(task, "cascade from", (TaskState.COMPLETED,))
        unblocked = self._release_blocked(task.goal_id, trigger_id=task_id)
        return CascadeResult(unblocked_task_ids=unblocked, goal=self._roll_up(task.goal_id))

    def reconcile(self, goal_id: str) -> CascadeResult:
        """Re-evaluate every blocked task of a goal, then roll up the goal."""

        self.get_goal(goal_id)
        unblocked = self._release_blocked(goal_id, trigger_id=None)
        return CascadeResult(unblocked_task_ids=unblocked, goal=self._roll_up(goal_id))

    def _release_blocked(self, goal_id: str, *, trigger_id: str | None) -> list[str]:
        tasks = self.repository.list_tasks(goal_id)
        completed = {task.task_id for task in tasks if task.state == TaskState.COMPLETED}

        unblocked: list[str] = []
        for dependent in tasks:
            if dependent.state != TaskState.BLOCKED:
                continue
            if trigger_id is not None and trigger_id not in dependent.blocked_by:
                continue
            if not all(blocker_id in completed for blocker_id in dependent.blocked_by):
                continue
            if self.repository.transition_task_state(
                dependent.task_id,
                from_states=(TaskState.BLOCKED,),
                to_state=TaskState.PENDING,
            ):
                unblocked.append(dependent.task_id)
                logger.info("Unblocked task %s", dependent.task_id)
            else:
                logger.debug("Task %s already left blocked; skipped", dependent.task_id)
        return unblocked

    def _roll_up(self, goal_id: str) -> GoalView:
        tasks = self.repository.list_tasks(goal_id)
        target: GoalState | None = None
        if tasks and all(task.state == TaskState.COMPLETED for task in tasks):
            target = GoalState.COMPLETED
        elif any(task.state == TaskState.FAILED for task in tasks):
            target = GoalState.FAILED

        if target is not None:
            sources = [state for state in _ROLLUP_SOURCE_STATES if state != target]
            if self.repository.transition_goal_state(
                goal_id,
                from_states=sources,
                to_state=target,
            ):
                logger.info("Goal %s is now %s", goal_id, target.value)
        return self.get_goal(goal_id)

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def show(self, entity_id: str) -> ShowResult:
        """Task lookup first, then goal, then a fuzzy suggestion over both."""

        task = self.repository.get_task(entity_id)
        if task is not None:
            return TaskDetails(task=task)
        goal = self.repository.get_goal(entity_id)
        if goal is not None:
            return GoalDetails(goal=goal, tasks=topo_sort(self.repository.list_tasks(entity_id)))
        candidates = [*self.repository.list_goal_ids(), *self.repository.list_task_ids()]
        raise NotFoundError(
            "goal or task",
            entity_id,
            suggestion=find_similar_id(entity_id, candidates),
        )

    def list_overview(self) -> list[GoalOverview]:
        return [
            GoalOverview(goal=goal, tasks=topo_sort(self.repository.list_tasks(goal.goal_id)))
            for goal in self.repository.list_goals()
        ]

    def status(
        self,
        *,
        goal_id: str | None = None,
        task_id: str | None = None,
    ) -> TaskDetails | GoalDetails | list[GoalView]:
        if task_id is not None:
            return TaskDetails(task=self.get_task(task_id))
        if goal_id is not None:
            return GoalDetails(goal=self.get_goal(goal_id), tasks=self.list_tasks(goal_id))
        return self.repository.list_goals()

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _validate_blockers(
        self,
        goal_id: str,
        blocked_by: Sequence[str],
        *,
        task_id: str | None = None,
    ) -> tuple[str, ...]:
        blockers = tuple(dict.fromkeys(item.strip() for item in blocked_by if item.strip()))
        if task_id is not None and task_id in blockers:
            raise ValidationError(f"Task cannot be blocked by itself: {task_id}")

        goal_task_ids = self.repository.list_task_ids(goal_id)
        known = set(goal_task_ids)
        for blocker_id in blockers:
            if blocker_id in known:
                continue
            suggestion = find_similar_id(blocker_id, goal_task_ids)
            message = f"Task not found in blocked-by list: {blocker_id}"
            if suggestion is not None:
                message += f"\nDid you mean: {suggestion}"
            else:
                message += "\nTask must exist in the same goal."
            raise ValidationError(message)
        return blockers

    def _replace_blockers(self, task: TaskView, blocked_by: Sequence[str]) -> None:
        blockers = self._validate_blockers(task.goal_id, blocked_by, task_id=task.task_id)
        siblings = self.repository.list_tasks(task.goal_id)
        edges = {
            other.task_id: list(other.blocked_by)
            for other in siblings
            if other.task_id != task.task_id
        }
        cycle = find_cycle(task.task_id, blockers, edges)
        if cycle is not None:
            raise ValidationError(f"Dependency cycle: {' -> '.join(cycle)}")

        new_state = task.state
        if task.state in (TaskState.PENDING, TaskState.BLOCKED):
            states = {other.task_id: other.state for other in siblings}
            released = all(states[blocker] == TaskState.COMPLETED for blocker in blockers)
            new_state = TaskState.PENDING if released else TaskState.BLOCKED
        if not self.repository.update_task_blocked_by(
            task.task_id,
            blocked_by=blockers,
            expected_state=task.state,
            new_state=new_state,
        ):
            raise ConcurrencyConflictError(task.task_id, "edit")


def _require_text(value: str, label: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValidationError(f"{label} must not be empty.")
    return stripped


def _wrong_state(
    task: TaskView,
    operation: str,
    expected: Sequence[TaskState],
) -> InvalidStateError:
    allowed = " or ".join(f"'{state.value}'" for state in expected)
    return InvalidStateError(
        task.task_id,
        task.state.value,
        f"Task must be in {allowed} state to {operation}. Current state: {task.state.value}",
    )
