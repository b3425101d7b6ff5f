"""Domain models for goals, tasks, and lifecycle results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Literal


class GoalState(str, Enum):
    """Goal lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskState(str, Enum):
    """Task lifecycle states.

    ``VERIFYING`` has no inbound transition yet; it is accepted as a source
    state for ``fail``.
    """

    PENDING = "pending"
    BLOCKED = "blocked"
    IN_PROGRESS = "in_progress"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class Contract:
    """What a task receives, what it produces, and how that is verified."""

    receives: str = ""
    produces: str = ""
    verify: str = ""

    @classmethod
    def from_fields(
        cls,
        *,
        receives: str | None,
        produces: str | None,
        verify: str | None,
    ) -> Contract | None:
        """Build a contract when at least one field was supplied."""

        if receives is None and produces is None and verify is None:
            return None
        return cls(receives=receives or "", produces=produces or "", verify=verify or "")

    def merged(
        self,
        *,
        receives: str | None,
        produces: str | None,
        verify: str | None,
    ) -> Contract:
        return Contract(
            receives=self.receives if receives is None else receives,
            produces=self.produces if produces is None else produces,
            verify=self.verify if verify is None else verify,
        )


@dataclass(slots=True, frozen=True)
class Outcome:
    """Result recorded when a task completes."""

    summary: str
    artifacts: tuple[str, ...] = ()


@dataclass(slots=True)
class TaskMetrics:
    tokens: int = 0
    elapsed_ms: int = 0
    retry_count: int = 0


@dataclass(slots=True)
class GoalMetrics:
    """Rollup derived from the goal's tasks on every read."""

    task_count: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    total_tokens: int = 0
    elapsed_ms: int = 0


@dataclass(slots=True, frozen=True)
class TaskComment:
    comment_id: int
    task_id: str
    body: str
    created_at: datetime


@dataclass(slots=True)
class GoalCreate:
    """Input payload for inserting a goal."""

    goal_id: str
    description: str
    parent_id: str | None = None


@dataclass(slots=True)
class TaskCreate:
    """Input payload for inserting a task."""

    task_id: str
    goal_id: str
    description: str
    contract: Contract | None = None
    blocked_by: tuple[str, ...] = ()


@dataclass(slots=True)
class GoalView:
    """Readable goal view for CLI and engine logic."""

    goal_id: str
    parent_id: str | None
    description: str
    state: GoalState
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None
    metrics: GoalMetrics = field(default_factory=GoalMetrics)


@dataclass(slots=True)
class TaskView:
    """Readable task view for CLI and engine logic."""

    task_id: str
    goal_id: str
    description: str
    contract: Contract | None
    state: TaskState
    blocked_by: tuple[str, ...]
    result: Outcome | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None
    metrics: TaskMetrics = field(default_factory=TaskMetrics)
    comments: list[TaskComment] = field(default_factory=list)

    @property
    def has_contract(self) -> bool:
        return self.contract is not None

    @property
    def is_ready(self) -> bool:
        return self.state == TaskState.PENDING and self.contract is not None


@dataclass(slots=True)
class CompletionResult:
    """Outcome of ``complete``: the task, the tasks it released, and the goal rollup."""

    task: TaskView
    unblocked_task_ids: list[str]
    goal: GoalView


@dataclass(slots=True)
class CascadeResult:
    unblocked_task_ids: list[str]
    goal: GoalView


@dataclass(slots=True)
class TaskDetails:
    task: TaskView
    kind: Literal["task"] = "task"


@dataclass(slots=True)
class GoalDetails:
    goal: GoalView
    tasks: list[TaskView]
    kind: Literal["goal"] = "goal"


ShowResult = TaskDetails | GoalDetails


@dataclass(slots=True)
class GoalOverview:
    """Goal with its tasks in dependency order."""

    goal: GoalView
    tasks: list[TaskView]
