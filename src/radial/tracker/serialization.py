"""JSON-ready dict representations of tracker views."""

from __future__ import annotations

from datetime import datetime

from radial.tracker.models import (
    CascadeResult,
    CompletionResult,
    GoalDetails,
    GoalOverview,
    GoalView,
    TaskComment,
    TaskDetails,
    TaskView,
)


def goal_to_dict(goal: GoalView) -> dict[str, object]:
    return {
        "id": goal.goal_id,
        "parent_id": goal.parent_id,
        "description": goal.description,
        "state": goal.state.value,
        "created_at": _isoformat(goal.created_at),
        "updated_at": _isoformat(goal.updated_at),
        "completed_at": _isoformat(goal.completed_at),
        "metrics": {
            "task_count": goal.metrics.task_count,
            "tasks_completed": goal.metrics.tasks_completed,
            "tasks_failed": goal.metrics.tasks_failed,
            "total_tokens": goal.metrics.total_tokens,
            "elapsed_ms": goal.metrics.elapsed_ms,
        },
    }


def task_to_dict(task: TaskView) -> dict[str, object]:
    contract = None
    if task.contract is not None:
        contract = {
            "receives": task.contract.receives,
            "produces": task.contract.produces,
            "verify": task.contract.verify,
        }
    result = None
    if task.result is not None:
        result = {"summary": task.result.summary, "artifacts": list(task.result.artifacts)}

    return {
        "id": task.task_id,
        "goal_id": task.goal_id,
        "description": task.description,
        "contract": contract,
        "state": task.state.value,
        "blocked_by": list(task.blocked_by),
        "result": result,
        "comments": [comment_to_dict(comment) for comment in task.comments],
        "created_at": _isoformat(task.created_at),
        "updated_at": _isoformat(task.updated_at),
        "completed_at": _isoformat(task.completed_at),
        "metrics": {
            "tokens": task.metrics.tokens,
            "elapsed_ms": task.metrics.elapsed_ms,
            "retry_count": task.metrics.retry_count,
        },
    }


def comment_to_dict(comment: TaskComment) -> dict[str, object]:
    return {"body": comment.body, "created_at": _isoformat(comment.created_at)}


def details_to_dict(details: TaskDetails | GoalDetails) -> dict[str, object]:
    """Tagged ``show`` payload: ``{"kind": "task"|"goal", ...}``."""

    if isinstance(details, TaskDetails):
        return {"kind": details.kind, "task": task_to_dict(details.task)}
    return {
        "kind": details.kind,
        "goal": goal_to_dict(details.goal),
        "tasks": [task_to_dict(task) for task in details.tasks],
    }


def overview_to_dict(overview: GoalOverview) -> dict[str, object]:
    return {
        "goal": goal_to_dict(overview.goal),
        "tasks": [task_to_dict(task) for task in overview.tasks],
    }


def completion_to_dict(result: CompletionResult) -> dict[str, object]:
    return {
        "task": task_to_dict(result.task),
        "unblocked": list(result.unblocked_task_ids),
        "goal": goal_to_dict(result.goal),
    }


def cascade_to_dict(result: CascadeResult) -> dict[str, object]:
    return {"unblocked": list(result.unblocked_task_ids), "goal": goal_to_dict(result.goal)}


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
