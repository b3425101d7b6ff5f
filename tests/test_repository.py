from __future__ import annotations

import multiprocessing
from pathlib import Path

import allure
import pytest
from sqlalchemy import text

from radial.tracker.errors import (
    DuplicateIdError,
    InvalidStateError,
    RadialError,
    StorageError,
    ValidationError,
)
from radial.tracker.lifecycle import LifecycleEngine
from radial.tracker.models import (
    Contract,
    GoalCreate,
    GoalState,
    Outcome,
    TaskCreate,
    TaskState,
)
from radial.tracker.repository import TrackerRepository

pytestmark = [
    allure.epic("Tracker Core"),
    allure.feature("Entity Store"),
]


def _run_start(  # pragma: no cover - executed in child process
    db_path: str,
    task_id: str,
    label: str,
    start_event: multiprocessing.synchronize.Event,
    result_queue: multiprocessing.queues.Queue[tuple[str, str, str]],
) -> None:
    repository = TrackerRepository(Path(db_path))
    try:
        start_event.wait(timeout=5)
        LifecycleEngine(repository).start_task(task_id)
        result_queue.put((label, "ok", ""))
    except RadialError as error:
        result_queue.put((label, error.code, str(error)))
    finally:
        repository.close()


def _seed_goal(repository: TrackerRepository, goal_id: str = "goal0001") -> str:
    repository.create_goal(GoalCreate(goal_id=goal_id, description="Ship v1"))
    return goal_id


def test_schema_is_migrated_to_head(repository: TrackerRepository) -> None:
    with repository.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar_one()
        tables = {
            row[0]
            for row in connection.execute(
                text("SELECT name FROM sqlite_master WHERE type = 'table'"),
            )
        }
        journal_mode = connection.execute(text("PRAGMA journal_mode")).scalar_one()
        foreign_keys = connection.execute(text("PRAGMA foreign_keys")).scalar_one()

    assert version == "20261009_0002"
    assert {"goals", "tasks", "task_comments"} <= tables
    assert str(journal_mode).lower() == "wal"
    assert foreign_keys == 1


def test_init_schema_is_idempotent(repository: TrackerRepository) -> None:
    _seed_goal(repository)
    repository.init_schema()
    assert [goal.goal_id for goal in repository.list_goals()] == ["goal0001"]


def test_init_schema_creates_parent_directory(tmp_path: Path) -> None:
    repository = TrackerRepository(tmp_path / "nested" / ".radial" / "radial.db")
    repository.init_schema()
    assert (tmp_path / "nested" / ".radial" / "radial.db").exists()
    repository.close()


def test_init_schema_wraps_filesystem_failures(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    repository = TrackerRepository(blocker / "radial.db")
    with pytest.raises(StorageError):
        repository.init_schema()
    repository.close()


def test_goal_round_trip_with_derived_metrics(repository: TrackerRepository) -> None:
    created = repository.create_goal(GoalCreate(goal_id="goal0001", description="Ship v1"))
    assert created.state == GoalState.PENDING
    assert created.completed_at is None
    assert created.created_at.tzinfo is not None

    loaded = repository.get_goal("goal0001")
    assert loaded is not None
    assert loaded.description == "Ship v1"
    assert loaded.metrics.task_count == 0
    assert repository.get_goal("missing0") is None


def test_duplicate_goal_id_is_rejected(repository: TrackerRepository) -> None:
    _seed_goal(repository)
    with pytest.raises(DuplicateIdError):
        repository.create_goal(GoalCreate(goal_id="goal0001", description="again"))


def test_duplicate_task_id_is_rejected(repository: TrackerRepository) -> None:
    goal_id = _seed_goal(repository)
    repository.create_task(TaskCreate(task_id="task0001", goal_id=goal_id, description="a"))
    with pytest.raises(DuplicateIdError):
        repository.create_task(TaskCreate(task_id="task0001", goal_id=goal_id, description="b"))


def test_goals_are_listed_newest_first(repository: TrackerRepository) -> None:
    for goal_id in ("goal0001", "goal0002", "goal0003"):
        _seed_goal(repository, goal_id)
    assert [goal.goal_id for goal in repository.list_goals()] == [
        "goal0003",
        "goal0002",
        "goal0001",
    ]


def test_create_task_promotes_pending_goal(repository: TrackerRepository) -> None:
    goal_id = _seed_goal(repository)
    task = repository.create_task(
        TaskCreate(task_id="task0001", goal_id=goal_id, description="write tests"),
    )
    assert task.state == TaskState.PENDING
    assert task.contract is None
    assert task.result is None

    goal = repository.get_goal(goal_id)
    assert goal is not None
    assert goal.state == GoalState.IN_PROGRESS
    assert goal.metrics.task_count == 1


def test_task_with_blockers_is_created_blocked(repository: TrackerRepository) -> None:
    goal_id = _seed_goal(repository)
    repository.create_task(TaskCreate(task_id="task0001", goal_id=goal_id, description="a"))
    task = repository.create_task(
        TaskCreate(
            task_id="task0002",
            goal_id=goal_id,
            description="b",
            blocked_by=("task0001",),
        ),
    )
    assert task.state == TaskState.BLOCKED
    assert task.blocked_by == ("task0001",)


def test_tasks_are_listed_in_creation_order(repository: TrackerRepository) -> None:
    goal_id = _seed_goal(repository)
    for task_id in ("task000c", "task000a", "task000b"):
        repository.create_task(TaskCreate(task_id=task_id, goal_id=goal_id, description=task_id))
    assert [task.task_id for task in repository.list_tasks(goal_id)] == [
        "task000c",
        "task000a",
        "task000b",
    ]
    assert sorted(repository.list_task_ids(goal_id)) == ["task000a", "task000b", "task000c"]
    assert repository.list_task_ids("missing0") == []


def test_contract_with_partial_fields_stores_empty_strings(
    repository: TrackerRepository,
) -> None:
    goal_id = _seed_goal(repository)
    repository.create_task(
        TaskCreate(
            task_id="task0001",
            goal_id=goal_id,
            description="a",
            contract=Contract.from_fields(receives="input", produces=None, verify=None),
        ),
    )
    task = repository.get_task("task0001")
    assert task is not None
    assert task.contract == Contract(receives="input", produces="", verify="")


def test_transition_applies_only_from_expected_state(repository: TrackerRepository) -> None:
    goal_id = _seed_goal(repository)
    repository.create_task(TaskCreate(task_id="task0001", goal_id=goal_id, description="a"))

    assert repository.transition_task_state(
        "task0001",
        from_states=(TaskState.PENDING,),
        to_state=TaskState.IN_PROGRESS,
    )
    assert not repository.transition_task_state(
        "task0001",
        from_states=(TaskState.PENDING,),
        to_state=TaskState.IN_PROGRESS,
    )
    assert not repository.transition_task_state(
        "missing0",
        from_states=(TaskState.PENDING,),
        to_state=TaskState.IN_PROGRESS,
    )
    task = repository.get_task("task0001")
    assert task is not None
    assert task.state == TaskState.IN_PROGRESS
    assert task.updated_at >= task.created_at


def test_complete_records_result_and_metrics(repository: TrackerRepository) -> None:
    goal_id = _seed_goal(repository)
    repository.create_task(TaskCreate(task_id="task0001", goal_id=goal_id, description="a"))
    outcome = Outcome(summary="done", artifacts=("src/a.py", "src/b.py"))

    assert not repository.complete_task("task0001", outcome=outcome, tokens=5, elapsed_ms=7)
    repository.transition_task_state(
        "task0001",
        from_states=(TaskState.PENDING,),
        to_state=TaskState.IN_PROGRESS,
    )
    assert repository.complete_task("task0001", outcome=outcome, tokens=1500, elapsed_ms=30000)

    task = repository.get_task("task0001")
    assert task is not None
    assert task.state == TaskState.COMPLETED
    assert task.result == outcome
    assert task.completed_at is not None
    assert task.metrics.tokens == 1500
    assert task.metrics.elapsed_ms == 30000

    metrics = repository.compute_goal_metrics(goal_id)
    assert metrics.task_count == 1
    assert metrics.tasks_completed == 1
    assert metrics.tasks_failed == 0
    assert metrics.total_tokens == 1500
    assert metrics.elapsed_ms == 30000


def test_retry_increments_retry_count_once(repository: TrackerRepository) -> None:
    goal_id = _seed_goal(repository)
    repository.create_task(TaskCreate(task_id="task0001", goal_id=goal_id, description="a"))
    assert not repository.retry_task("task0001")

    repository.transition_task_state(
        "task0001",
        from_states=(TaskState.PENDING,),
        to_state=TaskState.FAILED,
    )
    assert repository.retry_task("task0001")
    assert not repository.retry_task("task0001")

    task = repository.get_task("task0001")
    assert task is not None
    assert task.state == TaskState.IN_PROGRESS
    assert task.metrics.retry_count == 1


def test_goal_transition_stamps_completed_at_only_for_completed(
    repository: TrackerRepository,
) -> None:
    goal_id = _seed_goal(repository)
    assert repository.transition_goal_state(
        goal_id,
        from_states=(GoalState.PENDING,),
        to_state=GoalState.COMPLETED,
    )
    goal = repository.get_goal(goal_id)
    assert goal is not None
    assert goal.completed_at is not None

    assert repository.transition_goal_state(
        goal_id,
        from_states=(GoalState.COMPLETED,),
        to_state=GoalState.FAILED,
    )
    goal = repository.get_goal(goal_id)
    assert goal is not None
    assert goal.state == GoalState.FAILED
    assert goal.completed_at is None


def test_update_blocked_by_is_guarded_by_state(repository: TrackerRepository) -> None:
    goal_id = _seed_goal(repository)
    repository.create_task(TaskCreate(task_id="task0001", goal_id=goal_id, description="a"))
    repository.create_task(TaskCreate(task_id="task0002", goal_id=goal_id, description="b"))

    assert not repository.update_task_blocked_by(
        "task0002",
        blocked_by=("task0001",),
        expected_state=TaskState.BLOCKED,
        new_state=TaskState.BLOCKED,
    )
    assert repository.update_task_blocked_by(
        "task0002",
        blocked_by=("task0001",),
        expected_state=TaskState.PENDING,
        new_state=TaskState.BLOCKED,
    )
    task = repository.get_task("task0002")
    assert task is not None
    assert task.state == TaskState.BLOCKED
    assert task.blocked_by == ("task0001",)


def test_comments_are_append_only_and_ordered(repository: TrackerRepository) -> None:
    goal_id = _seed_goal(repository)
    repository.create_task(TaskCreate(task_id="task0001", goal_id=goal_id, description="a"))

    repository.add_comment("task0001", "first")
    repository.add_comment("task0001", "second")
    assert repository.add_comment("missing0", "lost") is None

    task = repository.get_task("task0001")
    assert task is not None
    assert [comment.body for comment in task.comments] == ["first", "second"]
    listed = repository.list_tasks(goal_id)
    assert [comment.body for comment in listed[0].comments] == ["first", "second"]


def test_delete_task_only_when_pending(repository: TrackerRepository) -> None:
    goal_id = _seed_goal(repository)
    repository.create_task(TaskCreate(task_id="task0001", goal_id=goal_id, description="a"))
    repository.add_comment("task0001", "note")
    repository.transition_task_state(
        "task0001",
        from_states=(TaskState.PENDING,),
        to_state=TaskState.IN_PROGRESS,
    )
    assert not repository.delete_task("task0001")

    repository.transition_task_state(
        "task0001",
        from_states=(TaskState.IN_PROGRESS,),
        to_state=TaskState.PENDING,
    )
    assert repository.delete_task("task0001")
    assert repository.get_task("task0001") is None


def test_delete_task_rechecks_dependents_in_transaction(repository: TrackerRepository) -> None:
    goal_id = _seed_goal(repository)
    repository.create_task(TaskCreate(task_id="task0001", goal_id=goal_id, description="a"))
    repository.create_task(
        TaskCreate(
            task_id="task0002",
            goal_id=goal_id,
            description="b",
            blocked_by=("task0001",),
        ),
    )

    with pytest.raises(InvalidStateError, match="task0002"):
        repository.delete_task("task0001")
    assert repository.get_task("task0001") is not None


def test_create_task_rejects_blocker_missing_at_insert(repository: TrackerRepository) -> None:
    goal_id = _seed_goal(repository)
    other_goal = _seed_goal(repository, "goal0002")
    repository.create_task(TaskCreate(task_id="task0001", goal_id=other_goal, description="a"))

    for blocker in ("gone0001", "task0001"):
        with pytest.raises(ValidationError, match=blocker):
            repository.create_task(
                TaskCreate(
                    task_id="task0002",
                    goal_id=goal_id,
                    description="b",
                    blocked_by=(blocker,),
                ),
            )
    assert repository.get_task("task0002") is None
    assert repository.get_goal(goal_id).state == GoalState.PENDING


def test_delete_goal_removes_tasks_and_comments(repository: TrackerRepository) -> None:
    goal_id = _seed_goal(repository)
    repository.create_task(TaskCreate(task_id="task0001", goal_id=goal_id, description="a"))
    repository.create_task(TaskCreate(task_id="task0002", goal_id=goal_id, description="b"))
    repository.add_comment("task0001", "note")

    assert repository.delete_goal(goal_id) == 2
    assert repository.get_goal(goal_id) is None
    assert repository.list_task_ids() == []
    with repository.engine.connect() as connection:
        comments = connection.execute(text("SELECT COUNT(*) FROM task_comments")).scalar_one()
    assert comments == 0
    assert repository.delete_goal(goal_id) is None


def test_corrupt_state_surfaces_as_storage_error(repository: TrackerRepository) -> None:
    goal_id = _seed_goal(repository)
    repository.create_task(TaskCreate(task_id="task0001", goal_id=goal_id, description="a"))
    with repository.engine.begin() as connection:
        connection.execute(text("UPDATE tasks SET state = 'exploded' WHERE id = 'task0001'"))

    with pytest.raises(StorageError, match="task0001"):
        repository.get_task("task0001")


def test_concurrent_start_has_exactly_one_winner_across_processes(tmp_path: Path) -> None:
    db_path = tmp_path / "radial-start-race.db"
    repository = TrackerRepository(db_path)
    repository.init_schema()
    goal_id = _seed_goal(repository)
    repository.create_task(
        TaskCreate(
            task_id="task0001",
            goal_id=goal_id,
            description="contested",
            contract=Contract(receives="r", produces="p", verify="v"),
        ),
    )
    repository.close()

    context = multiprocessing.get_context("spawn")
    start_event = context.Event()
    result_queue: multiprocessing.queues.Queue[tuple[str, str, str]] = context.Queue()
    processes = [
        context.Process(
            target=_run_start,
            args=(str(db_path), "task0001", label, start_event, result_queue),
        )
        for label in ("agent-a", "agent-b")
    ]
    for process in processes:
        process.start()
    start_event.set()
    for process in processes:
        process.join(timeout=20)
        assert process.exitcode == 0

    outcomes = [result_queue.get(timeout=5)[1] for _ in processes]
    assert outcomes.count("ok") == 1
    loser = next(outcome for outcome in outcomes if outcome != "ok")
    assert loser in {"concurrency_conflict", "invalid_state"}

    verify_repository = TrackerRepository(db_path)
    task = verify_repository.get_task("task0001")
    assert task is not None
    assert task.state == TaskState.IN_PROGRESS
    verify_repository.close()


def test_new_task_reopens_completed_goal(repository: TrackerRepository) -> None:
    goal_id = _seed_goal(repository)
    repository.transition_goal_state(
        goal_id,
        from_states=(GoalState.PENDING,),
        to_state=GoalState.COMPLETED,
    )
    repository.create_task(TaskCreate(task_id="task0001", goal_id=goal_id, description="late"))

    goal = repository.get_goal(goal_id)
    assert goal is not None
    assert goal.state == GoalState.IN_PROGRESS
    assert goal.completed_at is None
