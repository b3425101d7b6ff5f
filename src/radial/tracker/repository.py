"""Goal/task persistence facade backed by SQLModel + SQLite.

Lifecycle state only changes through the conditional ``transition_*``,
``complete_task``, ``retry_task``, ``update_task_blocked_by`` and
``delete_task`` methods.  Each issues a single guarded statement as the first
statement of its own transaction and reports whether the guard held.
Task creation and deletion recheck dependency edges inside that same
transaction, after the write lock is held.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from alembic.util import CommandError
from sqlalchemy import case, func, literal_column
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, delete, select

from radial.storage.alembic_runner import upgrade_head
from radial.storage.common import (
    DEFAULT_BUSY_TIMEOUT_MS,
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from radial.storage.sqlmodel_models import GoalRow, TaskCommentRow, TaskRow
from radial.tracker.errors import (
    DuplicateIdError,
    InvalidStateError,
    StorageError,
    ValidationError,
)
from radial.tracker.models import (
    Contract,
    GoalCreate,
    GoalMetrics,
    GoalState,
    GoalView,
    Outcome,
    TaskComment,
    TaskCreate,
    TaskMetrics,
    TaskState,
    TaskView,
)

logger = logging.getLogger(__name__)

_TASK_CREATION_ORDER = (col(TaskRow.created_at).asc(), literal_column("tasks.rowid").asc())


class TrackerRepository:
    """Store facade for goals, tasks and task comments."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Create the database file if needed and run schema migrations."""

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            upgrade_head(self.db_path)
        except (CommandError, SQLAlchemyError, OSError) as error:
            raise StorageError(f"Failed to initialize store at {self.db_path}: {error}") from error

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    def create_goal(self, payload: GoalCreate) -> GoalView:
        now = utc_now()
        with self._session("create goal") as session:
            row = GoalRow(
                id=payload.goal_id,
                parent_id=payload.parent_id,
                description=payload.description,
                state=GoalState.PENDING.value,
                created_at=to_db_datetime(now),
                updated_at=to_db_datetime(now),
                completed_at=None,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise DuplicateIdError(f"Goal id already exists: {payload.goal_id}") from error
            session.refresh(row)
            return _to_goal_view(row, GoalMetrics())

    def get_goal(self, goal_id: str) -> GoalView | None:
        with self._session("read goal") as session:
            row = session.get(GoalRow, goal_id)
            if row is None:
                return None
            metrics = self._metrics_by_goal(session, goal_ids=[goal_id])
        return _to_goal_view(row, metrics.get(goal_id, GoalMetrics()))

    def list_goals(self) -> list[GoalView]:
        """All goals, newest first, with derived metrics."""

        with self._session("list goals") as session:
            rows = session.exec(
                select(GoalRow).order_by(
                    col(GoalRow.created_at).desc(),
                    literal_column("goals.rowid").desc(),
                ),
            ).all()
            metrics = self._metrics_by_goal(session, goal_ids=None)
        return [_to_goal_view(row, metrics.get(row.id, GoalMetrics())) for row in rows]

    def list_goal_ids(self) -> list[str]:
        with self._session("list goal ids") as session:
            return list(session.exec(select(GoalRow.id)).all())

    def update_goal_description(self, goal_id: str, description: str) -> bool:
        now = utc_now()
        with self._session("update goal") as session:
            result = session.exec(
                sa_update(GoalRow)
                .where(col(GoalRow.id) == goal_id)
                .values(description=description, updated_at=to_db_datetime(now)),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def transition_goal_state(
        self,
        goal_id: str,
        *,
        from_states: Iterable[GoalState],
        to_state: GoalState,
    ) -> bool:
        """Conditionally move a goal; ``completed_at`` is stamped iff ``to_state`` is completed."""

        now = utc_now()
        expected = [state.value for state in from_states]
        completed_at = to_db_datetime(now) if to_state == GoalState.COMPLETED else None
        with self._session("transition goal") as session:
            result = session.exec(
                sa_update(GoalRow)
                .where(
                    col(GoalRow.id) == goal_id,
                    col(GoalRow.state).in_(expected),
                )
                .values(
                    state=to_state.value,
                    completed_at=completed_at,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                logger.debug("Goal %s not in %s; skipped -> %s", goal_id, expected, to_state.value)
                return False
            session.commit()
            return True

    def delete_goal(self, goal_id: str) -> int | None:
        """Delete a goal and its tasks; returns removed task count, ``None`` if absent."""

        with self._session("delete goal") as session:
            task_ids = list(
                session.exec(select(TaskRow.id).where(col(TaskRow.goal_id) == goal_id)).all(),
            )
            if task_ids:
                session.exec(
                    delete(TaskCommentRow).where(col(TaskCommentRow.task_id).in_(task_ids)),
                )
                session.exec(delete(TaskRow).where(col(TaskRow.goal_id) == goal_id))
            result = session.exec(delete(GoalRow).where(col(GoalRow.id) == goal_id))
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()
        return len(task_ids)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, payload: TaskCreate) -> TaskView:
        """Insert a task and move its goal to in-progress.

        A pending goal is promoted and a completed goal is reopened; a failed
        goal keeps its state.  Initial task state is blocked iff ``blocked_by``
        is non-empty; every blocker must still exist in the goal.
        """

        now = utc_now()
        state = TaskState.BLOCKED if payload.blocked_by else TaskState.PENDING
        contract = payload.contract
        with self._session("create task") as session:
            session.exec(
                sa_update(GoalRow)
                .where(
                    col(GoalRow.id) == payload.goal_id,
                    col(GoalRow.state).in_([GoalState.PENDING.value, GoalState.COMPLETED.value]),
                )
                .values(state=GoalState.IN_PROGRESS.value, completed_at=None),
            )
            session.exec(
                sa_update(GoalRow)
                .where(col(GoalRow.id) == payload.goal_id)
                .values(updated_at=to_db_datetime(now)),
            )
            missing = _missing_blockers(session, payload.goal_id, payload.blocked_by)
            if missing:
                session.rollback()
                raise ValidationError(
                    f"Blocked-by task no longer exists in goal: {', '.join(missing)}",
                )
            row = TaskRow(
                id=payload.task_id,
                goal_id=payload.goal_id,
                description=payload.description,
                contract_receives=contract.receives if contract is not None else None,
                contract_produces=contract.produces if contract is not None else None,
                contract_verify=contract.verify if contract is not None else None,
                state=state.value,
                blocked_by_json=json.dumps(list(payload.blocked_by)),
                created_at=to_db_datetime(now),
                updated_at=to_db_datetime(now),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise DuplicateIdError(
                    f"Task id already exists or goal is missing: {payload.task_id}",
                ) from error
            session.refresh(row)
            return _to_task_view(row, [])

    def get_task(self, task_id: str) -> TaskView | None:
        with self._session("read task") as session:
            row = session.get(TaskRow, task_id)
            if row is None:
                return None
            comments = self._comments_by_task(session, [task_id])
        return _to_task_view(row, comments.get(task_id, []))

    def list_tasks(self, goal_id: str) -> list[TaskView]:
        """Tasks of one goal in creation order, with comments."""

        with self._session("list tasks") as session:
            rows = session.exec(
                select(TaskRow)
                .where(col(TaskRow.goal_id) == goal_id)
                .order_by(*_TASK_CREATION_ORDER),
            ).all()
            comments = self._comments_by_task(session, [row.id for row in rows])
        return [_to_task_view(row, comments.get(row.id, [])) for row in rows]

    def list_task_ids(self, goal_id: str | None = None) -> list[str]:
        with self._session("list task ids") as session:
            statement = select(TaskRow.id)
            if goal_id is not None:
                statement = statement.where(col(TaskRow.goal_id) == goal_id)
            return list(session.exec(statement).all())

    def update_task_details(
        self,
        task_id: str,
        *,
        description: str | None = None,
        contract: Contract | None = None,
    ) -> bool:
        """Edit non-lifecycle fields."""

        now = utc_now()
        values: dict[str, object] = {"updated_at": to_db_datetime(now)}
        if description is not None:
            values["description"] = description
        if contract is not None:
            values["contract_receives"] = contract.receives
            values["contract_produces"] = contract.produces
            values["contract_verify"] = contract.verify
        with self._session("update task") as session:
            result = session.exec(
                sa_update(TaskRow).where(col(TaskRow.id) == task_id).values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def update_task_blocked_by(
        self,
        task_id: str,
        *,
        blocked_by: tuple[str, ...],
        expected_state: TaskState,
        new_state: TaskState,
    ) -> bool:
        """Replace ``blocked_by`` and set state, guarded on the current state."""

        now = utc_now()
        with self._session("update task dependencies") as session:
            result = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.id) == task_id,
                    col(TaskRow.state) == expected_state.value,
                )
                .values(
                    blocked_by_json=json.dumps(list(blocked_by)),
                    state=new_state.value,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def transition_task_state(
        self,
        task_id: str,
        *,
        from_states: Iterable[TaskState],
        to_state: TaskState,
    ) -> bool:
        """Set state and bump ``updated_at`` only if current state is in ``from_states``."""

        now = utc_now()
        expected = [state.value for state in from_states]
        with self._session("transition task") as session:
            result = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.id) == task_id,
                    col(TaskRow.state).in_(expected),
                )
                .values(state=to_state.value, updated_at=to_db_datetime(now)),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def complete_task(
        self,
        task_id: str,
        *,
        outcome: Outcome,
        tokens: int,
        elapsed_ms: int,
    ) -> bool:
        """Move an in-progress task to completed, recording result and metrics."""

        now = utc_now()
        with self._session("complete task") as session:
            result = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.id) == task_id,
                    col(TaskRow.state) == TaskState.IN_PROGRESS.value,
                )
                .values(
                    state=TaskState.COMPLETED.value,
                    result_summary=outcome.summary,
                    result_artifacts_json=json.dumps(list(outcome.artifacts)),
                    tokens=tokens,
                    elapsed_ms=elapsed_ms,
                    completed_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def retry_task(self, task_id: str) -> bool:
        """Move a failed task back to in-progress and bump ``retry_count``."""

        now = utc_now()
        with self._session("retry task") as session:
            result = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.id) == task_id,
                    col(TaskRow.state) == TaskState.FAILED.value,
                )
                .values(
                    state=TaskState.IN_PROGRESS.value,
                    retry_count=TaskRow.retry_count + 1,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def delete_task(self, task_id: str, *, expected_state: TaskState = TaskState.PENDING) -> bool:
        with self._session("delete task") as session:
            result = session.exec(
                delete(TaskRow).where(
                    col(TaskRow.id) == task_id,
                    col(TaskRow.state) == expected_state.value,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            dependents = session.exec(
                select(TaskRow.id).where(
                    col(TaskRow.blocked_by_json).contains(json.dumps(task_id)),
                ),
            ).all()
            if dependents:
                session.rollback()
                raise InvalidStateError(
                    task_id,
                    expected_state.value,
                    f"Task is a blocker for: {', '.join(dependents)}",
                )
            session.exec(delete(TaskCommentRow).where(col(TaskCommentRow.task_id) == task_id))
            session.commit()
            return True

    # ------------------------------------------------------------------
    # Comments and metrics
    # ------------------------------------------------------------------

    def add_comment(self, task_id: str, body: str) -> TaskComment | None:
        now = utc_now()
        with self._session("add comment") as session:
            if session.get(TaskRow, task_id) is None:
                return None
            row = TaskCommentRow(task_id=task_id, body=body, created_at=to_db_datetime(now))
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_comment(row)

    def compute_goal_metrics(self, goal_id: str) -> GoalMetrics:
        with self._session("compute goal metrics") as session:
            metrics = self._metrics_by_goal(session, goal_ids=[goal_id])
        return metrics.get(goal_id, GoalMetrics())

    def _metrics_by_goal(
        self,
        session: Session,
        *,
        goal_ids: list[str] | None,
    ) -> dict[str, GoalMetrics]:
        statement = select(
            TaskRow.goal_id,
            func.count(),
            func.sum(case((col(TaskRow.state) == TaskState.COMPLETED.value, 1), else_=0)),
            func.sum(case((col(TaskRow.state) == TaskState.FAILED.value, 1), else_=0)),
            func.sum(TaskRow.tokens),
            func.sum(TaskRow.elapsed_ms),
        ).group_by(TaskRow.goal_id)
        if goal_ids is not None:
            statement = statement.where(col(TaskRow.goal_id).in_(goal_ids))

        metrics: dict[str, GoalMetrics] = {}
        for goal_id, count, completed, failed, tokens, elapsed_ms in session.exec(statement).all():
            metrics[goal_id] = GoalMetrics(
                task_count=int(count or 0),
                tasks_completed=int(completed or 0),
                tasks_failed=int(failed or 0),
                total_tokens=int(tokens or 0),
                elapsed_ms=int(elapsed_ms or 0),
            )
        return metrics

    def _comments_by_task(
        self,
        session: Session,
        task_ids: list[str],
    ) -> dict[str, list[TaskComment]]:
        if not task_ids:
            return {}
        rows = session.exec(
            select(TaskCommentRow)
            .where(col(TaskCommentRow.task_id).in_(task_ids))
            .order_by(col(TaskCommentRow.created_at).asc(), col(TaskCommentRow.id).asc()),
        ).all()
        grouped: dict[str, list[TaskComment]] = defaultdict(list)
        for row in rows:
            grouped[row.task_id].append(_to_comment(row))
        return grouped

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as error:
            raise StorageError(f"Failed to {action} in {self.db_path}: {error}") from error


def _to_goal_view(row: GoalRow, metrics: GoalMetrics) -> GoalView:
    return GoalView(
        goal_id=row.id,
        parent_id=row.parent_id,
        description=row.description,
        state=_parse_enum(GoalState, row.state, row.id),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        completed_at=_optional_datetime(row.completed_at),
        metrics=metrics,
    )


def _to_task_view(row: TaskRow, comments: list[TaskComment]) -> TaskView:
    contract = None
    if (
        row.contract_receives is not None
        or row.contract_produces is not None
        or row.contract_verify is not None
    ):
        contract = Contract(
            receives=row.contract_receives or "",
            produces=row.contract_produces or "",
            verify=row.contract_verify or "",
        )

    state = _parse_enum(TaskState, row.state, row.id)
    result = None
    if row.result_summary is not None:
        result = Outcome(
            summary=row.result_summary,
            artifacts=_decode_id_list(row.result_artifacts_json, row.id),
        )

    return TaskView(
        task_id=row.id,
        goal_id=row.goal_id,
        description=row.description,
        contract=contract,
        state=state,
        blocked_by=_decode_id_list(row.blocked_by_json, row.id),
        result=result if state == TaskState.COMPLETED else None,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        completed_at=_optional_datetime(row.completed_at),
        metrics=TaskMetrics(
            tokens=row.tokens,
            elapsed_ms=row.elapsed_ms,
            retry_count=row.retry_count,
        ),
        comments=comments,
    )


def _to_comment(row: TaskCommentRow) -> TaskComment:
    return TaskComment(
        comment_id=row.id or 0,
        task_id=row.task_id,
        body=row.body,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _optional_datetime(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def _parse_enum(
    enum_type: type[GoalState] | type[TaskState],
    value: str,
    entity_id: str,
) -> GoalState | TaskState:
    try:
        return enum_type(value)
    except ValueError as error:
        raise StorageError(f"Corrupt record {entity_id}: unknown state {value!r}") from error


def _decode_id_list(raw: str | None, entity_id: str) -> tuple[str, ...]:
    if not raw:
        return ()
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as error:
        raise StorageError(f"Corrupt record {entity_id}: invalid JSON list") from error
    if not isinstance(parsed, list):
        raise StorageError(f"Corrupt record {entity_id}: expected JSON list")
    return tuple(str(item) for item in parsed)


def _missing_blockers(session: Session, goal_id: str, blocked_by: Iterable[str]) -> list[str]:
    wanted = list(dict.fromkeys(blocked_by))
    if not wanted:
        return []
    present = set(
        session.exec(
            select(TaskRow.id).where(
                col(TaskRow.goal_id) == goal_id,
                col(TaskRow.id).in_(wanted),
            ),
        ).all(),
    )
    return [task_id for task_id in wanted if task_id not in present]
