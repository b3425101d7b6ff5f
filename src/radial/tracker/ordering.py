"""Dependency ordering over ``blocked_by`` edges."""

from __future__ import annotations

import heapq
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence

from radial.tracker.models import TaskView


def topo_sort(tasks: Sequence[TaskView]) -> list[TaskView]:
    """Stable Kahn ordering: blockers first, ties broken by creation order.

    Edges to ids outside ``tasks`` are ignored.  Tasks left over by a cycle are
    appended in creation order rather than dropped.
    """

    ranked = sorted(enumerate(tasks), key=lambda pair: (pair[1].created_at, pair[0]))
    rank = {task.task_id: position for position, (_, task) in enumerate(ranked)}
    by_id = {task.task_id: task for task in tasks}

    in_degree: dict[str, int] = dict.fromkeys(by_id, 0)
    dependents: dict[str, list[str]] = defaultdict(list)
    for task in tasks:
        for blocker_id in dict.fromkeys(task.blocked_by):
            if blocker_id == task.task_id or blocker_id not in by_id:
                continue
            in_degree[task.task_id] += 1
            dependents[blocker_id].append(task.task_id)

    heap = [(rank[task_id], task_id) for task_id, degree in in_degree.items() if degree == 0]
    heapq.heapify(heap)

    ordered: list[TaskView] = []
    emitted: set[str] = set()
    while heap:
        _, task_id = heapq.heappop(heap)
        ordered.append(by_id[task_id])
        emitted.add(task_id)
        for dependent_id in dependents.get(task_id, ()):
            in_degree[dependent_id] -= 1
            if in_degree[dependent_id] == 0:
                heapq.heappush(heap, (rank[dependent_id], dependent_id))

    if len(ordered) < len(by_id):
        ordered.extend(task for _, task in ranked if task.task_id not in emitted)
    return ordered


def find_cycle(
    task_id: str,
    blocked_by: Iterable[str],
    edges: Mapping[str, Sequence[str]],
) -> list[str] | None:
    """Return the path that would close a cycle if ``task_id`` got ``blocked_by``.

    ``edges`` maps every other task id to its current ``blocked_by`` list.  The
    returned path starts and ends with ``task_id``.
    """

    stack: list[tuple[str, list[str]]] = [
        (blocker_id, [task_id, blocker_id]) for blocker_id in blocked_by
    ]
    visited: set[str] = set()
    while stack:
        current, path = stack.pop()
        if current == task_id:
            return path
        if current in visited:
            continue
        visited.add(current)
        for next_id in edges.get(current, ()):
            stack.append((next_id, [*path, next_id]))
    return None
