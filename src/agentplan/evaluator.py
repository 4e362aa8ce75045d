"""Dependency evaluator: pure eligibility, cycle and ordering checks over task graphs.

This is the single place that decides whether a task may start. The
progress store records whatever legal state change it is asked for; callers
consult :func:`eligible_tasks` before moving a task to ``in_progress``.

Usage::

    ready = eligible_tasks(progress)        # pending with all deps completed
    cycle = detect_cycle(plan.tasks)        # ["TASK-001", "TASK-002", "TASK-001"] or None
    order = topological_order(plan.tasks)   # stable Kahn order
"""

from __future__ import annotations

import heapq
from collections.abc import Sequence
from typing import Protocol

from agentplan.errors import ValidationError
from agentplan.tasks.model import Progress, TaskProgress, TaskState


class _Node(Protocol):
    id: str
    dependencies: list[str]


# ── graph checks ─────────────────────────────────────────────────────


def missing_dependencies(tasks: Sequence[_Node]) -> dict[str, list[str]]:
    """Map task id -> dependency ids that are not present among *tasks*."""
    ids = {t.id for t in tasks}
    missing: dict[str, list[str]] = {}
    for t in tasks:
        dangling = [d for d in t.dependencies if d not in ids]
        if dangling:
            missing[t.id] = dangling
    return missing


def detect_cycle(tasks: Sequence[_Node]) -> list[str] | None:
    """Return the first dependency cycle found, or ``None``.

    The cycle is reported in dependency direction with the closing id
    repeated, e.g. ``["A", "B", "A"]`` when A depends on B and B on A.
    Dangling references are ignored here (see :func:`missing_dependencies`).
    """
    deps = {t.id: list(t.dependencies) for t in tasks}
    done: set[str] = set()

    for t in tasks:
        if t.id in done:
            continue
        # Iterative DFS: path[i] is being expanded by stack[i].
        path = [t.id]
        visiting = {t.id}
        stack = [iter(deps[t.id])]
        while stack:
            for dep in stack[-1]:
                if dep not in deps or dep in done:
                    continue
                if dep in visiting:
                    return path[path.index(dep):] + [dep]
                path.append(dep)
                visiting.add(dep)
                stack.append(iter(deps[dep]))
                break
            else:
                stack.pop()
                tid = path.pop()
                visiting.discard(tid)
                done.add(tid)
    return None


def topological_order(tasks: Sequence[_Node]) -> list[str]:
    """Kahn's algorithm; ties are broken by document order.

    Raises :class:`ValidationError` if nodes remain with non-zero in-degree.
    """
    position = {t.id: i for i, t in enumerate(tasks)}
    in_degree = {t.id: 0 for t in tasks}
    dependents: dict[str, list[str]] = {t.id: [] for t in tasks}
    for t in tasks:
        for dep in t.dependencies:
            if dep in position:
                in_degree[t.id] += 1
                dependents[dep].append(t.id)

    ready = [position[tid] for tid, deg in in_degree.items() if deg == 0]
    heapq.heapify(ready)
    ids = [t.id for t in tasks]
    order: list[str] = []
    while ready:
        current = ids[heapq.heappop(ready)]
        order.append(current)
        for child in dependents[current]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                heapq.heappush(ready, position[child])

    if len(order) != len(tasks):
        residual = sorted((tid for tid, deg in in_degree.items() if deg > 0), key=position.get)
        cycle = detect_cycle(tasks)
        raise ValidationError(
            f"Circular dependency among: {', '.join(residual)}",
            cycle=cycle,
        )
    return order


# ── progress queries ─────────────────────────────────────────────────


def _states(progress: Progress) -> dict[str, TaskState]:
    return {t.id: t.state for t in progress.tasks}


def eligible_tasks(progress: Progress) -> list[TaskProgress]:
    """Pending tasks whose dependencies are all completed, in document order."""
    states = _states(progress)
    return [
        t
        for t in progress.tasks
        if t.state == TaskState.PENDING
        and all(states.get(dep) == TaskState.COMPLETED for dep in t.dependencies)
    ]


def count_states(progress: Progress) -> dict[str, int]:
    counts = {s.value: 0 for s in TaskState}
    for t in progress.tasks:
        counts[t.state.value] += 1
    return counts


def is_deadlocked(progress: Progress) -> bool:
    """``True`` if tasks are pending but nothing runs and nothing can start."""
    return (
        progress.count(TaskState.PENDING) > 0
        and progress.count(TaskState.IN_PROGRESS) == 0
        and not eligible_tasks(progress)
    )


def explain_block(progress: Progress, task_id: str) -> str:
    """Human-readable explanation of why *task_id* cannot start."""
    states = _states(progress)
    task = progress.get_task(task_id)
    if task is None:
        return "unknown task"
    if task.state != TaskState.PENDING:
        return f"state is {task.state.value}"

    blocked = []
    for dep in task.dependencies:
        st = states.get(dep)
        if st is None:
            blocked.append(f"{dep} (missing)")
        elif st != TaskState.COMPLETED:
            blocked.append(f"{dep} ({st.value})")
    if not blocked:
        return ""
    return f"waiting on: {' '.join(blocked)}"


def blocked_tasks(progress: Progress) -> dict[str, str]:
    """Map every pending, non-eligible task to its block explanation."""
    ready = {t.id for t in eligible_tasks(progress)}
    return {
        t.id: explain_block(progress, t.id)
        for t in progress.tasks
        if t.state == TaskState.PENDING and t.id not in ready
    }
