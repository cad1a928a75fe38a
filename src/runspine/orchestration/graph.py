"""
Step dependency graph.

1. Validate step ids are unique
2. Validate every ``depends_on`` entry names an existing, different step
3. Validate the graph is a DAG (no cycles)
4. Topologically sort steps (dependencies first, stable)

Every structural problem raises ``CyclicGraphError`` before any execution
record exists.

Example:
    >>> graph = StepGraph.build(runbook.steps)
    >>> [s.step_id for s in graph.order]
    ['fetch', 'transform', 'notify']
"""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Sequence
from dataclasses import dataclass

from runspine.core.errors import CyclicGraphError
from runspine.core.logging import get_logger
from runspine.core.models import RunbookStep

logger = get_logger(__name__)


@dataclass(frozen=True)
class StepGraph:
    """Validated, topologically ordered step DAG."""

    order: tuple[RunbookStep, ...]
    dependents: dict[str, tuple[str, ...]]

    @classmethod
    def build(cls, steps: Sequence[RunbookStep]) -> StepGraph:
        """Validate ``steps`` and compute execution order.

        Raises:
            CyclicGraphError: duplicate ids, unknown or self references, cycles
        """
        _validate_ids(steps)
        _validate_dependencies(steps)
        _validate_no_cycles(steps)
        order = _topological_sort(steps)

        dependents: dict[str, list[str]] = defaultdict(list)
        for step in order:
            for dep in sorted(step.depends_on):
                dependents[dep].append(step.step_id)

        return cls(
            order=tuple(order),
            dependents={k: tuple(v) for k, v in dependents.items()},
        )

    @property
    def step_ids(self) -> list[str]:
        return [s.step_id for s in self.order]

    def roots(self) -> list[RunbookStep]:
        return [s for s in self.order if not s.depends_on]


def validate_steps(steps: Sequence[RunbookStep]) -> None:
    """Raise ``CyclicGraphError`` if ``steps`` do not form a valid DAG."""
    StepGraph.build(steps)


def _validate_ids(steps: Sequence[RunbookStep]) -> None:
    seen: set[str] = set()
    for step in steps:
        if step.step_id in seen:
            raise CyclicGraphError(
                f"Duplicate step id: {step.step_id}", step_id=step.step_id
            )
        seen.add(step.step_id)


def _validate_dependencies(steps: Sequence[RunbookStep]) -> None:
    """Validate all dependencies reference other existing steps."""
    step_ids = {s.step_id for s in steps}

    for step in steps:
        if step.step_id in step.depends_on:
            raise CyclicGraphError(
                f"Step '{step.step_id}' depends on itself",
                cycle=[step.step_id, step.step_id],
                step_id=step.step_id,
            )
        missing = sorted(dep for dep in step.depends_on if dep not in step_ids)
        if missing:
            raise CyclicGraphError(
                f"Step '{step.step_id}' depends on unknown steps: {', '.join(missing)}",
                step_id=step.step_id,
                missing=missing,
            )


def _validate_no_cycles(steps: Sequence[RunbookStep]) -> None:
    """
    Depth-first search with three-color marking:
    - WHITE (0): Unvisited
    - GRAY (1): On the current path
    - BLACK (2): Finished

    Reaching a GRAY node means a cycle.
    """
    WHITE, GRAY, BLACK = 0, 1, 2

    graph = {s.step_id: sorted(s.depends_on) for s in steps}
    color = {s.step_id: WHITE for s in steps}
    path: list[str] = []

    def dfs(node: str) -> list[str] | None:
        color[node] = GRAY
        path.append(node)

        for neighbor in graph.get(node, []):
            if color[neighbor] == GRAY:
                cycle_start = path.index(neighbor)
                return path[cycle_start:] + [neighbor]
            if color[neighbor] == WHITE:
                result = dfs(neighbor)
                if result:
                    return result

        color[node] = BLACK
        path.pop()
        return None

    for step in steps:
        if color[step.step_id] == WHITE:
            cycle = dfs(step.step_id)
            if cycle:
                logger.warning("graph.cycle_detected", cycle=cycle)
                raise CyclicGraphError(
                    f"Cycle detected in step graph: {' -> '.join(cycle)}",
                    cycle=cycle,
                )


def _topological_sort(steps: Sequence[RunbookStep]) -> list[RunbookStep]:
    """Kahn's algorithm; ties keep definition order."""
    graph: dict[str, list[str]] = defaultdict(list)
    in_degree: dict[str, int] = {s.step_id: 0 for s in steps}
    step_map = {s.step_id: s for s in steps}

    for step in steps:
        for dep in step.depends_on:
            graph[dep].append(step.step_id)
            in_degree[step.step_id] += 1

    queue = deque(s.step_id for s in steps if in_degree[s.step_id] == 0)
    result: list[RunbookStep] = []

    while queue:
        node = queue.popleft()
        result.append(step_map[node])
        for neighbor in graph[node]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    if len(result) != len(steps):
        done = {r.step_id for r in result}
        remaining = [s.step_id for s in steps if s.step_id not in done]
        raise CyclicGraphError(f"Topological sort incomplete. Remaining: {remaining}")

    return result


__all__ = ["StepGraph", "validate_steps"]
