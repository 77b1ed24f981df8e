"""Dependency graph of setup tasks.

Provides SetupTask (a named callable with predecessors) and TaskGraph, which
validates the graph and runs it on a bounded number of daemon threads. Each
task is dispatched as soon as all its predecessors have finished, and the
caller waits on their completions until a single deadline.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable

log = logging.getLogger(__name__)

# A task receives the results of its predecessors, keyed by task name.
TaskFn = Callable[[dict[str, Any]], Any]


@dataclass
class SetupTask:
    """A single setup step."""

    name: str
    fn: TaskFn
    depends_on: list[str] = field(default_factory=list)

    # Computed graph edges (populated by TaskGraph.topological_order)
    dependents: list[str] = field(default_factory=list)


class TaskGraph:
    """Directed acyclic graph of setup tasks.

    A task that raises, or that is still pending when the timeout expires,
    yields None. Its dependents still run and decide what a missing
    predecessor means for them.
    """

    def __init__(self) -> None:
        self.tasks: dict[str, SetupTask] = {}

    def add(self, name: str, fn: TaskFn, depends_on: list[str] | None = None) -> SetupTask:
        """Register a task. Predecessors may be registered later.

        Raises:
            ValueError: If the name is taken.
        """
        if name in self.tasks:
            raise ValueError(f"Duplicate setup task: {name}")
        task = SetupTask(name=name, fn=fn, depends_on=list(depends_on or []))
        self.tasks[name] = task
        return task

    def _link(self) -> None:
        """Validate predecessors and compute reverse edges."""
        for task in self.tasks.values():
            task.dependents = []
        for name, task in self.tasks.items():
            for dep_name in task.depends_on:
                if dep_name not in self.tasks:
                    raise ValueError(f"Setup task {name} depends on unknown task {dep_name}")
                self.tasks[dep_name].dependents.append(name)

    def _detect_cycle(self) -> list[str] | None:
        """Detect cycles using DFS.

        Returns:
            A list of task names forming the cycle, or None if acyclic.
        """
        WHITE, GRAY, BLACK = 0, 1, 2
        color: dict[str, int] = {name: WHITE for name in self.tasks}
        path: list[str] = []

        def dfs(name: str) -> list[str] | None:
            color[name] = GRAY
            path.append(name)
            for dep_name in self.tasks[name].depends_on:
                if color[dep_name] == GRAY:
                    return path[path.index(dep_name):] + [dep_name]
                if color[dep_name] == WHITE:
                    result = dfs(dep_name)
                    if result is not None:
                        return result
            path.pop()
            color[name] = BLACK
            return None

        for name in self.tasks:
            if color[name] == WHITE:
                result = dfs(name)
                if result is not None:
                    return result
        return None

    def topological_order(self) -> list[str]:
        """Order tasks so that every task follows its predecessors.

        Raises:
            ValueError: If the graph contains a cycle or an unknown predecessor.
        """
        self._link()
        cycle = self._detect_cycle()
        if cycle is not None:
            raise ValueError(f"Cycle detected in setup graph: {' -> '.join(cycle)}")

        remaining = {name: len(task.depends_on) for name, task in self.tasks.items()}
        queue = deque(name for name, count in remaining.items() if count == 0)
        result: list[str] = []
        while queue:
            name = queue.popleft()
            result.append(name)
            for dependent in self.tasks[name].dependents:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    queue.append(dependent)
        return result

    def run(self, max_workers: int = 4, timeout: float | None = None) -> dict[str, Any]:
        """Run every task, respecting dependencies.

        Tasks run on daemon threads, so a task still running at the deadline
        is abandoned and does not keep the process alive.

        Args:
            max_workers: Maximum number of tasks running at once.
            timeout: Seconds to wait for the whole graph (None = no cap).

        Returns:
            Mapping of task name to result; None for failed or unfinished tasks.
        """
        order = self.topological_order()
        deadline = time.monotonic() + timeout if timeout is not None else None
        results: dict[str, Any] = {}
        pending = list(order)
        running: set[str] = set()
        finished: queue.Queue[tuple[str, Any]] = queue.Queue()

        while pending or running:
            ready = [
                n for n in pending
                if all(d in results for d in self.tasks[n].depends_on)
            ]
            for name in ready[:max(max_workers - len(running), 0)]:
                pending.remove(name)
                running.add(name)
                inputs = {d: results[d] for d in self.tasks[name].depends_on}
                threading.Thread(
                    target=self._call,
                    args=(name, inputs, finished),
                    name=f"flakeguard-setup-{name}",
                    daemon=True,
                ).start()
            if not running:
                break

            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                break
            try:
                name, result = finished.get(timeout=remaining)
            except queue.Empty:
                break
            running.discard(name)
            results[name] = result

        unfinished = [name for name in order if name not in results]
        if unfinished:
            log.warning("Setup timed out; tasks not finished: %s", ", ".join(unfinished))
        return {name: results.get(name) for name in order}

    def _call(self, name: str, inputs: dict[str, Any], finished: queue.Queue) -> None:
        result = None
        try:
            result = self.tasks[name].fn(inputs)
        except Exception:
            log.warning("Setup task %s failed", name, exc_info=True)
        finally:
            finished.put((name, result))
