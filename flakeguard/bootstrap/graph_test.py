"""Tests for the setup task graph."""

from __future__ import annotations

import subprocess
import sys
import textwrap
import threading
import time
from pathlib import Path

import pytest

from flakeguard.bootstrap.graph import TaskGraph


class TestTaskGraphStructure:
    """Tests for graph validation and ordering."""

    def test_topological_order(self):
        """Every task comes after its predecessors."""
        graph = TaskGraph()
        graph.add("c", lambda r: None, ["a", "b"])
        graph.add("a", lambda r: None)
        graph.add("b", lambda r: None, ["a"])
        order = graph.topological_order()
        assert order.index("a") < order.index("b") < order.index("c")
        assert graph.tasks["a"].dependents == ["c", "b"]

    def test_duplicate_task(self):
        """Registering a name twice raises ValueError."""
        graph = TaskGraph()
        graph.add("a", lambda r: None)
        with pytest.raises(ValueError, match="Duplicate setup task: a"):
            graph.add("a", lambda r: None)

    def test_unknown_predecessor(self):
        """A dependency on a missing task raises ValueError."""
        graph = TaskGraph()
        graph.add("a", lambda r: None, ["missing"])
        with pytest.raises(ValueError, match="unknown task missing"):
            graph.topological_order()

    def test_cycle(self):
        """Cycles are reported with their path."""
        graph = TaskGraph()
        graph.add("a", lambda r: None, ["b"])
        graph.add("b", lambda r: None, ["a"])
        with pytest.raises(ValueError, match="Cycle detected in setup graph: a -> b -> a"):
            graph.topological_order()


class TestTaskGraphRun:
    """Tests for running the graph."""

    def test_results_flow_to_dependents(self):
        """A task receives the results of its predecessors."""
        graph = TaskGraph()
        graph.add("a", lambda r: 1)
        graph.add("b", lambda r: 2)
        graph.add("sum", lambda r: r["a"] + r["b"], ["a", "b"])
        assert graph.run() == {"a": 1, "b": 2, "sum": 3}

    def test_independent_tasks_run_concurrently(self):
        """Tasks without dependencies between them overlap."""
        barrier = threading.Barrier(2, timeout=5)
        graph = TaskGraph()
        graph.add("a", lambda r: barrier.wait() is not None)
        graph.add("b", lambda r: barrier.wait() is not None)
        assert graph.run(max_workers=2, timeout=10) == {"a": True, "b": True}

    def test_failed_task_yields_none(self):
        """A raising task produces None and its dependents still run."""

        def boom(results):
            raise RuntimeError("boom")

        graph = TaskGraph()
        graph.add("a", boom)
        graph.add("b", lambda r: r["a"] is None, ["a"])
        assert graph.run() == {"a": None, "b": True}

    def test_timeout(self, caplog):
        """Tasks still running at the deadline yield None."""
        release = threading.Event()
        graph = TaskGraph()
        graph.add("fast", lambda r: "done")
        graph.add("slow", lambda r: release.wait(5))
        start = time.monotonic()
        try:
            results = graph.run(max_workers=2, timeout=0.2)
        finally:
            release.set()
        assert time.monotonic() - start < 4
        assert results == {"fast": "done", "slow": None}
        assert "slow" in caplog.text

    def test_timed_out_task_does_not_block_exit(self):
        """A process whose setup timed out exits without waiting for the hung task."""
        script = textwrap.dedent("""
            import time
            from flakeguard.bootstrap.graph import TaskGraph

            graph = TaskGraph()
            graph.add("hung", lambda r: time.sleep(30))
            assert graph.run(timeout=0.2) == {"hung": None}
        """)
        start = time.monotonic()
        proc = subprocess.run(
            [sys.executable, "-c", script],
            cwd=Path(__file__).resolve().parents[2],
            capture_output=True,
            text=True,
            timeout=20,
        )
        assert proc.returncode == 0, proc.stderr
        assert time.monotonic() - start < 15

    def test_max_workers_caps_concurrency(self):
        """No more than max_workers tasks run at the same time."""
        lock = threading.Lock()
        active = [0]
        peak = [0]

        def task(results):
            with lock:
                active[0] += 1
                peak[0] = max(peak[0], active[0])
            time.sleep(0.05)
            with lock:
                active[0] -= 1
            return True

        graph = TaskGraph()
        for name in "abcd":
            graph.add(name, task)
        assert graph.run(max_workers=2, timeout=10) == dict.fromkeys("abcd", True)
        assert peak[0] <= 2
