"""Test identity model: sessions, modules, suites, logical tests and runs.

A TestGroup is one logical test (module + suite + name). Each physical
execution of it is a TestRun. Sessions, modules and suites only aggregate
status and carry tags.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from flakeguard.utils.synced import Synced, increment

if TYPE_CHECKING:
    from flakeguard.engine.strategy import SkipStrategy, SuccessStrategy


class TestStatus(str, enum.Enum):
    """Outcome of a single physical execution."""

    PASS = "pass"
    FAIL = "fail"
    SKIP = "skip"


class ErrorState(enum.Enum):
    """Whether a failed run's errors are shown to the reporting backend."""

    NORMAL = "normal"
    SUPPRESSED = "suppressed"
    UNSUPPRESSED = "unsuppressed"


@dataclass
class TestError:
    """An error recorded on a failed run."""

    type: str
    message: str = ""
    stack: str | None = None


class _Tagged:
    def __init__(self, name: str) -> None:
        self.name = name
        self.tags: dict[str, str] = {}
        self.metrics: dict[str, float] = {}

    def set_tag(self, key: str, value: Any) -> None:
        self.tags[key] = str(value)

    def get_tag(self, key: str) -> str | None:
        return self.tags.get(key)

    def set_metric(self, key: str, value: float) -> None:
        self.metrics[key] = float(value)


class _Container(_Tagged):
    """Shared status handling for sessions, modules and suites."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.status: TestStatus | None = None
        self.error: TestError | None = None
        self.skip_reason: str | None = None
        self.start_time = time.time()
        self.end_time: float | None = None

    def set_failed(self, reason: TestError | None = None) -> None:
        self.status = TestStatus.FAIL
        if reason is not None:
            self.error = reason

    def set_skipped(self, reason: str | None = None) -> None:
        if self.status is None:
            self.status = TestStatus.SKIP
            self.skip_reason = reason

    def end(self) -> None:
        if self.status is None:
            self.status = TestStatus.PASS
        self.end_time = time.time()

    @property
    def ended(self) -> bool:
        return self.end_time is not None


class TestSession(_Container):
    """The top-level container of one test session."""

    def __init__(self, name: str = "session") -> None:
        super().__init__(name)
        self.modules: dict[str, TestModule] = {}
        self._test_index: Synced[int] = Synced(0)

    def module(self, name: str) -> TestModule:
        """Get or create the module called ``name``."""
        if name not in self.modules:
            self.modules[name] = TestModule(name, self)
        return self.modules[name]

    def next_test_index(self) -> int:
        """Return a session-unique, increasing index for a new run."""
        return increment(self._test_index)


class TestModule(_Container):
    """A test bundle or package."""

    def __init__(self, name: str, session: TestSession) -> None:
        super().__init__(name)
        self.session = session
        self.suites: dict[str, TestSuite] = {}

    def suite(self, name: str) -> TestSuite:
        """Get or create the suite called ``name``."""
        if name not in self.suites:
            self.suites[name] = TestSuite(name, self)
        return self.suites[name]


class TestSuite(_Container):
    """A class or file grouping logical tests."""

    def __init__(self, name: str, module: TestModule) -> None:
        super().__init__(name)
        self.module = module
        self.groups: dict[str, TestGroup] = {}

    @property
    def session(self) -> TestSession:
        return self.module.session


class TestRun(_Tagged):
    """One physical execution of a logical test."""

    def __init__(self, name: str, suite: TestSuite) -> None:
        super().__init__(name)
        self.suite = suite
        self.index = suite.session.next_test_index()
        self.errors: list[TestError] = []
        self.error_state = ErrorState.NORMAL
        self.suppressed_by: str | None = None
        self.status: TestStatus | None = None
        self.duration: float | None = None
        self.skip_reason: str | None = None

    @property
    def module(self) -> TestModule:
        return self.suite.module

    @property
    def session(self) -> TestSession:
        return self.suite.session

    @property
    def error(self) -> TestError | None:
        """The most recently recorded error, if any."""
        return self.errors[-1] if self.errors else None

    def add_error(self, type: str, message: str = "", stack: str | None = None) -> TestError:
        error = TestError(type=type, message=message, stack=stack)
        self.errors.append(error)
        return error

    def suppress_errors(self, feature_id: str) -> None:
        """Hide this run's errors on behalf of ``feature_id``."""
        self.error_state = ErrorState.SUPPRESSED
        self.suppressed_by = feature_id

    def unsuppress_errors(self) -> None:
        """Restore errors that an earlier suppression would have hidden."""
        if self.error_state is ErrorState.SUPPRESSED:
            self.error_state = ErrorState.UNSUPPRESSED
            self.suppressed_by = None

    @property
    def errors_suppressed(self) -> bool:
        return self.error_state is ErrorState.SUPPRESSED

    def end(self, status: TestStatus, duration: float | None = None) -> None:
        """Finalize the run.

        Raises:
            RuntimeError: If the run has already ended.
        """
        if self.status is not None:
            raise RuntimeError(f"Run of {self.name} already ended with {self.status.value}")
        self.status = status
        self.duration = duration

    @property
    def ended(self) -> bool:
        return self.status is not None

    @property
    def reported_status(self) -> TestStatus | None:
        """The status shown to the reporting backend."""
        if self.status is TestStatus.FAIL and self.errors_suppressed:
            return TestStatus.PASS
        return self.status


class TestGroup:
    """A logical test and the ordered runs executed for it."""

    def __init__(
        self,
        name: str,
        suite: TestSuite,
        success_strategy: SuccessStrategy,
        skip_strategy: SkipStrategy,
    ) -> None:
        self.name = name
        self.suite = suite
        self.success_strategy = success_strategy
        self.skip_strategy = skip_strategy
        self.runs: list[TestRun] = []
        self.retry_reasons: list[str] = []
        self.finished = False

    def add_run(self, run: TestRun) -> None:
        if not run.ended:
            raise RuntimeError(f"Run of {run.name} added to its group before it ended")
        self.runs.append(run)

    @property
    def statuses(self) -> list[TestStatus]:
        return [r.status for r in self.runs if r.status is not None]

    @property
    def execution_count(self) -> int:
        return len(self.runs)

    @property
    def failed_execution_count(self) -> int:
        return sum(1 for s in self.statuses if s is TestStatus.FAIL)

    @property
    def skipped_execution_count(self) -> int:
        return sum(1 for s in self.statuses if s is TestStatus.SKIP)

    @property
    def first_duration(self) -> float | None:
        return self.runs[0].duration if self.runs else None

    @property
    def is_skipped(self) -> bool:
        return self.skip_strategy.is_skipped(self.statuses)

    @property
    def is_succeeded(self) -> bool:
        return self.success_strategy.is_succeeded(self.statuses)

    @property
    def final_status(self) -> TestStatus:
        """The logical outcome under the negotiated strategies."""
        return self.outcome()

    def outcome(self, pending: TestStatus | None = None) -> TestStatus:
        """Logical outcome, optionally counting a run that has not been added yet.

        Args:
            pending: Status of the in-flight run, if any.
        """
        statuses = self.statuses
        if pending is not None:
            statuses = statuses + [pending]
        if self.skip_strategy.is_skipped(statuses):
            return TestStatus.SKIP
        if self.success_strategy.is_succeeded(statuses):
            return TestStatus.PASS
        return TestStatus.FAIL

    @property
    def is_flaky(self) -> bool:
        """True when the same logical test both passed and failed."""
        statuses = self.statuses
        return TestStatus.PASS in statuses and TestStatus.FAIL in statuses
