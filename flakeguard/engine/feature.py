"""Base class for the policies composed by the retry-group runner."""

from __future__ import annotations

from typing import Any, ClassVar

from flakeguard.engine.strategy import (
    RetryGroupConfiguration,
    RetryStatusIterator,
    TestRunEndInfo,
    TestRunInfo,
)
from flakeguard.model.entities import TestRun, TestStatus, TestSuite


class Feature:
    """A policy plugged into the retry-group runner.

    Every hook has a no-op default so a feature only overrides the hooks it
    cares about. Features are consulted in a fixed order and the first one
    that terminates a fold decides.
    """

    id: ClassVar[str] = "feature"

    def suite_will_start(self, suite: TestSuite, tests_count: int) -> None:
        """Called once per suite before any of its tests run."""

    def group_will_start(self, test_name: str, suite: TestSuite) -> None:
        """Called once per logical test before its configuration is folded."""

    def group_configuration(
        self,
        test_name: str,
        meta: Any,
        suite: TestSuite,
        configuration: RetryGroupConfiguration,
    ) -> RetryGroupConfiguration:
        return configuration.next()

    def will_start(self, run: TestRun, info: TestRunInfo) -> None:
        """Called before each physical run."""

    def should_suppress_error(self, run: TestRun, info: TestRunInfo) -> bool:
        return False

    def group_retry(
        self,
        run: TestRun,
        duration: float,
        status: TestStatus,
        retry_status: RetryStatusIterator,
        info: TestRunInfo,
    ) -> RetryStatusIterator:
        return retry_status.next()

    def will_finish(
        self,
        run: TestRun,
        duration: float,
        status: TestStatus,
        info: TestRunEndInfo,
    ) -> None:
        """Called after the retry decision, before the run is finalized."""

    def failure_suppression_reason(self, run: TestRun) -> str:
        """Value of the suppression tag when this feature hid a failure."""
        return self.id

    def stop(self) -> None:
        """Release resources. Must be idempotent."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"
