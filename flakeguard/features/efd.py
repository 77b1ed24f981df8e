"""Early Flake Detection: repeat new tests to surface flakiness before merge.

The number of executions depends on how long the first execution took,
looked up in the backend-provided time table. If too many tests in the
session are new, the session is declared faulty and detection stops.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

from flakeguard.api.settings import TimeTable
from flakeguard.engine.feature import Feature
from flakeguard.engine.strategy import (
    RetryGroupConfiguration,
    RetryStatusIterator,
    SuccessStrategy,
    TestRunInfo,
)
from flakeguard.features.known_tests import KnownTests
from flakeguard.model import tags
from flakeguard.model.entities import TestRun, TestStatus, TestSuite
from flakeguard.utils.synced import Synced

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class TestCounters:
    """Tests seen so far in this session."""

    new_tests: int = 0
    known_tests: int = 0


class EarlyFlakeDetection(Feature):
    """Repeats new tests according to a duration-based time table."""

    id = "early-flake-detection"

    def __init__(
        self,
        known_tests: KnownTests,
        slow_test_retries: TimeTable,
        faulty_session_threshold: float,
    ) -> None:
        self.known_tests = known_tests
        self.slow_test_retries = slow_test_retries
        self.faulty_session_threshold = faulty_session_threshold
        self._counters: Synced[TestCounters] = Synced(TestCounters())
        self._faulty: Synced[bool] = Synced(False)

    @property
    def test_counters(self) -> TestCounters:
        return self._counters.value

    @property
    def is_faulty_session(self) -> bool:
        return self._faulty.value

    def suite_will_start(self, suite: TestSuite, tests_count: int) -> None:
        self._counters.update(
            lambda c: (replace(c, known_tests=c.known_tests + tests_count), None)
        )

    def group_will_start(self, test_name: str, suite: TestSuite) -> None:
        if self.known_tests.is_new_in(test_name, suite):
            self._counters.update(lambda c: (replace(c, new_tests=c.new_tests + 1), None))

    def check_status(self, test_name: str, suite: TestSuite) -> bool:
        """Whether ``test_name`` should be repeated by this feature."""
        if self.is_faulty_session:
            return False
        counters = self.test_counters
        if counters.new_tests > self.faulty_session_threshold:
            total = max(self.known_tests.test_count, counters.known_tests)
            percentage = counters.new_tests * 100.0 / total if total else 100.0
            if percentage >= self.faulty_session_threshold:
                self._mark_faulty(suite, counters, percentage)
                return False
        return self.known_tests.is_new_in(test_name, suite)

    def _mark_faulty(self, suite: TestSuite, counters: TestCounters, percentage: float) -> None:
        first = self._faulty.update(lambda faulty: (True, not faulty))
        if first:
            suite.session.set_tag(tags.EFD_ABORT_REASON, tags.ABORT_REASON_FAULTY)
            log.warning(
                "Early flake detection disabled: %d new tests (%.1f%%) exceed the "
                "faulty session threshold of %s",
                counters.new_tests, percentage, self.faulty_session_threshold,
            )

    def group_configuration(
        self,
        test_name: str,
        meta: Any,
        suite: TestSuite,
        configuration: RetryGroupConfiguration,
    ) -> RetryGroupConfiguration:
        if self.check_status(test_name, suite):
            return configuration.retry(SuccessStrategy.AT_LEAST_ONE_SUCCEEDED)
        return configuration.next()

    def will_start(self, run: TestRun, info: TestRunInfo) -> None:
        if info.retry_reason == self.id:
            run.set_tag(tags.IS_RETRY, tags.TRUE)
            run.set_tag(tags.RETRY_REASON, tags.RETRY_REASON_EFD)

    def should_suppress_error(self, run: TestRun, info: TestRunInfo) -> bool:
        return self.check_status(run.name, run.suite)

    def group_retry(
        self,
        run: TestRun,
        duration: float,
        status: TestStatus,
        retry_status: RetryStatusIterator,
        info: TestRunInfo,
    ) -> RetryStatusIterator:
        if status is TestStatus.SKIP or not self.check_status(run.name, run.suite):
            return retry_status.next()
        first_duration = info.first_duration if info.first_duration is not None else duration
        repeats = self.slow_test_retries.repeats(first_duration)
        if info.execution_count < repeats - 1:
            return retry_status.retry(ignore_errors=True)
        if repeats == 0:
            run.set_tag(tags.EFD_ABORT_REASON, tags.ABORT_REASON_SLOW)
        failed = info.failed_execution_count + (1 if status is TestStatus.FAIL else 0)
        if failed == info.execution_count + 1:
            return retry_status.end(ignore_errors=False)
        return retry_status.end(ignore_errors=True)

    def failure_suppression_reason(self, run: TestRun) -> str:
        return tags.SUPPRESSION_EFD
