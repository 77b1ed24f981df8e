"""Tests for early flake detection."""

from __future__ import annotations

from flakeguard.api.settings import TimeTable
from flakeguard.engine.strategy import (
    RetryGroupConfiguration,
    RetryStatusIterator,
    SkipStatus,
    SuccessStrategy,
    TestRunInfo,
)
from flakeguard.features.efd import EarlyFlakeDetection, TestCounters
from flakeguard.features.known_tests import KnownTests
from flakeguard.model import tags
from flakeguard.model.entities import TestRun, TestSession, TestStatus, TestSuite

TABLE = TimeTable.from_dict({"5s": 10, "30s": 5, "1m": 2, "5m": 1})


def _suite() -> TestSuite:
    return TestSession().module("m").suite("S")


def _efd(known: list[str] | None = None, threshold: float = 30.0, table=TABLE):
    return EarlyFlakeDetection(KnownTests({"m": {"S": known or ["old"]}}), table, threshold)


def _info(execution_count=0, failed=0, first_duration=None) -> TestRunInfo:
    return TestRunInfo(
        SkipStatus(),
        execution_count=execution_count,
        failed_execution_count=failed,
        first_duration=first_duration,
    )


class TestCheckStatus:
    """Tests for new-test detection and the faulty session guard."""

    def test_new_test_is_detected(self):
        """Only tests missing from the registry are repeated."""
        efd = _efd()
        suite = _suite()
        assert efd.check_status("new", suite)
        assert not efd.check_status("old", suite)

    def test_counters(self):
        """Suites add known tests; new groups add new tests."""
        efd = _efd()
        suite = _suite()
        efd.suite_will_start(suite, 4)
        efd.group_will_start("new", suite)
        efd.group_will_start("old", suite)
        assert efd.test_counters == TestCounters(new_tests=1, known_tests=4)

    def test_faulty_session(self):
        """Too many new tests disable the feature and tag the session once."""
        efd = _efd(threshold=1.0)
        suite = _suite()
        efd.suite_will_start(suite, 2)
        efd.group_will_start("n1", suite)
        efd.group_will_start("n2", suite)

        assert not efd.check_status("n1", suite)
        assert efd.is_faulty_session
        assert suite.session.get_tag(tags.EFD_ABORT_REASON) == tags.ABORT_REASON_FAULTY
        config = efd.group_configuration("n2", None, suite, RetryGroupConfiguration())
        assert config.is_next

    def test_below_threshold_is_not_faulty(self):
        """A few new tests in a large session keep the feature on."""
        efd = _efd(threshold=30.0)
        suite = _suite()
        efd.suite_will_start(suite, 100)
        efd.group_will_start("new", suite)
        assert efd.check_status("new", suite)
        assert not efd.is_faulty_session


class TestGroupRetry:
    """Tests for the retry decision."""

    def test_configuration_for_new_test(self):
        """New tests are judged with AT_LEAST_ONE_SUCCEEDED."""
        config = _efd().group_configuration("new", None, _suite(), RetryGroupConfiguration())
        assert config.is_retry
        assert config.success_strategy is SuccessStrategy.AT_LEAST_ONE_SUCCEEDED

    def test_retries_until_table_count(self):
        """A fast test is retried until it has run 10 times."""
        efd = _efd()
        run = TestRun("new", _suite())
        early = efd.group_retry(run, 1.0, TestStatus.PASS, RetryStatusIterator(), _info(8, 0, 1.0))
        assert early.resolve().is_retry
        last = efd.group_retry(run, 1.0, TestStatus.PASS, RetryStatusIterator(), _info(9, 0, 1.0))
        assert last.is_stopped
        assert not last.resolve().is_retry

    def test_first_duration_decides(self):
        """The count follows the first run's duration, not the current one."""
        efd = _efd()
        run = TestRun("new", _suite())
        result = efd.group_retry(run, 1.0, TestStatus.PASS, RetryStatusIterator(), _info(1, 0, 61.0))
        assert not result.resolve().is_retry

    def test_all_failed_records_errors(self):
        """When every run failed the last failure is recorded."""
        efd = _efd()
        run = TestRun("new", _suite())
        result = efd.group_retry(run, 1.0, TestStatus.FAIL, RetryStatusIterator(), _info(9, 9, 1.0))
        assert not result.resolve().ignore_errors

    def test_some_passed_hides_errors(self):
        """When at least one run passed the last failure is hidden."""
        efd = _efd()
        run = TestRun("new", _suite())
        result = efd.group_retry(run, 1.0, TestStatus.FAIL, RetryStatusIterator(), _info(9, 3, 1.0))
        assert result.resolve().ignore_errors

    def test_empty_table_tags_slow_abort(self):
        """A test with no table entry is marked as aborted for being slow."""
        efd = _efd(table=TimeTable())
        run = TestRun("new", _suite())
        efd.group_retry(run, 1.0, TestStatus.PASS, RetryStatusIterator(), _info(0, 0, 1.0))
        assert run.get_tag(tags.EFD_ABORT_REASON) == tags.ABORT_REASON_SLOW

    def test_skip_passes_through(self):
        """Skipped runs are left to later features."""
        efd = _efd()
        run = TestRun("new", _suite())
        result = efd.group_retry(run, 0.0, TestStatus.SKIP, RetryStatusIterator(), _info())
        assert not result.is_stopped

    def test_known_test_passes_through(self):
        """Known tests are left to later features."""
        efd = _efd()
        run = TestRun("old", _suite())
        result = efd.group_retry(run, 1.0, TestStatus.FAIL, RetryStatusIterator(), _info())
        assert not result.is_stopped


class TestTagsAndReason:
    """Tests for run tags and the suppression reason."""

    def test_retry_tags(self):
        """EFD retries carry the efd retry reason."""
        efd = _efd()
        run = TestRun("new", _suite())
        efd.will_start(run, TestRunInfo(SkipStatus(), execution_count=1, retry_reason=efd.id))
        assert run.get_tag(tags.RETRY_REASON) == tags.RETRY_REASON_EFD

    def test_suppression_reason(self):
        """The suppression reason is 'efd'."""
        assert _efd().failure_suppression_reason(TestRun("new", _suite())) == "efd"
