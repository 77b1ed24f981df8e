"""Tests for the final retry and skip tags."""

from __future__ import annotations

from flakeguard.engine.strategy import RetryStatus, SkipStatus, TestRunEndInfo
from flakeguard.features.retry_tags import RetryAndSkipTags
from flakeguard.model import tags
from flakeguard.model.entities import TestRun, TestSession, TestStatus


def _run() -> TestRun:
    return TestRun("t", TestSession().module("m").suite("S"))


class TestRetryAndSkipTags:
    """Tests for RetryAndSkipTags.will_finish."""

    def test_failed_all_retries(self):
        """The last of several failing runs is tagged as failing all retries."""
        run = _run()
        info = TestRunEndInfo(
            SkipStatus(), execution_count=3, failed_execution_count=3,
            retry_status=RetryStatus.end(), final_status=TestStatus.FAIL,
        )
        RetryAndSkipTags().will_finish(run, 1.0, TestStatus.FAIL, info)
        assert run.get_tag(tags.HAS_FAILED_ALL_RETRIES) == "true"
        assert run.get_tag(tags.FINAL_STATUS) == "fail"

    def test_single_run_is_not_failed_all(self):
        """A test that ran once has no retries to fail."""
        run = _run()
        info = TestRunEndInfo(SkipStatus(), retry_status=RetryStatus.end())
        RetryAndSkipTags().will_finish(run, 1.0, TestStatus.FAIL, info)
        assert run.get_tag(tags.HAS_FAILED_ALL_RETRIES) is None

    def test_not_final(self):
        """Intermediate runs get no final status."""
        run = _run()
        info = TestRunEndInfo(
            SkipStatus(), execution_count=1, failed_execution_count=1,
            retry_status=RetryStatus.retry(),
        )
        RetryAndSkipTags().will_finish(run, 1.0, TestStatus.FAIL, info)
        assert run.get_tag(tags.HAS_FAILED_ALL_RETRIES) is None
        assert run.get_tag(tags.FINAL_STATUS) is None

    def test_skip_and_suppression_tags(self):
        """Skip reason and suppression reason are copied onto the run."""
        skipped = _run()
        RetryAndSkipTags().will_finish(
            skipped, 0.0, TestStatus.SKIP, TestRunEndInfo(SkipStatus(), skip_reason="why"),
        )
        assert skipped.get_tag(tags.SKIP_REASON) == "why"

        failed = _run()
        RetryAndSkipTags().will_finish(
            failed, 1.0, TestStatus.FAIL,
            TestRunEndInfo(SkipStatus(), retry_status=RetryStatus.retry(), suppression_reason="atr"),
        )
        assert failed.get_tag(tags.FAILURE_SUPPRESSION_REASON) == "atr"
