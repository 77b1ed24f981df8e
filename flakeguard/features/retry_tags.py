"""Final tag-only feature: summarizes retry and skip outcomes on runs."""

from __future__ import annotations

from flakeguard.engine.feature import Feature
from flakeguard.engine.strategy import TestRunEndInfo
from flakeguard.model import tags
from flakeguard.model.entities import TestRun, TestStatus


class RetryAndSkipTags(Feature):
    """Adds the tags that depend on the outcome of the whole feature chain.

    Must be the last feature: it only observes decisions made by the others.
    """

    id = "retry-and-skip-tags"

    def will_finish(
        self,
        run: TestRun,
        duration: float,
        status: TestStatus,
        info: TestRunEndInfo,
    ) -> None:
        skip_reason = info.skip_reason or run.skip_reason
        if status is TestStatus.SKIP and skip_reason:
            run.set_tag(tags.SKIP_REASON, skip_reason)

        if (
            info.is_final
            and status is TestStatus.FAIL
            and info.execution_count > 0
            and info.failed_execution_count >= info.execution_count
        ):
            run.set_tag(tags.HAS_FAILED_ALL_RETRIES, tags.TRUE)

        if status is TestStatus.FAIL and info.suppression_reason is not None:
            run.set_tag(tags.FAILURE_SUPPRESSION_REASON, info.suppression_reason)

        if info.final_status is not None:
            run.set_tag(tags.FINAL_STATUS, info.final_status.value)
