"""Automatic Test Retries: rerun failing tests within per-test and global budgets."""

from __future__ import annotations

import logging
from typing import Any

from flakeguard.engine.feature import Feature
from flakeguard.engine.strategy import (
    RetryGroupConfiguration,
    RetryStatusIterator,
    SuccessStrategy,
    TestRunInfo,
)
from flakeguard.model import tags
from flakeguard.model.entities import TestRun, TestStatus, TestSuite
from flakeguard.utils.synced import Synced, checked_add

log = logging.getLogger(__name__)

DEFAULT_RETRIES_PER_TEST = 5
DEFAULT_TOTAL_RETRIES = 1000


class AutomaticTestRetries(Feature):
    """Retries a failed test until it passes or a budget runs out.

    A logical test is judged passing when at least one of its runs passed.
    Each retry consumes one unit of the session-wide budget.
    """

    id = "automatic-retry"

    def __init__(
        self,
        failed_retries_per_test: int = DEFAULT_RETRIES_PER_TEST,
        global_retry_budget: int = DEFAULT_TOTAL_RETRIES,
    ) -> None:
        self.failed_retries_per_test = failed_retries_per_test
        self.global_retry_budget = global_retry_budget
        self._retries_used: Synced[int] = Synced(0)
        self._budget_exhausted_logged = False

    @property
    def global_retries_used(self) -> int:
        return self._retries_used.value

    def group_configuration(
        self,
        test_name: str,
        meta: Any,
        suite: TestSuite,
        configuration: RetryGroupConfiguration,
    ) -> RetryGroupConfiguration:
        return configuration.retry(SuccessStrategy.AT_LEAST_ONE_SUCCEEDED)

    def will_start(self, run: TestRun, info: TestRunInfo) -> None:
        if info.retry_reason == self.id:
            run.set_tag(tags.IS_RETRY, tags.TRUE)
            run.set_tag(tags.RETRY_REASON, tags.RETRY_REASON_ATR)

    def should_suppress_error(self, run: TestRun, info: TestRunInfo) -> bool:
        return (
            info.execution_count < self.failed_retries_per_test
            and self.global_retries_used < self.global_retry_budget
        )

    def group_retry(
        self,
        run: TestRun,
        duration: float,
        status: TestStatus,
        retry_status: RetryStatusIterator,
        info: TestRunInfo,
    ) -> RetryStatusIterator:
        if status is not TestStatus.FAIL:
            return retry_status.next()
        if info.execution_count < self.failed_retries_per_test:
            if checked_add(self._retries_used, 1, self.global_retry_budget):
                return retry_status.retry(ignore_errors=True)
            if not self._budget_exhausted_logged:
                self._budget_exhausted_logged = True
                log.info(
                    "Automatic test retries budget of %d exhausted", self.global_retry_budget,
                )
        return retry_status.end(ignore_errors=False)

    def failure_suppression_reason(self, run: TestRun) -> str:
        return tags.SUPPRESSION_ATR
