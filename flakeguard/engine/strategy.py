"""Strategy algebra shared by all retry/skip policies.

Features negotiate two things through the values defined here:

* Before the first run of a logical test they fold a
  RetryGroupConfiguration, deciding whether the test is skipped and which
  success/skip strategies judge it.
* After every run they fold a RetryStatusIterator, deciding whether to run
  again and whether the run's errors are hidden.

Both folds are first-match-wins chains of responsibility: the first feature
that terminates the chain decides, and a value set by an earlier feature is
never overwritten by a later one.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import Iterable

from flakeguard.model.entities import TestStatus


class SuccessStrategy(enum.IntEnum):
    """How a logical test's runs are judged, from most to least lenient."""

    ALWAYS_SUCCEEDED = 0
    AT_LEAST_ONE_SUCCEEDED = 1
    AT_MOST_ONE_FAILED = 2
    ALL_SUCCEEDED = 3

    def is_succeeded(self, statuses: Iterable[TestStatus]) -> bool:
        statuses = list(statuses)
        if self is SuccessStrategy.ALWAYS_SUCCEEDED:
            return True
        if self is SuccessStrategy.AT_LEAST_ONE_SUCCEEDED:
            return TestStatus.PASS in statuses
        if self is SuccessStrategy.AT_MOST_ONE_FAILED:
            return statuses.count(TestStatus.FAIL) <= 1
        return all(s is TestStatus.PASS for s in statuses)


class SkipStrategy(enum.IntEnum):
    """When a logical test counts as skipped."""

    AT_LEAST_ONE_SKIPPED = 0
    ALL_SKIPPED = 1

    def is_skipped(self, statuses: Iterable[TestStatus]) -> bool:
        statuses = list(statuses)
        if not statuses:
            return False
        if self is SkipStrategy.AT_LEAST_ONE_SKIPPED:
            return TestStatus.SKIP in statuses
        return all(s is TestStatus.SKIP for s in statuses)


@dataclass(frozen=True)
class SkipStatus:
    """Whether a test may be skipped and whether something forbids it."""

    can_be_skipped: bool = False
    marked_unskippable: bool = False

    @property
    def is_skipped(self) -> bool:
        return self.can_be_skipped and not self.marked_unskippable

    @property
    def is_forced_run(self) -> bool:
        return self.can_be_skipped and self.marked_unskippable

    @classmethod
    def normal_run(cls) -> SkipStatus:
        return cls(can_be_skipped=False, marked_unskippable=False)


class ConfigurationAction(enum.Enum):
    NEXT = "next"
    SKIP = "skip"
    RETRY = "retry"


def _first_set(current, proposed):
    return current if current is not None else proposed


@dataclass(frozen=True)
class RetryGroupConfiguration:
    """The negotiated setup of one logical test.

    Features receive the configuration built so far and return it through
    one of ``next``, ``skip`` or ``retry``. ``skip`` and ``retry`` terminate
    the negotiation.
    """

    skip_status: SkipStatus = SkipStatus()
    skip_strategy: SkipStrategy | None = None
    success_strategy: SuccessStrategy | None = None
    action: ConfigurationAction = ConfigurationAction.NEXT
    skip_reason: str | None = None

    def next(
        self,
        skip_status: SkipStatus | None = None,
        skip_strategy: SkipStrategy | None = None,
        success_strategy: SuccessStrategy | None = None,
    ) -> RetryGroupConfiguration:
        """Contribute values and let the following features decide."""
        return self._merge(ConfigurationAction.NEXT, skip_status, skip_strategy, success_strategy)

    def skip(
        self,
        reason: str,
        status: SkipStatus,
        strategy: SkipStrategy = SkipStrategy.ALL_SKIPPED,
    ) -> RetryGroupConfiguration:
        """Terminate the negotiation by skipping the test."""
        merged = self._merge(ConfigurationAction.SKIP, status, strategy, None)
        return replace(merged, skip_reason=_first_set(self.skip_reason, reason))

    def retry(self, success_strategy: SuccessStrategy) -> RetryGroupConfiguration:
        """Terminate the negotiation by running the test, possibly more than once."""
        return self._merge(ConfigurationAction.RETRY, None, None, success_strategy)

    def _merge(
        self,
        action: ConfigurationAction,
        skip_status: SkipStatus | None,
        skip_strategy: SkipStrategy | None,
        success_strategy: SuccessStrategy | None,
    ) -> RetryGroupConfiguration:
        status = self.skip_status
        if skip_status is not None and status == SkipStatus.normal_run():
            status = skip_status
        return RetryGroupConfiguration(
            skip_status=status,
            skip_strategy=_first_set(self.skip_strategy, skip_strategy),
            success_strategy=_first_set(self.success_strategy, success_strategy),
            action=action,
            skip_reason=self.skip_reason,
        )

    @property
    def is_next(self) -> bool:
        return self.action is ConfigurationAction.NEXT

    @property
    def is_skip(self) -> bool:
        return self.action is ConfigurationAction.SKIP

    @property
    def is_retry(self) -> bool:
        return self.action is ConfigurationAction.RETRY

    @property
    def resolved_success_strategy(self) -> SuccessStrategy:
        return _first_set(self.success_strategy, SuccessStrategy.ALL_SUCCEEDED)

    @property
    def resolved_skip_strategy(self) -> SkipStrategy:
        return _first_set(self.skip_strategy, SkipStrategy.ALL_SKIPPED)


@dataclass(frozen=True)
class RetryStatus:
    """Decision after a run: run again, or end the logical test.

    ``end(ignore_errors=True)`` accepts the outcome with failures hidden;
    ``end(ignore_errors=False)`` records the run's errors.
    """

    is_retry: bool
    ignore_errors: bool

    @classmethod
    def retry(cls, ignore_errors: bool = True) -> RetryStatus:
        return cls(is_retry=True, ignore_errors=ignore_errors)

    @classmethod
    def end(cls, ignore_errors: bool = False) -> RetryStatus:
        return cls(is_retry=False, ignore_errors=ignore_errors)


@dataclass(frozen=True)
class RetryStatusIterator:
    """Accumulator for the post-run fold.

    ``next`` passes control to the following feature, optionally asking for
    errors to be ignored. ``retry`` and ``end`` stop the fold. When nobody
    stops it the result is ``end`` with the accumulated ``ignore_errors``.
    """

    ignore_errors: bool = False
    status: RetryStatus | None = None
    # True when the stopping feature itself asked for errors to be ignored.
    claims_errors: bool = False

    @property
    def is_stopped(self) -> bool:
        return self.status is not None

    def next(self, ignore_errors: bool = False) -> RetryStatusIterator:
        return replace(self, ignore_errors=self.ignore_errors or ignore_errors)

    def stop(self, status: RetryStatus) -> RetryStatusIterator:
        ignore = self.ignore_errors or status.ignore_errors
        return RetryStatusIterator(
            ignore_errors=ignore,
            status=RetryStatus(is_retry=status.is_retry, ignore_errors=ignore),
            claims_errors=status.ignore_errors,
        )

    def retry(self, ignore_errors: bool = True) -> RetryStatusIterator:
        return self.stop(RetryStatus.retry(ignore_errors))

    def end(self, ignore_errors: bool = False) -> RetryStatusIterator:
        return self.stop(RetryStatus.end(ignore_errors))

    def resolve(self) -> RetryStatus:
        if self.status is not None:
            return self.status
        return RetryStatus.end(self.ignore_errors)


@dataclass(frozen=True)
class TestRunInfo:
    """What features know about a run before it executes.

    ``execution_count`` and ``failed_execution_count`` cover the earlier
    runs of the same logical test only.
    """

    skip_status: SkipStatus
    execution_count: int = 0
    failed_execution_count: int = 0
    retry_reason: str | None = None
    skip_reason: str | None = None
    skipped_by: str | None = None
    first_duration: float | None = None

    @property
    def is_retry(self) -> bool:
        return self.retry_reason is not None


@dataclass(frozen=True)
class TestRunEndInfo(TestRunInfo):
    """What features know about a run after the retry decision.

    ``final_status`` is set on the last run of a logical test only.
    """

    retry_status: RetryStatus = RetryStatus.end()
    decided_by: str | None = None
    errors_suppressed_by: str | None = None
    suppression_reason: str | None = None
    final_status: TestStatus | None = None

    @property
    def is_final(self) -> bool:
        return not self.retry_status.is_retry
