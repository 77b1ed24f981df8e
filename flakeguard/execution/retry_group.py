"""Runs one logical test through the composed feature chain.

For every logical test the runner:

1. lets each feature observe the group start and folds the group
   configuration (first terminating feature wins);
2. either records a single synthetic skipped run, or executes the test body
   and, after each physical run, folds the retry decision;
3. keeps a failed run's errors hidden only when a feature provisionally
   suppressed them and the final decision still ignores errors;
4. loops while the decision is ``retry`` and finishes the group exactly once.
"""

from __future__ import annotations

import enum
import logging
import time
import traceback
from dataclasses import dataclass, fields, replace
from typing import Any, Callable, Sequence

from flakeguard.engine.feature import Feature
from flakeguard.engine.strategy import (
    RetryGroupConfiguration,
    RetryStatus,
    RetryStatusIterator,
    SkipStatus,
    TestRunEndInfo,
    TestRunInfo,
)
from flakeguard.model.entities import TestError, TestGroup, TestRun, TestStatus, TestSuite

log = logging.getLogger(__name__)


class RunnerStateError(RuntimeError):
    """The runner was driven out of its expected state sequence."""


class GroupState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    RETRYING = "retrying"
    FINISHED = "finished"


@dataclass(frozen=True)
class RunOutcome:
    """Result of one call to a test body."""

    status: TestStatus
    duration: float | None = None
    error: TestError | None = None
    skip_reason: str | None = None


TestBody = Callable[[TestRun], RunOutcome]


class RetryGroupRunner:
    """Drives a single logical test from configuration to final status.

    A runner instance handles exactly one group; create a new one per test.
    """

    def __init__(
        self,
        features: Sequence[Feature],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.features = list(features)
        self.clock = clock
        self.state = GroupState.IDLE
        self._by_id = {feature.id: feature for feature in self.features}

    def run(
        self,
        test_name: str,
        suite: TestSuite,
        body: TestBody,
        meta: Any = None,
    ) -> TestGroup:
        """Execute ``test_name`` until the feature chain stops retrying.

        Args:
            test_name: Name of the logical test.
            suite: Suite the test belongs to.
            body: Callable executing one physical run.
            meta: Test class or other object inspected for markers.

        Returns:
            The finished TestGroup holding every run.

        Raises:
            RunnerStateError: If this runner already ran a group.
        """
        self._move(GroupState.RUNNING, GroupState.IDLE)

        for feature in self.features:
            feature.group_will_start(test_name, suite)

        configuration, configured_by = self._configure(test_name, meta, suite)
        group = TestGroup(
            test_name,
            suite,
            success_strategy=configuration.resolved_success_strategy,
            skip_strategy=configuration.resolved_skip_strategy,
        )
        suite.groups[test_name] = group

        if configuration.is_skip and configuration.skip_status.is_skipped:
            self._run_skipped(group, configuration, configured_by)
        else:
            retry_reason: str | None = None
            while True:
                decision, decided_by = self._run_once(
                    group, body, configuration.skip_status, retry_reason,
                )
                if not decision.is_retry:
                    break
                self._move(GroupState.RETRYING, GroupState.RUNNING)
                retry_reason = decided_by

        self._move(GroupState.FINISHED, GroupState.RUNNING)
        group.finished = True
        log.debug(
            "%s.%s finished %s after %d run(s)",
            suite.name, test_name, group.final_status.value, group.execution_count,
        )
        return group

    def _move(self, target: GroupState, expected: GroupState) -> None:
        if self.state is not expected:
            raise RunnerStateError(
                f"Cannot move to {target.value}: runner is {self.state.value}, "
                f"expected {expected.value}"
            )
        self.state = target

    def _configure(
        self, test_name: str, meta: Any, suite: TestSuite,
    ) -> tuple[RetryGroupConfiguration, str | None]:
        configuration = RetryGroupConfiguration()
        for feature in self.features:
            configuration = feature.group_configuration(test_name, meta, suite, configuration)
            if not configuration.is_next:
                return configuration, feature.id
        return configuration, None

    def _run_skipped(
        self,
        group: TestGroup,
        configuration: RetryGroupConfiguration,
        skipped_by: str | None,
    ) -> None:
        run = TestRun(group.name, group.suite)
        info = TestRunInfo(
            skip_status=configuration.skip_status,
            skip_reason=configuration.skip_reason,
            skipped_by=skipped_by,
        )
        for feature in self.features:
            feature.will_start(run, info)

        run.skip_reason = configuration.skip_reason
        end_info = _end_info(
            info,
            retry_status=RetryStatus.end(),
            final_status=group.outcome(TestStatus.SKIP),
        )
        for feature in self.features:
            feature.will_finish(run, 0.0, TestStatus.SKIP, end_info)
        run.end(TestStatus.SKIP, 0.0)
        group.add_run(run)

    def _run_once(
        self,
        group: TestGroup,
        body: TestBody,
        skip_status: SkipStatus,
        retry_reason: str | None,
    ) -> tuple[RetryStatus, str | None]:
        run = TestRun(group.name, group.suite)
        info = TestRunInfo(
            skip_status=skip_status,
            execution_count=group.execution_count,
            failed_execution_count=group.failed_execution_count,
            retry_reason=retry_reason,
            first_duration=group.first_duration,
        )
        if retry_reason is not None:
            group.retry_reasons.append(retry_reason)
        for feature in self.features:
            feature.will_start(run, info)
        if retry_reason is not None:
            self._move(GroupState.RUNNING, GroupState.RETRYING)

        outcome = self._invoke(body, run)
        status = outcome.status
        duration = outcome.duration if outcome.duration is not None else 0.0
        if status is TestStatus.SKIP:
            run.skip_reason = outcome.skip_reason

        if status is TestStatus.FAIL:
            error = outcome.error or TestError(type="Failure")
            run.add_error(error.type, error.message, error.stack)
            for feature in self.features:
                if feature.should_suppress_error(run, info):
                    run.suppress_errors(feature.id)
                    break

        if info.first_duration is None:
            info = replace(info, first_duration=duration)
        iterator, decided_by, ignored_by = self._fold_retry(run, duration, status, info)
        retry_status = iterator.resolve()

        suppressed_by: str | None = None
        if status is TestStatus.FAIL:
            if run.errors_suppressed and retry_status.ignore_errors and ignored_by is not None:
                suppressed_by = ignored_by
                run.suppress_errors(ignored_by)
            else:
                run.unsuppress_errors()
                if not retry_status.is_retry:
                    _accumulate_errors(group, run)

        end_info = _end_info(
            info,
            retry_status=retry_status,
            decided_by=decided_by,
            errors_suppressed_by=suppressed_by,
            suppression_reason=(
                self._by_id[suppressed_by].failure_suppression_reason(run)
                if suppressed_by is not None else None
            ),
            final_status=None if retry_status.is_retry else group.outcome(status),
        )
        for feature in self.features:
            feature.will_finish(run, duration, status, end_info)

        run.end(status, duration)
        group.add_run(run)
        return retry_status, decided_by

    def _invoke(self, body: TestBody, run: TestRun) -> RunOutcome:
        start = self.clock()
        try:
            outcome = body(run)
        except Exception as e:
            log.debug("Test body of %s raised %s", run.name, type(e).__name__)
            outcome = RunOutcome(
                TestStatus.FAIL,
                error=TestError(type(e).__name__, str(e), traceback.format_exc()),
            )
        if outcome.duration is None:
            outcome = replace(outcome, duration=self.clock() - start)
        return outcome

    def _fold_retry(
        self,
        run: TestRun,
        duration: float,
        status: TestStatus,
        info: TestRunInfo,
    ) -> tuple[RetryStatusIterator, str | None, str | None]:
        iterator = RetryStatusIterator()
        decided_by: str | None = None
        ignored_by: str | None = None
        for feature in self.features:
            previous = iterator
            iterator = feature.group_retry(run, duration, status, iterator, info)
            if iterator.is_stopped:
                decided_by = feature.id
                if iterator.claims_errors:
                    ignored_by = feature.id
                break
            if iterator.ignore_errors and not previous.ignore_errors:
                ignored_by = feature.id
        return iterator, decided_by, ignored_by


def _end_info(info: TestRunInfo, **extra: Any) -> TestRunEndInfo:
    values = {f.name: getattr(info, f.name) for f in fields(info)}
    return TestRunEndInfo(**values, **extra)


def _accumulate_errors(group: TestGroup, run: TestRun) -> None:
    """Fold the messages of earlier hidden failures into the reported error."""
    error = run.error
    if error is None:
        return
    earlier = [r.error.message for r in group.runs if r.error is not None and r.error.message]
    if not earlier:
        return
    messages = list(dict.fromkeys(earlier + [error.message]))
    error.message = "\n".join(m for m in messages if m)
