"""Test Impact Analysis, skip side: skip tests the backend deems unaffected."""

from __future__ import annotations

import logging
from typing import Any, Mapping, TypeVar

from flakeguard.engine.feature import Feature
from flakeguard.engine.strategy import (
    RetryGroupConfiguration,
    SkipStatus,
    SkipStrategy,
    TestRunEndInfo,
    TestRunInfo,
)
from flakeguard.model import tags
from flakeguard.model.entities import TestRun, TestStatus, TestSuite
from flakeguard.utils.synced import Synced, increment

log = logging.getLogger(__name__)

SKIP_REASON = "Skipped by Test Impact Analysis"
UNSKIPPABLE_ATTRIBUTE = "__flakeguard_unskippable__"

T = TypeVar("T")

# module -> suite -> skippable test names
SkippableMap = dict[str, dict[str, list[str]]]


def unskippable(obj: T) -> T:
    """Mark a test class or test method so it always runs."""
    setattr(obj, UNSKIPPABLE_ATTRIBUTE, True)
    return obj


def is_marked_unskippable(meta: Any, test_name: str) -> bool:
    """Whether ``meta`` marks ``test_name`` (or the whole suite) as unskippable.

    ``meta`` is a test class decorated with ``@unskippable`` (on the class or
    the method), or any object exposing ``is_unskippable(test_name)``.
    """
    if meta is None:
        return False
    check = getattr(meta, "is_unskippable", None)
    if callable(check):
        return bool(check(test_name))
    if getattr(meta, UNSKIPPABLE_ATTRIBUTE, False):
        return True
    method = getattr(meta, test_name, None)
    return bool(getattr(method, UNSKIPPABLE_ATTRIBUTE, False))


def parse_skippable_tests(payload: Mapping[str, Any]) -> tuple[SkippableMap, str | None]:
    """Parse a skippable-tests response body.

    The body is ``{"meta": {"correlation_id": ...}, "data": [{"type": "test",
    "attributes": {"module", "suite", "name"}}]}``.
    """
    correlation_id = (payload.get("meta") or {}).get("correlation_id")
    data = payload.get("data", [])
    if data is None:
        data = []
    if not isinstance(data, list):
        raise ValueError("Skippable tests response data is not a list")
    result: SkippableMap = {}
    for item in data:
        if (item or {}).get("type") != "test":
            continue
        attributes = item.get("attributes") or {}
        name = attributes.get("name")
        suite = attributes.get("suite")
        if not name or not suite:
            continue
        module = attributes.get("module") or ""
        tests = result.setdefault(module, {}).setdefault(suite, [])
        if name not in tests:
            tests.append(name)
    return result, correlation_id


class TestImpactAnalysis(Feature):
    """Skips tests listed by the backend unless they are marked unskippable."""

    id = "test-impact-analysis"

    def __init__(
        self,
        skippable: Mapping[str, Mapping[str, list[str]]],
        correlation_id: str | None = None,
    ) -> None:
        self.skippable: dict[str, dict[str, frozenset[str]]] = {
            module: {suite: frozenset(names) for suite, names in suites.items()}
            for module, suites in skippable.items()
        }
        self.correlation_id = correlation_id
        self._skipped: Synced[int] = Synced(0)
        self._stopped = False

    @property
    def skipped_count(self) -> int:
        return self._skipped.value

    def can_be_skipped(self, test_name: str, suite: TestSuite) -> bool:
        suites = self.skippable.get(suite.module.name) or self.skippable.get("", {})
        return test_name in suites.get(suite.name, frozenset())

    def skip_status(self, test_name: str, meta: Any, suite: TestSuite) -> SkipStatus:
        return SkipStatus(
            can_be_skipped=self.can_be_skipped(test_name, suite),
            marked_unskippable=is_marked_unskippable(meta, test_name),
        )

    def group_configuration(
        self,
        test_name: str,
        meta: Any,
        suite: TestSuite,
        configuration: RetryGroupConfiguration,
    ) -> RetryGroupConfiguration:
        status = self.skip_status(test_name, meta, suite)
        if status.marked_unskippable:
            suite.set_tag(tags.ITR_UNSKIPPABLE, tags.TRUE)
        if not status.can_be_skipped:
            return configuration.next()
        if status.is_skipped:
            return configuration.skip(SKIP_REASON, status, SkipStrategy.ALL_SKIPPED)
        return configuration.next(
            skip_status=status, skip_strategy=SkipStrategy.AT_LEAST_ONE_SKIPPED,
        )

    def will_start(self, run: TestRun, info: TestRunInfo) -> None:
        if self.correlation_id:
            run.set_tag(tags.ITR_CORRELATION_ID, self.correlation_id)
        if info.skip_status.marked_unskippable:
            run.set_tag(tags.ITR_UNSKIPPABLE, tags.TRUE)

    def will_finish(
        self,
        run: TestRun,
        duration: float,
        status: TestStatus,
        info: TestRunEndInfo,
    ) -> None:
        if status is TestStatus.SKIP and info.skipped_by == self.id:
            run.set_tag(tags.ITR_SKIPPED, tags.TRUE)
            increment(self._skipped)
        elif status is not TestStatus.SKIP and info.skip_status.is_forced_run:
            run.set_tag(tags.ITR_FORCED_RUN, tags.TRUE)

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        if self.skipped_count:
            log.info("Test impact analysis skipped %d test(s)", self.skipped_count)
