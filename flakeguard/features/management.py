"""Test Management: disabled, quarantined and attempt-to-fix tests.

* Disabled tests are skipped.
* Quarantined tests run, but their failures never fail the session.
* Attempt-to-fix tests run a fixed number of times so a claimed fix can be
  verified; if the test is also disabled or quarantined its failures stay
  hidden.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from flakeguard.api.settings import DEFAULT_ATTEMPT_TO_FIX_RETRIES
from flakeguard.engine.feature import Feature
from flakeguard.engine.strategy import (
    RetryGroupConfiguration,
    RetryStatusIterator,
    SkipStatus,
    SkipStrategy,
    SuccessStrategy,
    TestRunEndInfo,
    TestRunInfo,
)
from flakeguard.model import tags
from flakeguard.model.entities import TestRun, TestStatus, TestSuite

DISABLED_SKIP_REASON = "Disabled by Test Management"


@dataclass(frozen=True)
class TestProperties:
    """Management flags of a single test."""

    disabled: bool = False
    quarantined: bool = False
    attempt_to_fix: bool = False

    @property
    def hides_failures(self) -> bool:
        return self.disabled or self.quarantined

    @property
    def is_managed(self) -> bool:
        return self.disabled or self.quarantined or self.attempt_to_fix

    def to_dict(self) -> dict[str, bool]:
        return {
            "disabled": self.disabled,
            "quarantined": self.quarantined,
            "attempt_to_fix": self.attempt_to_fix,
        }


# module -> suite -> test -> properties
TestManagementMap = dict[str, dict[str, dict[str, TestProperties]]]


def parse_test_management(attributes: Mapping[str, Any]) -> TestManagementMap:
    """Parse ``{"modules": {m: {"suites": {s: {"tests": {t: {"properties": ...}}}}}}}``.

    Raises:
        ValueError: If ``modules`` is present but not an object.
    """
    modules = attributes.get("modules", {})
    if modules is None:
        modules = {}
    if not isinstance(modules, dict):
        raise ValueError("Test management response has no modules object")
    result: TestManagementMap = {}
    for module, module_data in modules.items():
        for suite, suite_data in ((module_data or {}).get("suites") or {}).items():
            for test, test_data in ((suite_data or {}).get("tests") or {}).items():
                props = (test_data or {}).get("properties") or {}
                result.setdefault(module, {}).setdefault(suite, {})[test] = TestProperties(
                    disabled=bool(props.get("disabled", False)),
                    quarantined=bool(props.get("quarantined", False)),
                    attempt_to_fix=bool(props.get("attempt_to_fix", False)),
                )
    return result


def management_to_json(tests: TestManagementMap) -> dict[str, Any]:
    """Inverse of ``parse_test_management``; used for the cache file."""
    return {
        "modules": {
            module: {
                "suites": {
                    suite: {
                        "tests": {
                            test: {"properties": props.to_dict()}
                            for test, props in suite_tests.items()
                        }
                    }
                    for suite, suite_tests in suites.items()
                }
            }
            for module, suites in tests.items()
        }
    }


class TestManagement(Feature):
    """Applies backend-managed test properties."""

    id = "test-management"

    def __init__(
        self,
        tests: TestManagementMap,
        attempt_to_fix_retries: int = DEFAULT_ATTEMPT_TO_FIX_RETRIES,
    ) -> None:
        self.tests = tests
        self.attempt_to_fix_retries = attempt_to_fix_retries

    def test_properties(self, test: str, suite: str, module: str) -> TestProperties:
        return self.tests.get(module, {}).get(suite, {}).get(test, TestProperties())

    def _properties(self, test_name: str, suite: TestSuite) -> TestProperties:
        return self.test_properties(test_name, suite.name, suite.module.name)

    def group_configuration(
        self,
        test_name: str,
        meta: Any,
        suite: TestSuite,
        configuration: RetryGroupConfiguration,
    ) -> RetryGroupConfiguration:
        props = self._properties(test_name, suite)
        if props.attempt_to_fix:
            if props.hides_failures:
                return configuration.retry(SuccessStrategy.ALWAYS_SUCCEEDED)
            return configuration.retry(SuccessStrategy.ALL_SUCCEEDED)
        if props.disabled:
            return configuration.skip(
                reason=DISABLED_SKIP_REASON,
                status=SkipStatus(can_be_skipped=True, marked_unskippable=False),
                strategy=SkipStrategy.ALL_SKIPPED,
            )
        if props.quarantined:
            return configuration.next(success_strategy=SuccessStrategy.ALWAYS_SUCCEEDED)
        return configuration.next()

    def will_start(self, run: TestRun, info: TestRunInfo) -> None:
        props = self._properties(run.name, run.suite)
        if props.quarantined:
            run.set_tag(tags.TM_IS_QUARANTINED, tags.TRUE)
        if props.disabled:
            run.set_tag(tags.TM_IS_DISABLED, tags.TRUE)
        if props.attempt_to_fix:
            run.set_tag(tags.TM_IS_ATTEMPT_TO_FIX, tags.TRUE)
        if info.retry_reason == self.id:
            run.set_tag(tags.IS_RETRY, tags.TRUE)
            run.set_tag(tags.RETRY_REASON, tags.RETRY_REASON_ATTEMPT_TO_FIX)

    def should_suppress_error(self, run: TestRun, info: TestRunInfo) -> bool:
        return self._properties(run.name, run.suite).is_managed

    def group_retry(
        self,
        run: TestRun,
        duration: float,
        status: TestStatus,
        retry_status: RetryStatusIterator,
        info: TestRunInfo,
    ) -> RetryStatusIterator:
        props = self._properties(run.name, run.suite)
        if props.attempt_to_fix:
            if info.execution_count < self.attempt_to_fix_retries - 1:
                return retry_status.retry(ignore_errors=props.hides_failures)
            return retry_status.end(ignore_errors=props.hides_failures)
        if props.hides_failures:
            return retry_status.next(ignore_errors=True)
        return retry_status.next()

    def will_finish(
        self,
        run: TestRun,
        duration: float,
        status: TestStatus,
        info: TestRunEndInfo,
    ) -> None:
        if not info.is_final or info.decided_by != self.id:
            return
        if not self._properties(run.name, run.suite).attempt_to_fix:
            return
        failed = info.failed_execution_count + (1 if status is TestStatus.FAIL else 0)
        run.set_tag(tags.TM_ATTEMPT_TO_FIX_PASSED, tags.TRUE if failed == 0 else tags.FALSE)
        if failed == info.execution_count + 1:
            run.set_tag(tags.HAS_FAILED_ALL_RETRIES, tags.TRUE)

    def failure_suppression_reason(self, run: TestRun) -> str:
        props = self._properties(run.name, run.suite)
        if props.disabled:
            return tags.SUPPRESSION_DISABLED
        if props.quarantined:
            return tags.SUPPRESSION_QUARANTINE
        return tags.SUPPRESSION_ATTEMPT_TO_FIX
