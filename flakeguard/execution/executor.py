"""Session executor for manifest-described test executables.

Walks the manifest module by module and suite by suite, notifying features
of each suite start and driving every test through a RetryGroupRunner.
Each physical run executes the test's command as a subprocess: exit code 0
passes, 77 skips, anything else fails.
"""

from __future__ import annotations

import logging
import subprocess
import time
from typing import Callable, Iterable, Sequence

from flakeguard.engine.feature import Feature
from flakeguard.execution.manifest import ManifestTest, TestManifest
from flakeguard.execution.retry_group import RetryGroupRunner, RunOutcome
from flakeguard.model.entities import (
    TestError,
    TestGroup,
    TestRun,
    TestSession,
    TestStatus,
)

log = logging.getLogger(__name__)

SKIP_EXIT_CODE = 77

# Keep error messages readable in reports
MAX_OUTPUT_CHARS = 4000


class SubprocessTestBody:
    """Runs one manifest test as a subprocess per physical run."""

    def __init__(self, test: ManifestTest, timeout: float = 300.0) -> None:
        self.test = test
        self.timeout = timeout

    def __call__(self, run: TestRun) -> RunOutcome:
        executable = self.test.executable
        start_time = time.monotonic()
        try:
            proc = subprocess.run(
                self.test.command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return RunOutcome(
                TestStatus.FAIL,
                duration=time.monotonic() - start_time,
                error=TestError("Timeout", f"Test timed out after {self.timeout} seconds"),
            )
        except FileNotFoundError:
            return RunOutcome(
                TestStatus.FAIL,
                duration=time.monotonic() - start_time,
                error=TestError("FileNotFoundError", f"Executable not found: {executable}"),
            )
        except OSError as e:
            return RunOutcome(
                TestStatus.FAIL,
                duration=time.monotonic() - start_time,
                error=TestError("OSError", f"OS error running test: {e}"),
            )
        duration = time.monotonic() - start_time

        if proc.returncode == 0:
            return RunOutcome(TestStatus.PASS, duration=duration)
        if proc.returncode == SKIP_EXIT_CODE:
            reason = proc.stdout.strip().splitlines()[-1] if proc.stdout.strip() else None
            return RunOutcome(TestStatus.SKIP, duration=duration, skip_reason=reason)
        output = (proc.stderr or proc.stdout).strip()[-MAX_OUTPUT_CHARS:]
        return RunOutcome(
            TestStatus.FAIL,
            duration=duration,
            error=TestError("ExitCode", f"Exited with code {proc.returncode}", output or None),
        )


def aggregate_status(statuses: Iterable[TestStatus]) -> TestStatus | None:
    """Container status: fail beats pass, skip only when everything skipped."""
    statuses = list(statuses)
    if not statuses:
        return None
    if TestStatus.FAIL in statuses:
        return TestStatus.FAIL
    if all(s is TestStatus.SKIP for s in statuses):
        return TestStatus.SKIP
    return TestStatus.PASS


class SessionExecutor:
    """Executes every test of a manifest sequentially."""

    def __init__(
        self,
        features: Sequence[Feature],
        timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.features = list(features)
        self.timeout = timeout
        self.clock = clock
        self.groups: list[TestGroup] = []

    def execute(self, manifest: TestManifest, session: TestSession | None = None) -> TestSession:
        """Run the manifest.

        Returns:
            The finished TestSession.
        """
        session = session or TestSession(manifest.session)
        module_statuses: list[TestStatus] = []
        for module_name, manifest_module in manifest.modules.items():
            module = session.module(module_name)
            suite_statuses: list[TestStatus] = []
            for suite_name, manifest_suite in manifest_module.suites.items():
                suite = module.suite(suite_name)
                log.debug(
                    "Running suite %s/%s (%d tests)",
                    module_name, suite_name, len(manifest_suite.tests),
                )
                for feature in self.features:
                    feature.suite_will_start(suite, len(manifest_suite.tests))

                group_statuses: list[TestStatus] = []
                for test in manifest_suite.tests.values():
                    runner = RetryGroupRunner(self.features, clock=self.clock)
                    group = runner.run(
                        test.name,
                        suite,
                        SubprocessTestBody(test, timeout=self.timeout),
                        meta=manifest_suite,
                    )
                    self.groups.append(group)
                    group_statuses.append(group.final_status)

                _finish(suite, group_statuses)
                if suite.status is not None:
                    suite_statuses.append(suite.status)
            _finish(module, suite_statuses)
            if module.status is not None:
                module_statuses.append(module.status)
        _finish(session, module_statuses)
        return session


def _finish(container, statuses: list[TestStatus]) -> None:
    status = aggregate_status(statuses)
    if status is TestStatus.FAIL:
        container.set_failed()
    elif status is TestStatus.SKIP:
        container.set_skipped()
    container.end()
