"""Test identity model: sessions, modules, suites, logical tests and runs."""

from flakeguard.model.entities import (
    ErrorState,
    TestError,
    TestGroup,
    TestModule,
    TestRun,
    TestSession,
    TestStatus,
    TestSuite,
)

__all__ = [
    "ErrorState",
    "TestError",
    "TestGroup",
    "TestModule",
    "TestRun",
    "TestSession",
    "TestStatus",
    "TestSuite",
]
