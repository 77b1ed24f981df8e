"""Test execution: the retry-group runner, manifests and the subprocess executor."""

from flakeguard.execution.executor import SessionExecutor, SubprocessTestBody
from flakeguard.execution.manifest import TestManifest
from flakeguard.execution.retry_group import (
    GroupState,
    RetryGroupRunner,
    RunnerStateError,
    RunOutcome,
)

__all__ = [
    "GroupState",
    "RetryGroupRunner",
    "RunOutcome",
    "RunnerStateError",
    "SessionExecutor",
    "SubprocessTestBody",
    "TestManifest",
]
