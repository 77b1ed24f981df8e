"""Decision engine: strategy algebra and the feature interface."""

from flakeguard.engine.feature import Feature
from flakeguard.engine.strategy import (
    RetryGroupConfiguration,
    RetryStatus,
    RetryStatusIterator,
    SkipStatus,
    SkipStrategy,
    SuccessStrategy,
    TestRunEndInfo,
    TestRunInfo,
)

__all__ = [
    "Feature",
    "RetryGroupConfiguration",
    "RetryStatus",
    "RetryStatusIterator",
    "SkipStatus",
    "SkipStrategy",
    "SuccessStrategy",
    "TestRunEndInfo",
    "TestRunInfo",
]
