"""Retry, skip and tagging policies composed by the retry-group runner."""

from flakeguard.features.atr import AutomaticTestRetries
from flakeguard.features.efd import EarlyFlakeDetection, TestCounters
from flakeguard.features.known_tests import KnownTests, merge_known_tests
from flakeguard.features.management import TestManagement, TestProperties
from flakeguard.features.retry_tags import RetryAndSkipTags
from flakeguard.features.tia import TestImpactAnalysis, unskippable

__all__ = [
    "AutomaticTestRetries",
    "EarlyFlakeDetection",
    "KnownTests",
    "RetryAndSkipTags",
    "TestCounters",
    "TestImpactAnalysis",
    "TestManagement",
    "TestProperties",
    "merge_known_tests",
    "unskippable",
]
