"""Feature setup: cache files, factories and the concurrent setup graph."""

from flakeguard.bootstrap.cache import FeatureCache
from flakeguard.bootstrap.feature_set import FEATURE_ORDER, FeatureSet, build_feature_set
from flakeguard.bootstrap.graph import SetupTask, TaskGraph

__all__ = [
    "FEATURE_ORDER",
    "FeatureCache",
    "FeatureSet",
    "SetupTask",
    "TaskGraph",
    "build_feature_set",
]
