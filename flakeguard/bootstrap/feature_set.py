"""Concurrent construction of the session's feature chain.

Setup runs as a task graph on a bounded worker pool::

    settings ──┬── known_tests ── early_flake_detection
               ├── test_management
               ├── automatic_test_retries
               └── git_upload ── test_impact_analysis

The caller blocks once, for at most ``setup_timeout`` seconds. Whatever
did not finish, or failed, is simply absent from the chain.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Sequence, TypeVar

from flakeguard.api.client import ApiClient, ApiError
from flakeguard.api.settings import RemoteSettings
from flakeguard.bootstrap import factories
from flakeguard.bootstrap.cache import FeatureCache
from flakeguard.bootstrap.graph import TaskGraph
from flakeguard.config import EngineConfig
from flakeguard.engine.feature import Feature
from flakeguard.features.atr import AutomaticTestRetries
from flakeguard.features.efd import EarlyFlakeDetection
from flakeguard.features.known_tests import KnownTests
from flakeguard.features.management import TestManagement
from flakeguard.features.retry_tags import RetryAndSkipTags
from flakeguard.features.tia import TestImpactAnalysis

log = logging.getLogger(__name__)

F = TypeVar("F", bound=Feature)

# Precedence of the composed chain: earlier features win every fold.
FEATURE_ORDER: tuple[type[Feature], ...] = (
    TestManagement,
    TestImpactAnalysis,
    EarlyFlakeDetection,
    AutomaticTestRetries,
    KnownTests,
    RetryAndSkipTags,
)

# Uploads git metadata; returns True on success.
GitUploader = Callable[[], bool]


class FeatureSet:
    """The ordered features active for one session."""

    def __init__(
        self,
        features: Sequence[Feature],
        settings: RemoteSettings | None = None,
    ) -> None:
        rank = {cls: i for i, cls in enumerate(FEATURE_ORDER)}
        self.features: list[Feature] = sorted(
            features, key=lambda f: rank.get(type(f), len(FEATURE_ORDER)),
        )
        self.settings = settings
        self._stopped = False
        self._lock = threading.Lock()

    def get(self, cls: type[F]) -> F | None:
        for feature in self.features:
            if isinstance(feature, cls):
                return feature
        return None

    @property
    def ids(self) -> list[str]:
        return [f.id for f in self.features]

    def stop(self) -> None:
        """Stop every feature once. Later calls do nothing."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
        for feature in self.features:
            feature.stop()

    def __iter__(self):
        return iter(self.features)

    def __len__(self) -> int:
        return len(self.features)


def _await_git_upload(
    settings: RemoteSettings | None,
    api: ApiClient | None,
    git_upload: GitUploader | None,
) -> RemoteSettings | None:
    """Upload git metadata when required, then refresh the settings."""
    if settings is None or not settings.itr.require_git:
        return settings
    if git_upload is None:
        log.warning("Backend requires git metadata but no uploader is configured; "
                    "test skipping will be best effort")
        return settings
    log.info("Backend requires git metadata, waiting for the upload to complete")
    if not git_upload():
        log.warning("Git metadata upload failed, test skipping will be best effort")
        return settings
    if api is None:
        return settings
    try:
        return api.fetch_settings()
    except ApiError as e:
        log.warning("Failed to refresh settings after git metadata upload: %s", e)
        return settings


def build_feature_set(
    config: EngineConfig,
    api: ApiClient | None = None,
    cache: FeatureCache | None = None,
    git_upload: GitUploader | None = None,
) -> FeatureSet:
    """Build every enabled feature concurrently.

    Args:
        config: Local engine configuration.
        api: Backend client (None = offline).
        cache: Per-feature cache (None = no caching).
        git_upload: Blocking git metadata uploader.

    Returns:
        The assembled FeatureSet; RetryAndSkipTags is always present.
    """
    graph = TaskGraph()
    graph.add("settings", lambda _: factories.load_settings(config, api))
    graph.add(
        "git_upload",
        lambda r: _await_git_upload(r["settings"], api, git_upload),
        ["settings"],
    )
    graph.add(
        "known_tests",
        lambda r: factories.create_known_tests(config, r["settings"], api, cache),
        ["settings"],
    )
    graph.add(
        "early_flake_detection",
        lambda r: factories.create_early_flake_detection(
            config, r["settings"], r["known_tests"],
        ),
        ["settings", "known_tests"],
    )
    graph.add(
        "test_management",
        lambda r: factories.create_test_management(config, r["settings"], api, cache),
        ["settings"],
    )
    graph.add(
        "test_impact_analysis",
        lambda r: factories.create_test_impact_analysis(config, r["git_upload"], api, cache),
        ["git_upload"],
    )
    graph.add(
        "automatic_test_retries",
        lambda r: factories.create_automatic_test_retries(config, r["settings"]),
        ["settings"],
    )

    results: dict[str, Any] = graph.run(
        max_workers=config.setup_workers, timeout=config.setup_timeout,
    )
    settings = results.get("git_upload") or results.get("settings")
    features = [value for value in results.values() if isinstance(value, Feature)]
    features.append(RetryAndSkipTags())
    feature_set = FeatureSet(features, settings)
    log.info("Active features: %s", ", ".join(feature_set.ids))
    return feature_set
