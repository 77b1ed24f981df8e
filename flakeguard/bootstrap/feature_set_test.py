"""Tests for building the feature chain."""

from __future__ import annotations

import json
import tempfile
from pathlib import Path
from unittest.mock import MagicMock

from flakeguard.api.client import ApiError
from flakeguard.api.settings import RemoteSettings
from flakeguard.bootstrap.cache import TEST_MANAGEMENT, FeatureCache
from flakeguard.bootstrap.feature_set import FeatureSet, build_feature_set
from flakeguard.config import EngineConfig
from flakeguard.features.atr import AutomaticTestRetries
from flakeguard.features.efd import EarlyFlakeDetection
from flakeguard.features.known_tests import KnownTests
from flakeguard.features.management import TestManagement
from flakeguard.features.retry_tags import RetryAndSkipTags
from flakeguard.features.tia import TestImpactAnalysis


def _settings(**attributes) -> RemoteSettings:
    return RemoteSettings.from_attributes(attributes)


def _api(settings: RemoteSettings) -> MagicMock:
    api = MagicMock()
    api.fetch_settings.return_value = settings
    api.fetch_known_tests.return_value = {"m": {"S": ["a"]}}
    api.fetch_test_management_tests.return_value = {}
    api.fetch_skippable_tests.return_value = ({"m": {"S": ["a"]}}, "cid")
    return api


class TestFeatureSet:
    """Tests for FeatureSet."""

    def test_ordering(self):
        """Features are ordered by precedence whatever the input order."""
        tags = RetryAndSkipTags()
        atr = AutomaticTestRetries()
        tm = TestManagement({})
        feature_set = FeatureSet([tags, atr, tm])
        assert feature_set.features == [tm, atr, tags]
        assert feature_set.ids == ["test-management", "automatic-retry", "retry-and-skip-tags"]
        assert feature_set.get(AutomaticTestRetries) is atr
        assert feature_set.get(EarlyFlakeDetection) is None
        assert len(feature_set) == 3

    def test_stop_once(self):
        """stop() reaches each feature once."""
        feature = MagicMock(spec=AutomaticTestRetries)
        feature_set = FeatureSet([feature])
        feature_set.stop()
        feature_set.stop()
        feature.stop.assert_called_once()


class TestBuildFeatureSet:
    """Tests for build_feature_set."""

    def test_offline(self):
        """Without settings only the tag feature is active."""
        feature_set = build_feature_set(EngineConfig(environ={}))
        assert feature_set.ids == ["retry-and-skip-tags"]

    def test_all_features(self):
        """Every enabled feature is built and ordered."""
        settings = _settings(
            itr_enabled=True,
            tests_skipping=True,
            flaky_test_retries_enabled=True,
            known_tests_enabled=True,
            early_flake_detection={"enabled": True, "slow_test_retries": {"5s": 10}},
        )
        feature_set = build_feature_set(EngineConfig(environ={}), api=_api(settings))
        assert [type(f) for f in feature_set] == [
            TestImpactAnalysis,
            EarlyFlakeDetection,
            AutomaticTestRetries,
            KnownTests,
            RetryAndSkipTags,
        ]
        assert feature_set.get(EarlyFlakeDetection).known_tests is feature_set.get(KnownTests)
        assert feature_set.settings == settings

    def test_settings_failure_disables_everything(self):
        """A failed settings request leaves only the tag feature."""
        api = MagicMock()
        api.fetch_settings.side_effect = ApiError("down")
        feature_set = build_feature_set(EngineConfig(environ={}), api=api)
        assert feature_set.ids == ["retry-and-skip-tags"]

    def test_git_upload_refreshes_settings(self):
        """When git metadata is required the settings are fetched again after upload."""
        before = _settings(itr_enabled=True, tests_skipping=False, require_git=True)
        after = _settings(itr_enabled=True, tests_skipping=True)
        api = _api(before)
        api.fetch_settings.side_effect = [before, after]
        uploads = []

        def upload() -> bool:
            uploads.append(True)
            return True

        feature_set = build_feature_set(EngineConfig(environ={}), api=api, git_upload=upload)
        assert uploads == [True]
        assert feature_set.get(TestImpactAnalysis) is not None
        assert api.fetch_settings.call_count == 2

    def test_failed_git_upload_keeps_settings(self):
        """A failed upload keeps the first settings."""
        settings = _settings(itr_enabled=True, tests_skipping=True, require_git=True)
        api = _api(settings)
        feature_set = build_feature_set(EngineConfig(environ={}), api=api, git_upload=lambda: False)
        assert feature_set.get(TestImpactAnalysis) is not None
        assert api.fetch_settings.call_count == 1

    def test_settings_file_and_cache(self):
        """Offline setup reads settings from a file and data from the cache."""
        with tempfile.TemporaryDirectory() as tmpdir:
            settings_path = Path(tmpdir) / "settings.json"
            settings_path.write_text(json.dumps({"test_management": {"enabled": True}}))
            cache = FeatureCache(Path(tmpdir) / "cache")
            cache.save(TEST_MANAGEMENT, {"modules": {"m": {"suites": {"S": {"tests": {
                "t": {"properties": {"disabled": True}},
            }}}}}})
            config = EngineConfig(environ={})
            config.set(settings_file=str(settings_path))
            feature_set = build_feature_set(config, cache=cache)
        assert feature_set.ids == ["test-management", "retry-and-skip-tags"]
