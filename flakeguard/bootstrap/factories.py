"""Builders for each feature.

Every factory checks the remote and local switches, loads the feature's
data from the cache or the backend, and returns None when the feature
cannot or should not run. Failures disable the feature; they are never
raised to the test session.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, TypeVar

from flakeguard.api.client import ApiClient, ApiError
from flakeguard.api.settings import RemoteSettings
from flakeguard.bootstrap.cache import KNOWN_TESTS, SKIPPABLE_TESTS, TEST_MANAGEMENT, FeatureCache
from flakeguard.config import EngineConfig
from flakeguard.features.atr import AutomaticTestRetries
from flakeguard.features.efd import EarlyFlakeDetection
from flakeguard.features.known_tests import KnownTests, parse_known_tests
from flakeguard.features.management import (
    TestManagement,
    management_to_json,
    parse_test_management,
)
from flakeguard.features.tia import TestImpactAnalysis

log = logging.getLogger(__name__)

T = TypeVar("T")


def load_settings(config: EngineConfig, api: ApiClient | None) -> RemoteSettings:
    """Read remote settings from the local settings file or the backend.

    With neither available every remote-gated feature is off.

    Raises:
        ApiError: If the backend request fails.
        ValueError: If the local settings file is malformed.
    """
    if config.settings_file is not None:
        try:
            payload = json.loads(config.settings_file.read_text())
        except (json.JSONDecodeError, OSError) as e:
            raise ValueError(f"Cannot read settings file {config.settings_file}: {e}") from e
        if not isinstance(payload, dict):
            raise ValueError(f"Settings file {config.settings_file} is not a JSON object")
        if "data" in payload:
            return RemoteSettings.from_response(payload)
        return RemoteSettings.from_attributes(payload)
    if api is None:
        log.debug("No API URL or settings file configured; remote features are disabled")
        return RemoteSettings()
    return api.fetch_settings()


def _load_or_fetch(
    name: str,
    cache: FeatureCache | None,
    entry: tuple[str, str],
    parse: Callable[[Any], T],
    fetch: Callable[[], T] | None,
    encode: Callable[[T], Any],
) -> T | None:
    if cache is not None:
        cached = cache.load(entry)
        if cached is not None:
            try:
                return parse(cached)
            except (AttributeError, KeyError, TypeError, ValueError):
                log.warning("Ignoring malformed %s cache at %s", name, cache.path(entry))
    if fetch is None:
        log.debug("%s: no cached data and no API client", name)
        return None
    try:
        value = fetch()
    except ApiError as e:
        log.warning("Failed to fetch %s: %s", name, e)
        return None
    if cache is not None:
        cache.save(entry, encode(value))
    return value


def create_known_tests(
    config: EngineConfig,
    settings: RemoteSettings | None,
    api: ApiClient | None,
    cache: FeatureCache | None,
) -> KnownTests | None:
    if settings is None or not settings.known_tests_enabled:
        log.debug("Known tests disabled by remote settings")
        return None
    if not config.known_tests_enabled:
        log.debug("Known tests disabled by local configuration")
        return None
    tests = _load_or_fetch(
        "known tests",
        cache,
        KNOWN_TESTS,
        parse=lambda data: parse_known_tests({"tests": data}),
        fetch=api.fetch_known_tests if api is not None else None,
        encode=lambda value: value,
    )
    if tests is None:
        return None
    feature = KnownTests(tests)
    if feature.test_count == 0:
        log.debug("Known tests disabled: the backend knows no tests yet")
        return None
    log.info("Known tests fetched: %d", feature.test_count)
    return feature


def create_early_flake_detection(
    config: EngineConfig,
    settings: RemoteSettings | None,
    known_tests: KnownTests | None,
) -> EarlyFlakeDetection | None:
    if settings is None or not settings.early_flake_detection.enabled:
        log.debug("Early flake detection disabled by remote settings")
        return None
    if not config.early_flake_detection_enabled:
        log.warning(
            "Early flake detection is enabled by the backend but disabled by local configuration"
        )
        return None
    if known_tests is None:
        log.debug("Early flake detection disabled: known tests are unavailable")
        return None
    efd = settings.early_flake_detection
    return EarlyFlakeDetection(
        known_tests=known_tests,
        slow_test_retries=efd.slow_test_retries,
        faulty_session_threshold=efd.faulty_session_threshold,
    )


def create_test_management(
    config: EngineConfig,
    settings: RemoteSettings | None,
    api: ApiClient | None,
    cache: FeatureCache | None,
) -> TestManagement | None:
    if settings is None or not settings.test_management.enabled:
        log.debug("Test management disabled by remote settings")
        return None
    if not config.test_management_enabled:
        log.debug("Test management disabled by local configuration")
        return None
    tests = _load_or_fetch(
        "test management tests",
        cache,
        TEST_MANAGEMENT,
        parse=parse_test_management,
        fetch=api.fetch_test_management_tests if api is not None else None,
        encode=management_to_json,
    )
    if not tests:
        log.debug("Test management disabled: no managed tests")
        return None
    retries = config.attempt_to_fix_retries or settings.test_management.attempt_to_fix_retries
    return TestManagement(tests, attempt_to_fix_retries=retries)


def create_test_impact_analysis(
    config: EngineConfig,
    settings: RemoteSettings | None,
    api: ApiClient | None,
    cache: FeatureCache | None,
) -> TestImpactAnalysis | None:
    if settings is None or not (settings.itr.enabled and settings.itr.tests_skipping):
        log.debug("Test impact analysis disabled by remote settings")
        return None
    if not config.itr_enabled:
        log.debug("Test impact analysis disabled by local configuration")
        return None
    if config.is_branch_excluded(config.branch):
        log.info("Test impact analysis disabled on excluded branch %s", config.branch)
        return None
    loaded = _load_or_fetch(
        "skippable tests",
        cache,
        SKIPPABLE_TESTS,
        parse=_parse_cached_skippable,
        fetch=api.fetch_skippable_tests if api is not None else None,
        encode=lambda value: {"correlation_id": value[1], "tests": value[0]},
    )
    if loaded is None:
        log.warning("Failed to fetch skippable tests, no tests will be skipped")
        return None
    skippable, correlation_id = loaded
    log.info("Test impact analysis correlation id: %s", correlation_id)
    return TestImpactAnalysis(skippable, correlation_id=correlation_id)


def _parse_cached_skippable(data: Any) -> tuple[dict[str, dict[str, list[str]]], str | None]:
    tests = data["tests"]
    if not isinstance(tests, dict):
        raise ValueError("Cached skippable tests are not an object")
    skippable = {
        module: {suite: [str(t) for t in names] for suite, names in suites.items()}
        for module, suites in tests.items()
    }
    return skippable, data.get("correlation_id")


def create_automatic_test_retries(
    config: EngineConfig,
    settings: RemoteSettings | None,
) -> AutomaticTestRetries | None:
    if settings is None or not settings.flaky_test_retries_enabled:
        log.debug("Automatic test retries disabled by remote settings")
        return None
    if not config.test_retries_enabled:
        log.warning(
            "Automatic test retries are enabled by the backend but disabled by local configuration"
        )
        return None
    return AutomaticTestRetries(
        failed_retries_per_test=config.test_retries_per_test,
        global_retry_budget=config.test_retries_total,
    )
