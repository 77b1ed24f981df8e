"""Remote configuration returned by the settings endpoint."""

from __future__ import annotations

import bisect
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Mapping

log = logging.getLogger(__name__)

_TIME_UNITS = {"s": 1.0, "m": 60.0, "h": 3600.0}

DEFAULT_FAULTY_SESSION_THRESHOLD = 30.0
DEFAULT_ATTEMPT_TO_FIX_RETRIES = 20


def parse_duration(key: str) -> float | None:
    """Parse a time-table key such as ``"5s"``, ``"10m"`` or ``"1h"``.

    Returns:
        The duration in seconds, or None for malformed keys.
    """
    key = key.strip()
    if len(key) < 2 or key[-1] not in _TIME_UNITS:
        return None
    try:
        value = float(key[:-1])
    except ValueError:
        return None
    if value < 0:
        return None
    return value * _TIME_UNITS[key[-1]]


@dataclass(frozen=True)
class TimeTable:
    """Maps a first-execution duration to the number of EFD executions.

    Bucket ``i`` covers durations in ``[times[i], times[i+1])`` and grants
    ``counts[i]`` executions. Durations below the first threshold get the
    first bucket's count; durations past the last threshold get the last.
    """

    times: tuple[float, ...] = ()
    counts: tuple[int, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TimeTable:
        pairs: list[tuple[float, int]] = []
        for key, count in data.items():
            seconds = parse_duration(str(key))
            if seconds is None:
                log.debug("Ignoring malformed slow test retries key %r", key)
                continue
            try:
                pairs.append((seconds, int(count)))
            except (TypeError, ValueError):
                log.debug("Ignoring malformed slow test retries count %r for %r", count, key)
        pairs.sort()
        return cls(
            times=tuple(seconds for seconds, _ in pairs),
            counts=tuple(count for _, count in pairs),
        )

    def repeats(self, duration: float) -> int:
        """Number of executions granted to a test whose first run took ``duration``."""
        if not self.times:
            return 0
        rounded = math.floor(duration + 0.5)
        index = bisect.bisect_right(self.times, rounded)
        if index >= len(self.times):
            return self.counts[-1]
        if index == 0:
            return self.counts[0]
        return self.counts[index - 1]

    def __bool__(self) -> bool:
        return bool(self.times)


@dataclass(frozen=True)
class EarlyFlakeDetectionSettings:
    enabled: bool = False
    slow_test_retries: TimeTable = field(default_factory=TimeTable)
    faulty_session_threshold: float = DEFAULT_FAULTY_SESSION_THRESHOLD


@dataclass(frozen=True)
class TestManagementSettings:
    enabled: bool = False
    attempt_to_fix_retries: int = DEFAULT_ATTEMPT_TO_FIX_RETRIES


@dataclass(frozen=True)
class TestImpactSettings:
    enabled: bool = False
    code_coverage: bool = False
    tests_skipping: bool = False
    require_git: bool = False


@dataclass(frozen=True)
class RemoteSettings:
    """Everything the settings endpoint can switch on.

    Missing keys default to disabled so an empty response turns every
    remote-gated feature off.
    """

    flaky_test_retries_enabled: bool = False
    known_tests_enabled: bool = False
    early_flake_detection: EarlyFlakeDetectionSettings = field(
        default_factory=EarlyFlakeDetectionSettings,
    )
    test_management: TestManagementSettings = field(default_factory=TestManagementSettings)
    itr: TestImpactSettings = field(default_factory=TestImpactSettings)

    @classmethod
    def from_attributes(cls, attributes: Mapping[str, Any]) -> RemoteSettings:
        """Build settings from the ``attributes`` of a settings response."""
        efd = attributes.get("early_flake_detection") or {}
        tm = attributes.get("test_management") or {}
        return cls(
            flaky_test_retries_enabled=bool(attributes.get("flaky_test_retries_enabled", False)),
            known_tests_enabled=bool(attributes.get("known_tests_enabled", False)),
            early_flake_detection=EarlyFlakeDetectionSettings(
                enabled=bool(efd.get("enabled", False)),
                slow_test_retries=TimeTable.from_dict(efd.get("slow_test_retries") or {}),
                faulty_session_threshold=float(
                    efd.get("faulty_session_threshold", DEFAULT_FAULTY_SESSION_THRESHOLD)
                ),
            ),
            test_management=TestManagementSettings(
                enabled=bool(tm.get("enabled", False)),
                attempt_to_fix_retries=int(
                    tm.get("attempt_to_fix_retries", DEFAULT_ATTEMPT_TO_FIX_RETRIES)
                ),
            ),
            itr=TestImpactSettings(
                enabled=bool(attributes.get("itr_enabled", False)),
                code_coverage=bool(attributes.get("code_coverage", False)),
                tests_skipping=bool(attributes.get("tests_skipping", False)),
                require_git=bool(attributes.get("require_git", False)),
            ),
        )

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> RemoteSettings:
        """Build settings from a full ``{"data": {"attributes": ...}}`` body.

        Raises:
            ValueError: If the body has no ``data.attributes`` object.
        """
        data = payload.get("data")
        attributes = data.get("attributes") if isinstance(data, dict) else None
        if not isinstance(attributes, dict):
            raise ValueError("Settings response has no data.attributes object")
        return cls.from_attributes(attributes)
