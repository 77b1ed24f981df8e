"""Remote settings model. The HTTP client lives in ``flakeguard.api.client``."""

from flakeguard.api.settings import (
    EarlyFlakeDetectionSettings,
    RemoteSettings,
    TestImpactSettings,
    TestManagementSettings,
    TimeTable,
)

__all__ = [
    "EarlyFlakeDetectionSettings",
    "RemoteSettings",
    "TestImpactSettings",
    "TestManagementSettings",
    "TimeTable",
]
