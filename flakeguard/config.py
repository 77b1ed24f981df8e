"""Engine configuration file management.

Reads and writes the JSON configuration file holding local switches and
budgets for every feature. Environment variables named ``FLAKEGUARD_<KEY>``
override values from the file.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping

ENV_PREFIX = "FLAKEGUARD_"

# Default configuration values
DEFAULT_CONFIG: dict[str, Any] = {
    "api_url": None,
    "api_key": None,
    "service": None,
    "env": None,
    "repository_url": None,
    "branch": None,
    "commit_sha": None,
    "commit_message": None,
    "settings_file": None,
    "test_retries_enabled": True,
    "test_retries_per_test": 5,
    "test_retries_total": 1000,
    "early_flake_detection_enabled": True,
    "known_tests_enabled": True,
    "test_management_enabled": True,
    "attempt_to_fix_retries": None,
    "itr_enabled": True,
    "excluded_branches": [],
    "cache_dir": ".flakeguard/cache",
    "cache_module": "default",
    "setup_timeout": 30.0,
    "setup_workers": 4,
    "request_timeout": 15.0,
    "test_timeout": 300.0,
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _coerce_env(key: str, raw: str) -> Any:
    """Convert an environment string to the type of the key's default."""
    default = DEFAULT_CONFIG[key]
    if isinstance(default, bool):
        return raw.strip().lower() in _TRUE_VALUES
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if isinstance(default, list):
        return [item.strip() for item in raw.split(",") if item.strip()]
    if raw == "":
        return None
    return raw


class EngineConfig:
    """Manages the flakeguard JSON configuration file."""

    def __init__(
        self,
        path: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.path = path
        self._data: dict[str, Any] = dict(DEFAULT_CONFIG)
        if path is not None and path.exists():
            self._load()
        self._apply_env(os.environ if environ is None else environ)

    def _load(self) -> None:
        """Load config from the file."""
        assert self.path is not None
        try:
            text = self.path.read_text()
            data = json.loads(text)
            if isinstance(data, dict):
                self._data = {**DEFAULT_CONFIG, **data}
        except (json.JSONDecodeError, OSError):
            self._data = dict(DEFAULT_CONFIG)

    def _apply_env(self, environ: Mapping[str, str]) -> None:
        for key in DEFAULT_CONFIG:
            raw = environ.get(ENV_PREFIX + key.upper())
            if raw is None:
                continue
            try:
                self._data[key] = _coerce_env(key, raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for {ENV_PREFIX}{key.upper()}: {raw!r}") from e

    def save(self) -> None:
        """Write config to the file."""
        if self.path is None:
            raise ValueError("No config file path specified")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(self._data, f, indent=2)
            f.write("\n")

    def set(self, **values: Any) -> None:
        """Update configuration values; None leaves a value unchanged.

        Raises:
            KeyError: For keys that are not configuration keys.
        """
        for key, value in values.items():
            if key not in DEFAULT_CONFIG:
                raise KeyError(f"Unknown configuration key: {key}")
            if value is not None:
                self._data[key] = value

    @property
    def config(self) -> dict[str, Any]:
        """Get the full configuration dict."""
        return dict(self._data)

    def _str(self, key: str) -> str | None:
        val = self._data.get(key, DEFAULT_CONFIG[key])
        return str(val) if val is not None else None

    @property
    def api_url(self) -> str | None:
        """Base URL of the backend (None = offline)."""
        return self._str("api_url")

    @property
    def api_key(self) -> str | None:
        return self._str("api_key")

    @property
    def service(self) -> str | None:
        return self._str("service")

    @property
    def env(self) -> str | None:
        return self._str("env")

    @property
    def repository_url(self) -> str | None:
        return self._str("repository_url")

    @property
    def branch(self) -> str | None:
        return self._str("branch")

    @property
    def commit_sha(self) -> str | None:
        return self._str("commit_sha")

    @property
    def commit_message(self) -> str | None:
        return self._str("commit_message")

    @property
    def settings_file(self) -> Path | None:
        """Local settings file used instead of the settings endpoint."""
        val = self._data.get("settings_file")
        return Path(val) if val else None

    @property
    def test_retries_enabled(self) -> bool:
        return bool(self._data.get("test_retries_enabled", True))

    @property
    def test_retries_per_test(self) -> int:
        """Get the max automatic retries per failing test."""
        return int(
            self._data.get("test_retries_per_test", DEFAULT_CONFIG["test_retries_per_test"])
        )

    @property
    def test_retries_total(self) -> int:
        """Get the session-wide automatic retry budget."""
        return int(
            self._data.get("test_retries_total", DEFAULT_CONFIG["test_retries_total"])
        )

    @property
    def early_flake_detection_enabled(self) -> bool:
        return bool(self._data.get("early_flake_detection_enabled", True))

    @property
    def known_tests_enabled(self) -> bool:
        return bool(self._data.get("known_tests_enabled", True))

    @property
    def test_management_enabled(self) -> bool:
        return bool(self._data.get("test_management_enabled", True))

    @property
    def attempt_to_fix_retries(self) -> int | None:
        """Get the attempt-to-fix execution count override (None = remote value)."""
        val = self._data.get("attempt_to_fix_retries")
        return int(val) if val is not None else None

    @property
    def itr_enabled(self) -> bool:
        return bool(self._data.get("itr_enabled", True))

    @property
    def excluded_branches(self) -> list[str]:
        return [str(b) for b in self._data.get("excluded_branches") or []]

    def is_branch_excluded(self, branch: str | None) -> bool:
        """Whether test skipping is turned off for ``branch``.

        Entries ending in ``*`` match by prefix.
        """
        if not branch:
            return False
        for pattern in self.excluded_branches:
            if pattern.endswith("*"):
                if branch.startswith(pattern[:-1]):
                    return True
            elif branch == pattern:
                return True
        return False

    @property
    def cache_dir(self) -> Path:
        return Path(self._data.get("cache_dir") or DEFAULT_CONFIG["cache_dir"])

    @property
    def cache_module(self) -> str:
        return str(self._data.get("cache_module") or DEFAULT_CONFIG["cache_module"])

    @property
    def setup_timeout(self) -> float:
        """Get the cap on the feature setup phase in seconds."""
        return float(self._data.get("setup_timeout", DEFAULT_CONFIG["setup_timeout"]))

    @property
    def setup_workers(self) -> int:
        return max(1, int(self._data.get("setup_workers", DEFAULT_CONFIG["setup_workers"])))

    @property
    def request_timeout(self) -> float:
        return float(self._data.get("request_timeout", DEFAULT_CONFIG["request_timeout"]))

    @property
    def test_timeout(self) -> float:
        """Get the timeout of one physical test execution in seconds."""
        return float(self._data.get("test_timeout", DEFAULT_CONFIG["test_timeout"]))
