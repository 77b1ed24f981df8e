"""Tests for the engine configuration file."""

from __future__ import annotations

import json
import tempfile
from pathlib import Path

import pytest

from flakeguard.config import DEFAULT_CONFIG, EngineConfig


class TestEngineConfig:
    """Tests for EngineConfig."""

    def test_defaults(self):
        """Without a file or environment every value is the default."""
        config = EngineConfig(environ={})
        assert config.config == DEFAULT_CONFIG
        assert config.api_url is None
        assert config.test_retries_per_test == 5
        assert config.test_retries_total == 1000
        assert config.cache_dir == Path(".flakeguard/cache")
        assert config.attempt_to_fix_retries is None

    def test_load_from_file(self):
        """Values in the file override defaults."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            path.write_text(json.dumps({"test_retries_per_test": 2, "branch": "main"}))
            config = EngineConfig(path, environ={})
            assert config.test_retries_per_test == 2
            assert config.branch == "main"
            assert config.test_retries_total == 1000

    def test_corrupted_file_uses_defaults(self):
        """An unreadable file falls back to the defaults."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            path.write_text("not json")
            assert EngineConfig(path, environ={}).config == DEFAULT_CONFIG

    def test_environment_overrides(self):
        """FLAKEGUARD_<KEY> variables override the file, coerced to the default's type."""
        config = EngineConfig(environ={
            "FLAKEGUARD_TEST_RETRIES_ENABLED": "false",
            "FLAKEGUARD_TEST_RETRIES_TOTAL": "7",
            "FLAKEGUARD_SETUP_TIMEOUT": "1.5",
            "FLAKEGUARD_EXCLUDED_BRANCHES": "main, release/*",
            "FLAKEGUARD_API_URL": "http://localhost",
        })
        assert not config.test_retries_enabled
        assert config.test_retries_total == 7
        assert config.setup_timeout == 1.5
        assert config.excluded_branches == ["main", "release/*"]
        assert config.api_url == "http://localhost"

    def test_invalid_environment_value(self):
        """A non-numeric value for a numeric key raises ValueError."""
        with pytest.raises(ValueError, match="FLAKEGUARD_TEST_RETRIES_TOTAL"):
            EngineConfig(environ={"FLAKEGUARD_TEST_RETRIES_TOTAL": "many"})

    def test_set_and_save(self):
        """set() updates values and save() writes them back."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "sub" / "config.json"
            config = EngineConfig(path, environ={})
            config.set(test_retries_per_test=3, branch=None)
            config.save()
            assert json.loads(path.read_text())["test_retries_per_test"] == 3
            assert EngineConfig(path, environ={}).test_retries_per_test == 3

    def test_set_unknown_key(self):
        """Unknown keys are rejected."""
        with pytest.raises(KeyError, match="Unknown configuration key"):
            EngineConfig(environ={}).set(bogus=1)

    def test_save_without_path(self):
        """save() needs a path."""
        with pytest.raises(ValueError, match="No config file path"):
            EngineConfig(environ={}).save()

    def test_excluded_branches(self):
        """Exact and prefix patterns exclude branches."""
        config = EngineConfig(environ={})
        config.set(excluded_branches=["main", "release/*"])
        assert config.is_branch_excluded("main")
        assert config.is_branch_excluded("release/1.2")
        assert not config.is_branch_excluded("feature/x")
        assert not config.is_branch_excluded(None)
