"""Tests for the per-session context."""

from __future__ import annotations

import json
import os
import stat
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from flakeguard.bootstrap.cache import SKIPPABLE_TESTS, FeatureCache
from flakeguard.config import EngineConfig
from flakeguard.context import SessionContext
from flakeguard.execution.manifest import TestManifest
from flakeguard.model import tags
from flakeguard.model.entities import TestStatus


def _make_script(directory: str, name: str, content: str) -> str:
    path = os.path.join(directory, name)
    with open(path, "w") as f:
        f.write(content)
    os.chmod(path, stat.S_IRWXU)
    return path


def _config(tmpdir: str, settings: dict) -> EngineConfig:
    settings_path = Path(tmpdir) / "settings.json"
    settings_path.write_text(json.dumps(settings))
    config = EngineConfig(environ={})
    config.set(settings_file=str(settings_path), cache_dir=str(Path(tmpdir) / "cache"))
    return config


def _manifest(tests: dict[str, str]) -> TestManifest:
    return TestManifest.from_dict({
        "modules": {"m": {"suites": {"S": {
            "tests": {name: {"executable": exe} for name, exe in tests.items()},
        }}}},
    })


class TestSessionContext:
    """Tests for SessionContext."""

    def test_run_requires_start(self):
        """run() before start() raises RuntimeError."""
        context = SessionContext(EngineConfig(environ={}))
        with pytest.raises(RuntimeError, match="start\\(\\) must be called"):
            context.run(TestManifest())

    def test_run_after_stop(self):
        """run() after stop() raises RuntimeError."""
        context = SessionContext(EngineConfig(environ={}))
        context.start()
        context.stop()
        with pytest.raises(RuntimeError, match="has been stopped"):
            context.run(TestManifest())

    def test_start_is_idempotent(self):
        """A second start() returns the same feature set."""
        context = SessionContext(EngineConfig(environ={}))
        assert context.start() is context.start()

    def test_skips_cached_skippable_tests(self):
        """Skippable tests from the cache are skipped and counted on the session."""
        with tempfile.TemporaryDirectory() as tmpdir:
            config = _config(tmpdir, {"itr_enabled": True, "tests_skipping": True})
            FeatureCache(config.cache_dir, config.cache_module).save(
                SKIPPABLE_TESTS, {"correlation_id": "cid", "tests": {"m": {"S": ["skipme"]}}},
            )
            fail = _make_script(tmpdir, "fail.sh", "#!/bin/bash\nexit 1\n")
            ok = _make_script(tmpdir, "ok.sh", "#!/bin/bash\nexit 0\n")

            with SessionContext(config) as context:
                context.start()
                session = context.run(_manifest({"skipme": fail, "runme": ok}))

        assert session.status is TestStatus.PASS
        assert session.metrics[tags.ITR_TESTS_SKIPPED] == 1.0
        statuses = {g.name: g.final_status for g in context.reporter.groups}
        assert statuses == {"skipme": TestStatus.SKIP, "runme": TestStatus.PASS}
        assert "test-impact-analysis" in context.reporter.features

    def test_stop_closes_owned_client(self):
        """A client created by the context is closed once."""
        config = EngineConfig(environ={})
        config.set(api_url="http://localhost:1")
        with patch("flakeguard.context.ApiClient") as client_cls:
            context = SessionContext(config)
            context.stop()
            context.stop()
        client_cls.return_value.close.assert_called_once()
