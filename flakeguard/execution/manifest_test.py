"""Tests for the test manifest."""

from __future__ import annotations

import json
import tempfile
from pathlib import Path

import pytest

from flakeguard.execution.manifest import TestManifest

MANIFEST = {
    "session": "ci",
    "modules": {
        "m": {
            "suites": {
                "S": {
                    "unskippable": False,
                    "tests": {
                        "a": {"executable": "/bin/true"},
                        "b": {"executable": "/bin/echo", "args": ["hi", 1], "unskippable": True},
                    },
                },
                "T": {"unskippable": True, "tests": {"c": {"executable": "/bin/true"}}},
            }
        }
    },
}


class TestTestManifest:
    """Tests for TestManifest."""

    def test_from_dict(self):
        """Modules, suites and tests are parsed in order."""
        manifest = TestManifest.from_dict(MANIFEST)
        assert manifest.session == "ci"
        assert manifest.test_count == 3
        suite = manifest.modules["m"].suites["S"]
        assert list(suite.tests) == ["a", "b"]
        assert suite.tests["b"].command == ["/bin/echo", "hi", "1"]

    def test_unskippable(self):
        """Suites and tests can be marked unskippable."""
        manifest = TestManifest.from_dict(MANIFEST)
        suites = manifest.modules["m"].suites
        assert not suites["S"].is_unskippable("a")
        assert suites["S"].is_unskippable("b")
        assert suites["T"].is_unskippable("c")
        assert not suites["S"].is_unskippable("missing")

    def test_missing_executable(self):
        """A test without an executable is rejected."""
        data = {"modules": {"m": {"suites": {"S": {"tests": {"a": {}}}}}}}
        with pytest.raises(ValueError, match="m/S/a has no executable"):
            TestManifest.from_dict(data)

    def test_invalid_modules(self):
        """A non-object modules section is rejected."""
        with pytest.raises(ValueError, match="'modules' must be an object"):
            TestManifest.from_dict({"modules": []})

    def test_load(self):
        """load reads a JSON file."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "manifest.json"
            path.write_text(json.dumps(MANIFEST))
            assert TestManifest.load(path).test_count == 3

    def test_load_missing_file(self):
        """A missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            TestManifest.load(Path("/nonexistent/manifest.json"))
