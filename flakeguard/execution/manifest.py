"""Test manifest: the modules, suites and test executables of a session.

Manifest format::

    {
      "session": "ci",
      "modules": {
        "<module>": {
          "suites": {
            "<suite>": {
              "unskippable": false,
              "tests": {
                "<test>": {"executable": "path", "args": [], "unskippable": false}
              }
            }
          }
        }
      }
    }
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass
class ManifestTest:
    """A single test executable."""

    name: str
    executable: str
    args: list[str] = field(default_factory=list)
    unskippable: bool = False

    @property
    def command(self) -> list[str]:
        return [self.executable, *self.args]


@dataclass
class ManifestSuite:
    """A suite of tests; doubles as the marker object for unskippable checks."""

    name: str
    tests: dict[str, ManifestTest] = field(default_factory=dict)
    unskippable: bool = False

    def is_unskippable(self, test_name: str) -> bool:
        if self.unskippable:
            return True
        test = self.tests.get(test_name)
        return test is not None and test.unskippable


@dataclass
class ManifestModule:
    name: str
    suites: dict[str, ManifestSuite] = field(default_factory=dict)


@dataclass
class TestManifest:
    """Parsed manifest."""

    session: str = "session"
    modules: dict[str, ManifestModule] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TestManifest:
        """Construct a manifest from parsed JSON.

        Raises:
            ValueError: If a test has no executable or a section has the wrong type.
        """
        if not isinstance(data, dict):
            raise ValueError("Manifest must be a JSON object")
        modules_data = data.get("modules", {})
        if not isinstance(modules_data, dict):
            raise ValueError("Manifest 'modules' must be an object")

        manifest = cls(session=str(data.get("session", "session")))
        for module_name, module_data in modules_data.items():
            module = ManifestModule(name=module_name)
            for suite_name, suite_data in (module_data or {}).get("suites", {}).items():
                suite = ManifestSuite(
                    name=suite_name,
                    unskippable=bool((suite_data or {}).get("unskippable", False)),
                )
                for test_name, test_data in (suite_data or {}).get("tests", {}).items():
                    executable = (test_data or {}).get("executable")
                    if not executable:
                        raise ValueError(
                            f"Test {module_name}/{suite_name}/{test_name} has no executable"
                        )
                    suite.tests[test_name] = ManifestTest(
                        name=test_name,
                        executable=str(executable),
                        args=[str(a) for a in test_data.get("args", [])],
                        unskippable=bool(test_data.get("unskippable", False)),
                    )
                module.suites[suite_name] = suite
            manifest.modules[module_name] = module
        return manifest

    @classmethod
    def load(cls, path: Path) -> TestManifest:
        """Read and parse a manifest file.

        Raises:
            FileNotFoundError: If the file does not exist.
            json.JSONDecodeError: If the file is not valid JSON.
            ValueError: If the content is not a valid manifest.
        """
        return cls.from_dict(json.loads(path.read_text()))

    @property
    def test_count(self) -> int:
        return sum(
            len(suite.tests)
            for module in self.modules.values()
            for suite in module.suites.values()
        )
