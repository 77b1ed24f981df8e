"""Per-feature JSON cache files.

Each feature keeps its fetched data under
``<cache_dir>/<feature>/<module>/<file>.json``. Files are read once at
startup; a missing or corrupted file is treated as a cache miss.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)

KNOWN_TESTS = ("known_tests", "known_tests.json")
TEST_MANAGEMENT = ("test_management", "test_management_tests.json")
SKIPPABLE_TESTS = ("skippable_tests", "skippable_tests.json")


class FeatureCache:
    """Reads and writes cache files for one module."""

    def __init__(self, root: str | Path, module: str = "default") -> None:
        self.root = Path(root)
        self.module = module

    def path(self, entry: tuple[str, str]) -> Path:
        feature, file_name = entry
        return self.root / feature / self.module / file_name

    def load(self, entry: tuple[str, str]) -> Any | None:
        """Return the cached JSON value, or None on a miss."""
        path = self.path(entry)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text())
        except (json.JSONDecodeError, OSError):
            log.warning("Ignoring unreadable cache file %s", path)
            return None

    def save(self, entry: tuple[str, str], value: Any) -> None:
        """Write ``value`` as JSON. Write failures are logged, not raised."""
        path = self.path(entry)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                json.dump(value, f, indent=2)
                f.write("\n")
        except OSError:
            log.warning("Could not write cache file %s", path, exc_info=True)
