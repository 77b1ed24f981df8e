"""Report generation for a finished test session.

Produces one entry per logical test (final status, how many times it ran,
why it was retried, whether it was flaky or new, how many failures were
hidden) plus summary counts, as JSON or YAML.
"""

from __future__ import annotations

import datetime
import json
from collections import Counter
from pathlib import Path
from typing import Any

import yaml

from flakeguard.model import tags
from flakeguard.model.entities import TestGroup, TestSession, TestStatus


class SessionReporter:
    """Collects finished test groups and generates reports."""

    def __init__(self) -> None:
        self.groups: list[TestGroup] = []
        self.session: TestSession | None = None
        self.features: list[str] = []

    def set_session(self, session: TestSession) -> None:
        self.session = session

    def set_features(self, feature_ids: list[str]) -> None:
        """Record which features were active."""
        self.features = list(feature_ids)

    def add_group(self, group: TestGroup) -> None:
        self.groups.append(group)

    def add_groups(self, groups: list[TestGroup]) -> None:
        self.groups.extend(groups)

    def generate_report(self) -> dict[str, Any]:
        """Generate the report as a dict.

        Returns:
            Dictionary with ``report`` metadata, ``summary`` and ``tests``.
        """
        report: dict[str, Any] = {
            "generated_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "features": list(self.features),
            "summary": self._compute_summary(),
            "tests": [self._format_group(g) for g in self.groups],
        }
        if self.session is not None:
            report["session"] = self.session.name
            if self.session.status is not None:
                report["status"] = self.session.status.value
            if self.session.tags:
                report["session_tags"] = dict(self.session.tags)
        return {"report": report}

    def write_json(self, path: Path) -> None:
        """Write the report as a JSON file."""
        report = self.generate_report()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(report, f, indent=2)

    def write_yaml(self, path: Path) -> None:
        """Write the report as a YAML file."""
        report = self.generate_report()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(
                report,
                f,
                default_flow_style=False,
                sort_keys=False,
                allow_unicode=True,
            )

    def _compute_summary(self) -> dict[str, Any]:
        statuses = Counter(g.final_status for g in self.groups)
        return {
            "total": len(self.groups),
            "passed": statuses[TestStatus.PASS],
            "failed": statuses[TestStatus.FAIL],
            "skipped": statuses[TestStatus.SKIP],
            "flaky": sum(1 for g in self.groups if g.is_flaky),
            "new": sum(1 for g in self.groups if _is_new(g)),
            "executions": sum(g.execution_count for g in self.groups),
            "retries": sum(len(g.retry_reasons) for g in self.groups),
            "suppressed_failures": sum(_suppressed(g) for g in self.groups),
            "total_duration_seconds": round(
                sum(r.duration or 0.0 for g in self.groups for r in g.runs), 3
            ),
        }

    def _format_group(self, group: TestGroup) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "module": group.suite.module.name,
            "suite": group.suite.name,
            "name": group.name,
            "status": group.final_status.value,
            "executions": group.execution_count,
            "failed_executions": group.failed_execution_count,
            "duration_seconds": round(sum(r.duration or 0.0 for r in group.runs), 3),
        }
        if group.retry_reasons:
            entry["retry_reasons"] = dict(Counter(group.retry_reasons))
        if group.is_flaky:
            entry["flaky"] = True
        if _is_new(group):
            entry["new"] = True
        suppressed = _suppressed(group)
        if suppressed:
            entry["suppressed_failures"] = suppressed
        last = group.runs[-1] if group.runs else None
        if last is not None:
            if last.skip_reason:
                entry["skip_reason"] = last.skip_reason
            if last.error is not None and not last.errors_suppressed:
                entry["error"] = last.error.message
            entry["tags"] = dict(last.tags)
        return entry


def _is_new(group: TestGroup) -> bool:
    return any(r.get_tag(tags.IS_NEW) == tags.TRUE for r in group.runs)


def _suppressed(group: TestGroup) -> int:
    return sum(1 for r in group.runs if r.errors_suppressed)
