"""Entry point for flakeguard.

Parses command-line arguments, builds the session context, runs every test
in the manifest through the retry/skip feature chain and writes reports.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from flakeguard.config import EngineConfig
from flakeguard.context import SessionContext
from flakeguard.execution.manifest import TestManifest
from flakeguard.model.entities import TestStatus
from flakeguard.reporting.reporter import SessionReporter


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="flakeguard - runs tests with automatic retries, flake detection, "
                    "test management and test skipping"
    )
    parser.add_argument(
        "--manifest",
        required=True,
        type=Path,
        help="Path to the JSON test manifest",
    )
    parser.add_argument(
        "--config-file",
        type=Path,
        default=None,
        help="Path to the flakeguard JSON configuration file",
    )
    parser.add_argument(
        "--settings-file",
        type=Path,
        default=None,
        help="Local remote-settings JSON used instead of the settings endpoint",
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Directory holding the per-feature cache files",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Path to write the JSON report file",
    )
    parser.add_argument(
        "--yaml-output",
        type=Path,
        default=None,
        help="Path to write the YAML report file",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = EngineConfig(args.config_file)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    config.set(
        settings_file=str(args.settings_file) if args.settings_file else None,
        cache_dir=str(args.cache_dir) if args.cache_dir else None,
    )

    try:
        manifest = TestManifest.load(args.manifest)
    except FileNotFoundError:
        print(f"Error: Manifest file not found: {args.manifest}", file=sys.stderr)
        return 1
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON in manifest: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: Invalid manifest: {e}", file=sys.stderr)
        return 1

    with SessionContext(config) as context:
        context.start()
        session = context.run(manifest)
        _print_results(context.reporter)

        if args.output:
            context.reporter.write_json(args.output)
            print(f"Report written to {args.output}")
        if args.yaml_output:
            context.reporter.write_yaml(args.yaml_output)
            print(f"YAML report written to {args.yaml_output}")

    return 1 if session.status is TestStatus.FAIL else 0


def _print_results(reporter: SessionReporter) -> None:
    """Print a one-line summary per logical test."""
    print(f"Features: {', '.join(reporter.features) or 'none'}")
    print()
    icons = {TestStatus.PASS: "PASS", TestStatus.FAIL: "FAIL", TestStatus.SKIP: "SKIP"}
    for group in reporter.groups:
        status = group.final_status
        notes = []
        if group.execution_count > 1:
            notes.append(f"{group.execution_count} runs")
        if group.is_flaky:
            notes.append("flaky")
        suffix = f" ({', '.join(notes)})" if notes else ""
        print(f"  [{icons[status]}] {group.suite.module.name}/{group.suite.name}/{group.name}{suffix}")
        last = group.runs[-1] if group.runs else None
        if status is TestStatus.FAIL and last is not None and last.error is not None:
            for line in last.error.message.strip().splitlines():
                print(f"         {line}")

    summary = reporter.generate_report()["report"]["summary"]
    print()
    print(
        f"Results: {summary['passed']} passed, {summary['failed']} failed, "
        f"{summary['skipped']} skipped, {summary['flaky']} flaky, "
        f"{summary['retries']} retries"
    )


if __name__ == "__main__":
    sys.exit(main())
