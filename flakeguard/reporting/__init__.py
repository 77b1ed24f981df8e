"""Session reports."""

from flakeguard.reporting.reporter import SessionReporter

__all__ = ["SessionReporter"]
