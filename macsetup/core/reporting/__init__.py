"""Run reporting."""

from macsetup.core.reporting.status_reporter import StatusReporter

__all__ = ["StatusReporter"]
