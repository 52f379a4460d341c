"""
Status reporter — human-readable run summaries and run persistence.

``render`` is pure: it formats a RunRecord and never mutates it.
``persist`` writes the record through the RunLog.
"""

from __future__ import annotations

import logging
from pathlib import Path

from macsetup.core.models.observed import ObservedState
from macsetup.core.models.outcome import ActionOutcome, OutcomeStatus, RunRecord
from macsetup.core.models.resource import ResourceDeclaration
from macsetup.core.persistence.run_log import RunIndexEntry, RunLog

logger = logging.getLogger(__name__)

STATUS_MARKERS = {
    OutcomeStatus.UNCHANGED: "✓",
    OutcomeStatus.APPLIED: "●",
    OutcomeStatus.SKIPPED: "⊘",
    OutcomeStatus.FAILED: "✗",
}

# Lines of collaborator output shown per failure
_FAILURE_OUTPUT_LINES = 10


def _outcome_line(outcome: ActionOutcome, width: int, verbose: bool) -> str:
    marker = STATUS_MARKERS[outcome.status]
    parts = [f"  {marker} {outcome.resource_id.ljust(width)}  {outcome.status.value:<9}"]
    if outcome.error is not None:
        parts.append(f"[{outcome.error.value}]")
    if outcome.message:
        parts.append(outcome.message)
    if outcome.annotations:
        parts.append("(" + ", ".join(outcome.annotations) + ")")
    if verbose:
        parts.append(f"{outcome.duration_ms}ms")
        if outcome.backup_id:
            parts.append(f"backup {outcome.backup_id}")
    return " ".join(parts).rstrip()


class StatusReporter:
    """Formats and persists run records."""

    def __init__(self, runs_dir: Path):
        self._log = RunLog(runs_dir)

    @property
    def run_log(self) -> RunLog:
        return self._log

    def render(self, record: RunRecord, log_path: Path | None = None, verbose: bool = False) -> str:
        """Summary of a run: header, counts, one line per resource, failures."""
        mode = " [dry-run]" if record.dry_run else ""
        lines = [
            f"Run {record.run_id}{mode} — profile '{record.profile}': {record.status}",
            "  " + " · ".join(f"{count} {status}" for status, count in record.counts.items()),
        ]

        if record.outcomes:
            width = max(len(o.resource_id) for o in record.outcomes)
            lines.append("")
            lines.extend(_outcome_line(o, width, verbose) for o in record.outcomes)

        failed = record.failed
        if failed:
            lines.append("")
            lines.append(f"Failures ({len(failed)}):")
            for outcome in failed:
                error = outcome.error.value if outcome.error else "Unknown"
                lines.append(f"  ✗ {outcome.resource_id} [{error}] {outcome.message}".rstrip())
                if outcome.output:
                    for out_line in outcome.output.splitlines()[-_FAILURE_OUTPUT_LINES:]:
                        lines.append(f"    │ {out_line}")

        if log_path is not None:
            lines.append("")
            lines.append(f"Log: {log_path}")
        return "\n".join(lines)

    def render_check(self, results: list[tuple[ResourceDeclaration, ObservedState]]) -> str:
        """Summary of a probe-only status check."""
        if not results:
            return "No resources declared."
        width = max(len(decl.id) for decl, _ in results)
        lines = []
        for decl, observed in results:
            if observed.unknown:
                marker, label = "?", f"unknown [{observed.error.value if observed.error else '?'}]"
            elif observed.matches_desired:
                marker, label = "✓", "in sync"
            elif observed.exists:
                marker, label = "~", "drifted"
            else:
                marker, label = "✗", "missing"
            detail = f"  {observed.detail}" if observed.detail else ""
            lines.append(f"  {marker} {decl.id.ljust(width)}  {label}{detail}")
        return "\n".join(lines)

    def persist(self, record: RunRecord) -> Path:
        path = self._log.save(record)
        logger.info("Run %s saved to %s", record.run_id, path)
        return path

    def recent(self, n: int = 10) -> list[RunIndexEntry]:
        return self._log.read_recent(n)

    def last(self) -> RunRecord | None:
        return self._log.last()
