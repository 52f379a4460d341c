"""
Status use case — probe declared resources and show the last run.

Never mutates anything.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from macsetup.adapters.registry import AdapterRegistry
from macsetup.core.config.loader import load_profiles
from macsetup.core.config.settings import Settings
from macsetup.core.engine.environment import check_environment
from macsetup.core.engine.reconciler import Reconciler
from macsetup.core.errors import EnvironmentUnsupported, InvalidDeclaration
from macsetup.core.models.observed import ObservedState
from macsetup.core.models.outcome import RunRecord
from macsetup.core.models.resource import ResourceDeclaration
from macsetup.core.persistence.run_log import RunIndexEntry
from macsetup.core.reporting.status_reporter import StatusReporter
from macsetup.core.use_cases.run import build_registry


@dataclass
class StatusResult:
    """Observed state of every declared resource."""

    profile: str | None = None
    results: list[tuple[ResourceDeclaration, ObservedState]] = field(default_factory=list)
    last_run: RunRecord | None = None
    error: str | None = None

    @property
    def in_sync(self) -> int:
        return sum(1 for _, observed in self.results if observed.matches_desired)

    @property
    def unknown(self) -> int:
        return sum(1 for _, observed in self.results if observed.unknown)

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
        result["profile"] = self.profile
        result["total"] = len(self.results)
        result["in_sync"] = self.in_sync
        result["unknown"] = self.unknown
        result["resources"] = [
            {
                "id": decl.id,
                "kind": decl.kind.value,
                **observed.model_dump(mode="json"),
            }
            for decl, observed in self.results
        ]
        if self.last_run:
            result["last_run"] = {
                "run_id": self.last_run.run_id,
                "profile": self.last_run.profile,
                "status": self.last_run.status,
                "ended_at": self.last_run.ended_at,
                "counts": self.last_run.counts,
            }
        return result


def get_status(
    settings: Settings,
    profile_name: str | None = None,
    config_path: Path | None = None,
    mock_mode: bool = False,
    registry: AdapterRegistry | None = None,
) -> StatusResult:
    """Probe one profile (or every profile, de-duplicated) read-only.

    Args:
        settings: Run settings.
        profile_name: Profile to check; None checks all profiles.
        config_path: Optional explicit profile file.
        mock_mode: Use in-memory fake collaborators.
        registry: Optional pre-configured adapter registry.
    """
    result = StatusResult(profile=profile_name)
    result.last_run = StatusReporter(settings.runs_dir).last()

    try:
        profiles = load_profiles(config_path)
    except InvalidDeclaration as e:
        result.error = str(e)
        return result

    if profile_name is None:
        declarations = profiles.all_declarations(settings.with_optional)
    else:
        profile = profiles.get(profile_name)
        if profile is None:
            result.error = (
                f"Unknown profile '{profile_name}'. Available: {', '.join(profiles.names()) or 'none'}"
            )
            return result
        declarations = profile.declarations(settings.with_optional)

    if registry is None:
        registry = build_registry(settings, mock_mode)
    try:
        check_environment(registry)
    except EnvironmentUnsupported as e:
        result.error = str(e)
        return result

    reconciler = Reconciler(settings.model_copy(update={"dry_run": True}), registry)
    result.results = reconciler.check(declarations)
    return result


def recent_runs(settings: Settings, n: int = 10) -> list[RunIndexEntry]:
    """Summaries of the most recent runs, newest first."""
    return StatusReporter(settings.runs_dir).recent(n)
