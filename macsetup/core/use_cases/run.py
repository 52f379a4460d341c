"""
Run use case — reconcile one profile on this machine.

This is the top-level orchestrator: it loads the profile file, checks
the host, wires adapters, runs the reconciler and persists the record.
The full vertical slice from ``macsetup run <profile>`` to a logged
RunRecord.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from macsetup.adapters.registry import AdapterRegistry
from macsetup.core.config.loader import load_profiles
from macsetup.core.config.settings import Settings
from macsetup.core.engine.environment import check_environment
from macsetup.core.engine.privilege import PrivilegeSession, PromptFn
from macsetup.core.engine.reconciler import Reconciler
from macsetup.core.errors import EnvironmentUnsupported, InvalidDeclaration
from macsetup.core.models.outcome import RunRecord
from macsetup.core.models.profile import Profile
from macsetup.core.models.resource import PackageSpec, ResourceDeclaration
from macsetup.core.persistence.backup_store import BackupStore
from macsetup.core.reporting.status_reporter import StatusReporter

logger = logging.getLogger(__name__)

ConfirmFn = Callable[[Profile, list[ResourceDeclaration]], bool]


@dataclass
class RunResult:
    """Result of reconciling a profile."""

    record: RunRecord | None = None
    profile: Profile | None = None
    log_path: Path | None = None
    resources_planned: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.record is not None and self.record.success

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        result["profile"] = self.profile.name if self.profile else ""
        result["resources_planned"] = self.resources_planned
        result["log_path"] = str(self.log_path) if self.log_path else None
        if self.record:
            result["run"] = self.record.to_dict()
        return result


def build_registry(
    settings: Settings,
    mock_mode: bool,
    declarations: list[ResourceDeclaration] | None = None,
) -> AdapterRegistry:
    if not mock_mode:
        return AdapterRegistry.real(settings)
    installers = [
        decl.desired_value.installer
        for decl in declarations or []
        if isinstance(decl.desired_value, PackageSpec) and decl.desired_value.installer is not None
    ]
    return AdapterRegistry.mock(installers)


def run_profile(
    profile_name: str,
    settings: Settings,
    config_path: Path | None = None,
    mock_mode: bool = False,
    registry: AdapterRegistry | None = None,
    prompt: PromptFn | None = None,
    confirm: ConfirmFn | None = None,
) -> RunResult:
    """Reconcile every resource of a profile.

    Args:
        profile_name: Profile to run.
        settings: Run settings (dry-run, timeouts, state dir).
        config_path: Optional explicit profile file.
        mock_mode: Use in-memory fake collaborators.
        registry: Optional pre-configured adapter registry.
        prompt: Asks for the sudo password (at most once).
        confirm: Called with the planned resources before a real run;
            returning False aborts without touching anything.

    Returns:
        RunResult with the finalized RunRecord.
    """
    result = RunResult()

    # ── Load profile ─────────────────────────────────────────────
    try:
        profiles = load_profiles(config_path)
    except InvalidDeclaration as e:
        result.error = str(e)
        return result

    profile = profiles.get(profile_name)
    if profile is None:
        result.error = (
            f"Unknown profile '{profile_name}'. Available: {', '.join(profiles.names()) or 'none'}"
        )
        return result
    result.profile = profile

    declarations = profile.declarations(settings.with_optional)
    result.resources_planned = len(declarations)

    # ── Host and adapters ────────────────────────────────────────
    if registry is None:
        registry = build_registry(settings, mock_mode, declarations)
    try:
        check_environment(registry)
    except EnvironmentUnsupported as e:
        result.error = str(e)
        return result

    if confirm is not None and not settings.dry_run and not confirm(profile, declarations):
        result.error = "Aborted by user."
        return result

    # ── Reconcile ────────────────────────────────────────────────
    privilege = PrivilegeSession.granted() if registry.mock_mode else PrivilegeSession(prompt=prompt)
    reporter = StatusReporter(settings.runs_dir)
    reconciler = Reconciler(
        settings,
        registry,
        backups=BackupStore(settings.backups_dir, keep_last=settings.backup_keep_last),
        privilege=privilege,
        reporter=reporter,
    )

    try:
        record = reconciler.run(profile.name, declarations)
    except InvalidDeclaration as e:
        result.error = str(e)
        return result

    result.record = record
    result.log_path = reporter.run_log.record_path(record.run_id)
    return result
