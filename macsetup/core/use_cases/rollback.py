"""
Rollback use case — put a resource back to its latest backup.

Rollback is always explicit; the engine never rolls back on its own.
The restored entry is consumed (discarded) so repeated rollbacks walk
back through older restore points. The restore is recorded in the run
log like any other run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from macsetup.adapters.registry import AdapterRegistry
from macsetup.core.config.settings import Settings
from macsetup.core.engine.checksum import ChecksumVerifier
from macsetup.core.engine.environment import check_environment
from macsetup.core.engine.handlers import build_handlers
from macsetup.core.engine.privilege import PrivilegeSession, PromptFn
from macsetup.core.errors import EnvironmentUnsupported, ErrorKind, NoBackupFound, ReconcileError
from macsetup.core.models.backup import BackupEntry
from macsetup.core.models.outcome import ActionOutcome, RunDraft
from macsetup.core.persistence.backup_store import BackupStore
from macsetup.core.reporting.status_reporter import StatusReporter
from macsetup.core.use_cases.run import build_registry

logger = logging.getLogger(__name__)

ROLLBACK_PROFILE = "rollback"


@dataclass
class RollbackResult:
    """Result of restoring one resource."""

    resource_id: str = ""
    entry: BackupEntry | None = None
    output: str = ""
    run_id: str | None = None
    log_path: Path | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        result: dict = {"resource_id": self.resource_id, "ok": self.ok}
        if self.error:
            result["error"] = self.error
            result["error_kind"] = self.error_kind.value if self.error_kind else None
        if self.entry:
            result["backup_id"] = self.entry.backup_id
            result["captured_at"] = self.entry.captured_at
            result["kind"] = self.entry.kind.value
        if self.run_id:
            result["run_id"] = self.run_id
        return result


def rollback_resource(
    resource_id: str,
    settings: Settings,
    mock_mode: bool = False,
    registry: AdapterRegistry | None = None,
    prompt: PromptFn | None = None,
) -> RollbackResult:
    """Restore the latest restorable backup of ``resource_id``.

    Args:
        resource_id: Id of the resource as declared in its profile.
        settings: Run settings (state dir, timeouts).
        mock_mode: Use in-memory fake collaborators.
        registry: Optional pre-configured adapter registry.
        prompt: Asks for the sudo password when the entry needs it.

    Returns:
        RollbackResult; ``error_kind`` is NoBackupFound when there is
        nothing to restore.
    """
    result = RollbackResult(resource_id=resource_id)
    store = BackupStore(settings.backups_dir)

    try:
        entry = store.restore_latest(resource_id)
    except NoBackupFound as e:
        result.error = e.message
        result.error_kind = e.kind
        return result
    result.entry = entry

    if registry is None:
        registry = build_registry(settings, mock_mode)
    try:
        check_environment(registry)
    except EnvironmentUnsupported as e:
        result.error = str(e)
        return result

    handler = build_handlers(registry, settings, ChecksumVerifier())[entry.kind]
    privilege = PrivilegeSession.granted() if registry.mock_mode else PrivilegeSession(prompt=prompt)
    payload = entry.payload or {}

    draft = RunDraft(profile=ROLLBACK_PROFILE)
    try:
        if payload.get("privileged"):
            privilege.ensure()
        applied = handler.restore(payload, sudo=privilege)
    except ReconcileError as e:
        logger.error("Rollback of %s failed: %s", resource_id, e.message)
        result.error = e.message
        result.error_kind = e.kind
        draft.add(ActionOutcome.failure(
            resource_id, e.kind, e.message,
            output=settings.truncate(e.output), backup_id=entry.backup_id,
        ))
    except Exception as e:
        logger.exception("Unexpected error restoring %s", resource_id)
        result.error = f"{type(e).__name__}: {e}"
        result.error_kind = ErrorKind.EXTERNAL_COMMAND_FAILED
        draft.add(ActionOutcome.failure(
            resource_id, ErrorKind.EXTERNAL_COMMAND_FAILED, result.error, backup_id=entry.backup_id,
        ))
    else:
        store.discard(entry)
        result.output = applied.output
        logger.info("Rolled back %s to backup %s", resource_id, entry.backup_id)
        draft.add(ActionOutcome.applied(
            resource_id,
            message=f"restored backup from {entry.captured_at}",
            output=settings.truncate(applied.output),
            backup_id=entry.backup_id,
        ))
    finally:
        privilege.close()

    reporter = StatusReporter(settings.runs_dir)
    record = draft.finalize()
    result.log_path = reporter.persist(record)
    result.run_id = record.run_id
    return result
