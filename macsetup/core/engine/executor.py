"""
Action executor — turns one (declaration, observed state) pair into an
ActionOutcome.

Flow per resource:
    in sync → Unchanged
    dry-run → Skipped (``would: …``), nothing touched
    privileged → PrivilegeSession.ensure()
    restorable → BackupStore.capture()   (before any mutation)
    handler.apply() → Applied | Failed

Failures are contained: every error becomes a Failed outcome with its
ErrorKind. Nothing is rolled back automatically.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from macsetup.core.config.settings import Settings
from macsetup.core.engine.handlers.base import ResourceHandler
from macsetup.core.engine.privilege import PrivilegeSession
from macsetup.core.errors import ErrorKind, ReconcileError
from macsetup.core.models.observed import ObservedState
from macsetup.core.models.outcome import ActionOutcome, now_iso
from macsetup.core.models.resource import ResourceDeclaration
from macsetup.core.persistence.backup_store import BackupStore

logger = logging.getLogger(__name__)


def _merge(*groups: list[str] | tuple[str, ...]) -> tuple[str, ...]:
    out: list[str] = []
    for group in groups:
        for item in group:
            if item not in out:
                out.append(item)
    return tuple(out)


class ActionExecutor:
    """Applies single resources. One instance per run."""

    def __init__(
        self,
        settings: Settings,
        backups: BackupStore,
        privilege: PrivilegeSession,
    ):
        self.settings = settings
        self.backups = backups
        self.privilege = privilege

    def apply(
        self,
        decl: ResourceDeclaration,
        observed: ObservedState,
        handler: ResourceHandler,
    ) -> ActionOutcome:
        started_at = now_iso()
        start = time.monotonic()
        base_annotations = handler.annotations(decl)

        def timing() -> dict[str, Any]:
            return {
                "started_at": started_at,
                "finished_at": now_iso(),
                "duration_ms": int((time.monotonic() - start) * 1000),
            }

        if observed.matches_desired:
            return ActionOutcome.unchanged(decl.id, annotations=_merge(base_annotations), **timing())

        if self.settings.dry_run:
            would = f"would: {handler.describe(decl, observed)}"
            logger.info("[dry-run] %s %s", decl.id, would)
            return ActionOutcome.skipped(
                decl.id, reason="dry-run", annotations=_merge([would], base_annotations), **timing(),
            )

        backup_id: str | None = None
        try:
            if decl.requires_privilege:
                self.privilege.ensure()

            if decl.restorable:
                logger.debug("%s: backing up", decl.id)
                payload = handler.snapshot(decl, observed)
                entry = self.backups.capture(decl.id, payload, decl.kind)
                backup_id = entry.backup_id

            logger.debug("%s: executing", decl.id)
            result = handler.apply(decl, observed, sudo=self.privilege if decl.requires_privilege else None)
        except ReconcileError as e:
            logger.error("✗ %s: %s", decl.id, e.message)
            return ActionOutcome.failure(
                decl.id,
                e.kind,
                e.message,
                output=self.settings.truncate(e.output),
                annotations=_merge(base_annotations),
                backup_id=backup_id,
                **timing(),
            )
        except Exception as e:
            logger.exception("Unexpected error applying %s", decl.id)
            return ActionOutcome.failure(
                decl.id,
                ErrorKind.EXTERNAL_COMMAND_FAILED,
                f"{type(e).__name__}: {e}",
                annotations=_merge(base_annotations),
                backup_id=backup_id,
                **timing(),
            )

        logger.info("● %s applied", decl.id)
        return ActionOutcome.applied(
            decl.id,
            message=handler.describe(decl, observed),
            output=self.settings.truncate(result.output),
            annotations=_merge(base_annotations, result.annotations),
            backup_id=backup_id,
            **timing(),
        )
