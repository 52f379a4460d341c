"""
Reconciler — drives a profile through probe, decide, apply and verify.

Phases per run:
    Init → Probing → Deciding → (Backing Up → Executing)* → Verifying → Finalized

Resources are processed strictly in declaration order. One resource's
failure never stops the others. An unknown observed state is treated as
"change needed" for unprivileged resources and fails closed for
privileged ones; in dry-run it is reported as skipped.

Flow:
    declarations → plan (validate, bind handlers) → per resource:
    probe → apply → re-probe → outcome → RunRecord → persist
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from macsetup.adapters.registry import AdapterRegistry
from macsetup.core.config.settings import Settings
from macsetup.core.engine.checksum import ChecksumVerifier
from macsetup.core.engine.executor import ActionExecutor
from macsetup.core.engine.handlers import build_handlers
from macsetup.core.engine.handlers.base import ResourceHandler
from macsetup.core.engine.privilege import PrivilegeSession
from macsetup.core.engine.probe import ResourceProbe
from macsetup.core.errors import ErrorKind, InvalidDeclaration
from macsetup.core.models.observed import ObservedState
from macsetup.core.models.outcome import ActionOutcome, OutcomeStatus, RunDraft, RunRecord
from macsetup.core.models.resource import ResourceDeclaration, ResourceKind
from macsetup.core.persistence.backup_store import BackupStore
from macsetup.core.reporting.status_reporter import StatusReporter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedResource:
    """A declaration bound to its handler."""

    decl: ResourceDeclaration
    handler: ResourceHandler


class Reconciler:
    """Runs declarations to convergence, one resource at a time."""

    def __init__(
        self,
        settings: Settings,
        registry: AdapterRegistry,
        backups: BackupStore | None = None,
        privilege: PrivilegeSession | None = None,
        reporter: StatusReporter | None = None,
        verifier: ChecksumVerifier | None = None,
    ):
        self.settings = settings
        self.registry = registry
        self.backups = backups or BackupStore(settings.backups_dir, keep_last=settings.backup_keep_last)
        self.privilege = privilege or PrivilegeSession()
        self.reporter = reporter
        self.handlers: dict[ResourceKind, ResourceHandler] = build_handlers(
            registry, settings, verifier or ChecksumVerifier(),
        )
        self.probe = ResourceProbe()
        self.executor = ActionExecutor(settings, self.backups, self.privilege)

    # ── Plan ────────────────────────────────────────────────────

    def plan(self, declarations: list[ResourceDeclaration]) -> list[PlannedResource]:
        """Validate the declaration list and bind each entry to its handler.

        Raises:
            InvalidDeclaration: Duplicate ids or an unsupported kind.
        """
        seen: set[str] = set()
        planned = []
        for decl in declarations:
            if decl.id in seen:
                raise InvalidDeclaration(f"Duplicate resource id '{decl.id}'")
            seen.add(decl.id)
            handler = self.handlers.get(decl.kind)
            if handler is None:
                raise InvalidDeclaration(f"No handler for kind '{decl.kind.value}' ({decl.id})")
            planned.append(PlannedResource(decl, handler))
        return planned

    # ── Status ──────────────────────────────────────────────────

    def check(self, declarations: list[ResourceDeclaration]) -> list[tuple[ResourceDeclaration, ObservedState]]:
        """Probe every resource without changing anything."""
        return [(p.decl, self.probe.probe(p.decl, p.handler)) for p in self.plan(declarations)]

    # ── Run ─────────────────────────────────────────────────────

    def run(self, profile_name: str, declarations: list[ResourceDeclaration]) -> RunRecord:
        """Reconcile a profile and return the finalized RunRecord.

        The record is persisted through the reporter (when one is set),
        including after an interrupt, which is re-raised.
        """
        planned = self.plan(declarations)
        draft = RunDraft(profile=profile_name, dry_run=self.settings.dry_run)
        logger.info(
            "Run %s: %d resources from '%s'%s",
            draft.run_id, len(planned), profile_name, " (dry-run)" if self.settings.dry_run else "",
        )

        try:
            for item in planned:
                draft.add(self._reconcile_one(item))
        except KeyboardInterrupt:
            logger.warning("Run %s interrupted after %d resources", draft.run_id, len(draft.outcomes))
            self._finalize(draft)
            raise
        finally:
            self.privilege.close()

        return self._finalize(draft)

    def _finalize(self, draft: RunDraft) -> RunRecord:
        record = draft.finalize()
        logger.debug("Run %s finalized: %s %s", record.run_id, record.status, record.counts)
        if self.reporter is not None:
            self.reporter.persist(record)
        return record

    def _reconcile_one(self, item: PlannedResource) -> ActionOutcome:
        decl, handler = item.decl, item.handler

        logger.debug("%s: probing", decl.id)
        observed = self.probe.probe(decl, handler)

        logger.debug("%s: deciding", decl.id)
        if observed.unknown:
            reason = f"state unknown: {observed.detail}" if observed.detail else "state unknown"
            if self.settings.dry_run:
                return ActionOutcome.skipped(decl.id, reason=reason)
            if decl.requires_privilege:
                logger.error("✗ %s: %s (privileged, not touching)", decl.id, reason)
                return ActionOutcome.failure(decl.id, observed.error or ErrorKind.PROBE_TIMEOUT, reason)
            logger.info("%s: %s, treating as change needed", decl.id, reason)

        outcome = self.executor.apply(decl, observed, handler)
        if outcome.status is not OutcomeStatus.APPLIED:
            return outcome

        logger.debug("%s: verifying", decl.id)
        after = self.probe.probe(decl, handler)
        if after.matches_desired:
            return outcome

        detail = after.detail or ("state unknown after apply" if after.unknown else "still differs")
        logger.error("✗ %s: postcondition not met (%s)", decl.id, detail)
        return outcome.model_copy(update={
            "status": OutcomeStatus.FAILED,
            "error": ErrorKind.POSTCONDITION_NOT_MET,
            "message": f"postcondition not met: {detail}",
        })
