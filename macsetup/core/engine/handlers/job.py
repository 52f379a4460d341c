"""
Scheduled job handler — launchd user agents.

The desired plist is rendered from the JobSpec; a job matches when it
is loaded and its plist on disk parses to the same dictionary.
"""

from __future__ import annotations

import logging
import plistlib
from typing import TYPE_CHECKING, Any

from macsetup.core.engine.handlers.base import ApplyResult, ResourceHandler, decode_bytes, encode_bytes
from macsetup.core.models.observed import ObservedState
from macsetup.core.models.resource import JobSpec, ResourceDeclaration, ResourceKind

if TYPE_CHECKING:
    from macsetup.core.engine.privilege import PrivilegeSession

logger = logging.getLogger(__name__)


def render_plist(spec: JobSpec) -> dict[str, Any]:
    """launchd property list for a job."""
    plist: dict[str, Any] = {
        "Label": spec.label,
        "ProgramArguments": list(spec.program_arguments),
        "RunAtLoad": spec.run_at_load,
    }
    if spec.calendar is not None:
        plist["StartCalendarInterval"] = dict(spec.calendar)
    else:
        plist["StartInterval"] = spec.interval
    if spec.stdout_path:
        plist["StandardOutPath"] = spec.stdout_path
    if spec.stderr_path:
        plist["StandardErrorPath"] = spec.stderr_path
    return plist


def plist_bytes(spec: JobSpec) -> bytes:
    return plistlib.dumps(render_plist(spec), sort_keys=True)


def _parse(definition: bytes) -> dict[str, Any] | None:
    try:
        return plistlib.loads(definition)
    except (plistlib.InvalidFileException, ValueError):
        return None


class JobHandler(ResourceHandler):
    kind = ResourceKind.SCHEDULED_JOB

    def probe(self, decl: ResourceDeclaration) -> ObservedState:
        spec: JobSpec = decl.desired_value  # type: ignore[assignment]
        scheduler = self.registry.scheduler
        loaded = scheduler.query(spec.label)
        definition = scheduler.definition(spec.label)
        if not loaded and definition is None:
            return ObservedState.absent(detail=f"{spec.label} not registered")

        current = _parse(definition) if definition is not None else None
        same = current == render_plist(spec)
        if not loaded:
            detail = "plist present but not loaded"
        elif not same:
            detail = "loaded with a different definition"
        else:
            detail = ""
        return ObservedState.present(
            {"loaded": loaded, "definition": current}, loaded and same, detail=detail,
        )

    def apply(
        self,
        decl: ResourceDeclaration,
        observed: ObservedState,
        sudo: PrivilegeSession | None = None,
    ) -> ApplyResult:
        spec: JobSpec = decl.desired_value  # type: ignore[assignment]
        result = self.registry.scheduler.register(spec.label, plist_bytes(spec))
        return ApplyResult(output=result.output)

    def describe(self, decl: ResourceDeclaration, observed: ObservedState) -> str:
        spec: JobSpec = decl.desired_value  # type: ignore[assignment]
        if spec.calendar is not None:
            when = ", ".join(f"{k}={v}" for k, v in spec.calendar.items())
        else:
            when = f"every {spec.interval}s"
        verb = "update" if observed.exists else "register"
        return f"{verb} launch agent {spec.label} ({when}): {' '.join(spec.program_arguments)}"

    def snapshot(self, decl: ResourceDeclaration, observed: ObservedState) -> dict[str, Any] | None:
        spec: JobSpec = decl.desired_value  # type: ignore[assignment]
        definition = self.registry.scheduler.definition(spec.label)
        if definition is None:
            return None
        return {
            "label": spec.label,
            "definition_b64": encode_bytes(definition),
            "loaded": self.registry.scheduler.query(spec.label),
        }

    def restore(self, payload: dict[str, Any], sudo: PrivilegeSession | None = None) -> ApplyResult:
        label = payload["label"]
        loaded = payload.get("loaded", True)
        result = self.registry.scheduler.register(
            label, decode_bytes(payload["definition_b64"]), load=loaded,
        )
        logger.info("Restored launch agent %s (%s)", label, "loaded" if loaded else "not loaded")
        return ApplyResult(output=result.output)
