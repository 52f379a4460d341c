"""
PAM handler — a line that must be present in a PAM config file.

The default target is ``/etc/pam.d/sudo_local``, which survives macOS
updates. Lines compare whitespace-normalised. Existing lines are never
removed or reordered; the desired line is appended.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from macsetup.core.engine.handlers.base import ApplyResult, ResourceHandler, decode_bytes, encode_bytes
from macsetup.core.models.observed import ObservedState
from macsetup.core.models.resource import PamSpec, ResourceDeclaration, ResourceKind, normalize_pam_line

if TYPE_CHECKING:
    from macsetup.core.engine.privilege import PrivilegeSession

logger = logging.getLogger(__name__)

PAM_FILE_MODE = 0o444


def has_line(text: str, line: str) -> bool:
    wanted = normalize_pam_line(line)
    return any(normalize_pam_line(existing) == wanted for existing in text.splitlines())


def with_line(text: str | None, spec: PamSpec) -> str:
    """File content with the desired line appended."""
    if text is None:
        return f"{spec.header}\n{spec.line}\n"
    if text and not text.endswith("\n"):
        text += "\n"
    return f"{text}{spec.line}\n"


class PamHandler(ResourceHandler):
    kind = ResourceKind.PAM_MODULE

    def _read(self, path: str) -> str | None:
        data = self.registry.files.read_bytes(path)
        return data.decode("utf-8") if data is not None else None

    def probe(self, decl: ResourceDeclaration) -> ObservedState:
        spec: PamSpec = decl.desired_value  # type: ignore[assignment]
        text = self._read(spec.path)
        if text is None:
            return ObservedState.absent(detail=f"{spec.path} does not exist")
        present = has_line(text, spec.line)
        return ObservedState.present(
            spec.normalized_line if present else None,
            present,
            detail="" if present else f"line missing from {spec.path}",
        )

    def apply(
        self,
        decl: ResourceDeclaration,
        observed: ObservedState,
        sudo: PrivilegeSession | None = None,
    ) -> ApplyResult:
        spec: PamSpec = decl.desired_value  # type: ignore[assignment]
        files = self.registry.files
        text = self._read(spec.path)
        mode = files.mode(spec.path) if text is not None else PAM_FILE_MODE
        files.write_bytes(
            spec.path,
            with_line(text, spec).encode("utf-8"),
            mode=mode,
            sudo=self._sudo_for(decl, sudo),
        )
        logger.info("Added '%s' to %s", spec.normalized_line, spec.path)
        return ApplyResult(output=f"added '{spec.normalized_line}' to {spec.path}")

    def describe(self, decl: ResourceDeclaration, observed: ObservedState) -> str:
        spec: PamSpec = decl.desired_value  # type: ignore[assignment]
        verb = "append to" if observed.exists else "create"
        return f"{verb} {spec.path}: {spec.normalized_line}"

    def snapshot(self, decl: ResourceDeclaration, observed: ObservedState) -> dict[str, Any] | None:
        spec: PamSpec = decl.desired_value  # type: ignore[assignment]
        files = self.registry.files
        data = files.read_bytes(spec.path)
        if data is None:
            return None
        return {
            "path": spec.path,
            "content_b64": encode_bytes(data),
            "mode": files.mode(spec.path),
            "privileged": decl.requires_privilege,
        }

    def restore(self, payload: dict[str, Any], sudo: PrivilegeSession | None = None) -> ApplyResult:
        data = decode_bytes(payload["content_b64"])
        self.registry.files.write_bytes(
            payload["path"], data, mode=payload.get("mode"),
            sudo=sudo if payload.get("privileged") else None,
        )
        logger.info("Restored %s", payload["path"])
        return ApplyResult(output=f"restored {payload['path']}")
