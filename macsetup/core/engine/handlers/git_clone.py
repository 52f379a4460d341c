"""
Git clone handler — a repository checked out at a pinned ref.

Not backed up: the repository's own history is the restore point.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from macsetup.core.engine.handlers.base import ApplyResult, ResourceHandler
from macsetup.core.models.observed import ObservedState
from macsetup.core.models.resource import GitCloneSpec, ResourceDeclaration, ResourceKind

if TYPE_CHECKING:
    from macsetup.core.engine.privilege import PrivilegeSession


class GitCloneHandler(ResourceHandler):
    kind = ResourceKind.GIT_CLONE

    def probe(self, decl: ResourceDeclaration) -> ObservedState:
        spec: GitCloneSpec = decl.desired_value  # type: ignore[assignment]
        vcs = self.registry.vcs
        head = vcs.current_ref(spec.dest)
        if head is None:
            if self.registry.files.exists(spec.dest):
                return ObservedState.present(None, False, detail=f"{spec.dest} exists but is not a git clone")
            return ObservedState.absent(detail=f"{spec.dest} not cloned")

        target = vcs.resolve_ref(spec.dest, spec.ref)
        if target is None:
            return ObservedState.present(head, False, detail=f"ref {spec.ref} not found locally")
        return ObservedState.present(
            head, head == target, detail="" if head == target else f"HEAD {head[:10]} != {spec.ref}",
        )

    def apply(
        self,
        decl: ResourceDeclaration,
        observed: ObservedState,
        sudo: PrivilegeSession | None = None,
    ) -> ApplyResult:
        spec: GitCloneSpec = decl.desired_value  # type: ignore[assignment]
        vcs = self.registry.vcs
        if observed.exists and observed.current_value is not None:
            result = vcs.checkout(spec.dest, spec.ref)
        else:
            result = vcs.clone(spec.url, spec.ref, spec.dest)
        return ApplyResult(output=result.output)

    def describe(self, decl: ResourceDeclaration, observed: ObservedState) -> str:
        spec: GitCloneSpec = decl.desired_value  # type: ignore[assignment]
        if observed.exists and observed.current_value is not None:
            return f"git checkout {spec.ref} in {spec.dest}"
        return f"git clone {spec.url} {spec.dest} at {spec.ref}"
