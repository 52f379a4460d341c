"""
Handler base — per-kind probe/apply/snapshot/restore logic.

One handler exists per ResourceKind. The reconciler binds every
declaration to its handler once, at plan time; the probe and executor
then call only the bound handler. Handlers reach the machine through
the adapter registry and raise the error taxonomy; they never build
outcomes themselves.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from macsetup.core.errors import DigestMismatch
from macsetup.core.models.observed import ObservedState
from macsetup.core.models.resource import ResourceDeclaration, ResourceKind

if TYPE_CHECKING:
    from macsetup.adapters.registry import AdapterRegistry
    from macsetup.core.config.settings import Settings
    from macsetup.core.engine.checksum import ChecksumVerifier
    from macsetup.core.engine.privilege import PrivilegeSession

logger = logging.getLogger(__name__)

UNVERIFIED = "unverified"


@dataclass
class ApplyResult:
    """What a handler reports after mutating a resource."""

    output: str = ""
    annotations: list[str] = field(default_factory=list)


def encode_bytes(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_bytes(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"))


class ResourceHandler(ABC):
    """Knows how to observe and change one kind of resource."""

    kind: ResourceKind

    def __init__(self, registry: AdapterRegistry, settings: Settings, verifier: ChecksumVerifier):
        self.registry = registry
        self.settings = settings
        self.verifier = verifier

    @abstractmethod
    def probe(self, decl: ResourceDeclaration) -> ObservedState:
        """Observe current state. Never mutates."""

    @abstractmethod
    def apply(
        self,
        decl: ResourceDeclaration,
        observed: ObservedState,
        sudo: PrivilegeSession | None = None,
    ) -> ApplyResult:
        """Move the resource to its desired state."""

    @abstractmethod
    def describe(self, decl: ResourceDeclaration, observed: ObservedState) -> str:
        """One-line description of what ``apply`` would do."""

    def snapshot(self, decl: ResourceDeclaration, observed: ObservedState) -> dict[str, Any] | None:
        """Self-contained prior state for restore, or None for a fresh creation."""
        return None

    def restore(self, payload: dict[str, Any], sudo: PrivilegeSession | None = None) -> ApplyResult:
        """Put a snapshot back. Only restorable kinds override this."""
        raise NotImplementedError(f"{self.kind.value} resources cannot be restored")

    def annotations(self, decl: ResourceDeclaration) -> list[str]:
        """Annotations attached to every outcome of ``decl`` (e.g. ``unverified``)."""
        return []

    def _sudo_for(self, decl: ResourceDeclaration, sudo: PrivilegeSession | None) -> PrivilegeSession | None:
        return sudo if decl.requires_privilege else None

    def _fetch_verified(
        self,
        url: str,
        digest: str | None,
        algorithm: str,
    ) -> tuple[Path, list[str]]:
        """Download into the cache and verify before anything uses it.

        Returns:
            (artifact path, annotations). Without a digest the artifact
            is used as-is and annotated ``unverified``.

        Raises:
            DigestMismatch: The artifact is deleted and never used.
        """
        name = url.rstrip("/").rsplit("/", 1)[-1] or "artifact"
        key = hashlib.sha256(url.encode()).hexdigest()[:12]
        dest = self.settings.cache_dir / "downloads" / f"{key}-{name}"

        self.registry.downloads.fetch(url, dest, self.settings.download_timeout)
        if not digest:
            logger.warning("No digest declared for %s, using it unverified", url)
            return dest, [UNVERIFIED]
        try:
            verification = self.verifier.verify(dest, digest, algorithm)
        except DigestMismatch:
            dest.unlink(missing_ok=True)
            raise
        return dest, list(verification.annotations)
