"""
Kind handlers — one per ResourceKind.

    handlers = build_handlers(registry, settings)
    handlers[ResourceKind.PACKAGE].probe(decl)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from macsetup.core.engine.checksum import ChecksumVerifier
from macsetup.core.engine.handlers.base import ApplyResult, ResourceHandler
from macsetup.core.engine.handlers.file import FileHandler
from macsetup.core.engine.handlers.git_clone import GitCloneHandler
from macsetup.core.engine.handlers.job import JobHandler
from macsetup.core.engine.handlers.package import PackageHandler
from macsetup.core.engine.handlers.pam import PamHandler
from macsetup.core.engine.handlers.preference import PreferenceHandler
from macsetup.core.models.resource import ResourceKind

if TYPE_CHECKING:
    from macsetup.adapters.registry import AdapterRegistry
    from macsetup.core.config.settings import Settings

HANDLER_TYPES: dict[ResourceKind, type[ResourceHandler]] = {
    ResourceKind.PACKAGE: PackageHandler,
    ResourceKind.PREFERENCE_KEY: PreferenceHandler,
    ResourceKind.FILE: FileHandler,
    ResourceKind.SCHEDULED_JOB: JobHandler,
    ResourceKind.PAM_MODULE: PamHandler,
    ResourceKind.GIT_CLONE: GitCloneHandler,
}


def build_handlers(
    registry: AdapterRegistry,
    settings: Settings,
    verifier: ChecksumVerifier | None = None,
) -> dict[ResourceKind, ResourceHandler]:
    """One handler instance per kind, sharing the registry and verifier."""
    verifier = verifier or ChecksumVerifier()
    return {kind: cls(registry, settings, verifier) for kind, cls in HANDLER_TYPES.items()}


__all__ = [
    "HANDLER_TYPES",
    "ApplyResult",
    "ResourceHandler",
    "build_handlers",
]
