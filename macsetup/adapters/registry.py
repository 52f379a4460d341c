"""
Adapter registry — one place that decides which collaborators a run uses.

The engine never constructs adapters itself. Use cases build a registry
(real bindings, or the in-memory fakes in mock mode) and hand it to the
handlers.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from macsetup.adapters.base import (
    Collaborator,
    CredentialVault,
    Downloader,
    FileStore,
    JobScheduler,
    PackageManager,
    PreferenceStore,
    ScriptRunner,
    VersionControl,
)

if TYPE_CHECKING:
    from macsetup.core.config.settings import Settings
    from macsetup.core.models.resource import InstallerSpec

logger = logging.getLogger(__name__)

# Served for seeded installer URLs in mock mode
MOCK_INSTALLER_SCRIPT = b"#!/bin/bash\nexit 0\n"

ROLES = (
    "packages",
    "preferences",
    "scheduler",
    "vault",
    "vcs",
    "files",
    "downloads",
    "shell",
)


class AdapterRegistry:
    """Collaborators keyed by role.

    Features:
        - Register/replace an adapter for a role
        - Mock mode: every role bound to an in-memory fake
        - Availability report for ``status``/environment checks
    """

    def __init__(self, mock_mode: bool = False):
        self._adapters: dict[str, Collaborator] = {}
        self._mock_mode = mock_mode

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    def register(self, role: str, adapter: Collaborator) -> None:
        if role not in ROLES:
            raise ValueError(f"Unknown adapter role '{role}'. Valid: {', '.join(ROLES)}")
        if role in self._adapters:
            logger.debug("Replacing adapter for %s: %r", role, self._adapters[role])
        self._adapters[role] = adapter

    def get(self, role: str) -> Collaborator:
        try:
            return self._adapters[role]
        except KeyError:
            raise LookupError(f"No adapter registered for role '{role}'") from None

    def list_roles(self) -> list[str]:
        return list(self._adapters.keys())

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Availability of every registered adapter."""
        status = {}
        for role, adapter in self._adapters.items():
            try:
                available = adapter.is_available()
            except Exception:
                available = False
            status[role] = {
                "name": adapter.name,
                "available": available,
                "type": adapter.__class__.__name__,
            }
        return status

    # ── Typed accessors ─────────────────────────────────────────

    @property
    def packages(self) -> PackageManager:
        return self.get("packages")  # type: ignore[return-value]

    @property
    def preferences(self) -> PreferenceStore:
        return self.get("preferences")  # type: ignore[return-value]

    @property
    def scheduler(self) -> JobScheduler:
        return self.get("scheduler")  # type: ignore[return-value]

    @property
    def vault(self) -> CredentialVault:
        return self.get("vault")  # type: ignore[return-value]

    @property
    def vcs(self) -> VersionControl:
        return self.get("vcs")  # type: ignore[return-value]

    @property
    def files(self) -> FileStore:
        return self.get("files")  # type: ignore[return-value]

    @property
    def downloads(self) -> Downloader:
        return self.get("downloads")  # type: ignore[return-value]

    @property
    def shell(self) -> ScriptRunner:
        return self.get("shell")  # type: ignore[return-value]

    # ── Factories ───────────────────────────────────────────────

    @classmethod
    def real(cls, settings: Settings) -> AdapterRegistry:
        """Bindings to the actual macOS tools."""
        from macsetup.adapters.packages.homebrew import HomebrewAdapter
        from macsetup.adapters.secrets.onepassword import OnePasswordAdapter
        from macsetup.adapters.shell.command import BashScriptRunner
        from macsetup.adapters.shell.download import CurlDownloader
        from macsetup.adapters.shell.filesystem import LocalFileStore
        from macsetup.adapters.system.defaults import DefaultsAdapter
        from macsetup.adapters.system.launchd import LaunchdAdapter
        from macsetup.adapters.vcs.git import GitAdapter

        files = LocalFileStore()
        registry = cls(mock_mode=False)
        registry.register("packages", HomebrewAdapter(settings.probe_timeout, settings.install_timeout))
        registry.register("preferences", DefaultsAdapter(settings.probe_timeout))
        registry.register("scheduler", LaunchdAdapter(probe_timeout=settings.probe_timeout, files=files))
        registry.register("vault", OnePasswordAdapter(settings.probe_timeout))
        registry.register("vcs", GitAdapter(settings.probe_timeout, settings.install_timeout))
        registry.register("files", files)
        registry.register("downloads", CurlDownloader())
        registry.register("shell", BashScriptRunner())
        return registry

    @classmethod
    def mock(cls, installers: Iterable[InstallerSpec] = ()) -> AdapterRegistry:
        """Every role bound to an in-memory fake.

        Args:
            installers: Installer scripts the fakes should serve and
                "run", so profiles using them converge in mock runs.
        """
        from macsetup.adapters.mock import (
            FakeDownloader,
            FakeFileStore,
            FakeJobScheduler,
            FakePackageManager,
            FakePreferenceStore,
            FakeScriptRunner,
            FakeVault,
            FakeVersionControl,
        )

        installers = list(installers)
        files = FakeFileStore()
        registry = cls(mock_mode=True)
        registry.register("packages", FakePackageManager())
        registry.register("preferences", FakePreferenceStore())
        registry.register("scheduler", FakeJobScheduler())
        registry.register("vault", FakeVault())
        registry.register("vcs", FakeVersionControl())
        registry.register("files", files)
        registry.register("downloads", FakeDownloader({i.url: MOCK_INSTALLER_SCRIPT for i in installers}))
        registry.register("shell", FakeScriptRunner(files=files, creates=[i.creates for i in installers]))
        return registry

    def mutating_calls(self) -> list[tuple[str, str, tuple[Any, ...]]]:
        """``(role, method, args)`` for every mutating call made on fakes."""
        calls = []
        for role, adapter in self._adapters.items():
            for method, args in getattr(adapter, "mutating_calls", []):
                calls.append((role, method, args))
        return calls
