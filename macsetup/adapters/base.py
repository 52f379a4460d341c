"""
Adapter base — the narrow interfaces the engine uses to reach the OS.

The engine never shells out directly. Every external collaborator
(package manager, preference store, job scheduler, credential vault,
version control, filesystem, downloader, script runner) is reached
through one of the abstract classes below, so tests and ``--mock`` runs
can swap in the in-memory fakes from ``macsetup.adapters.mock``.

Adapters raise the ``macsetup.core.errors`` taxonomy. They never
decide whether a change is needed; that is the handlers' job.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from macsetup.core.errors import ExternalCommandFailed, PermissionDenied, ProbeTimeout

if TYPE_CHECKING:
    from macsetup.core.engine.privilege import PrivilegeSession

_PERMISSION_MARKERS = ("permission denied", "operation not permitted", "not authorized")


class CommandResult(BaseModel):
    """Captured result of one external command."""

    cmd: list[str]
    return_code: int = 0
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0
    timed_out: bool = False
    timeout: int | None = None

    @property
    def ok(self) -> bool:
        return self.return_code == 0 and not self.timed_out

    @property
    def output(self) -> str:
        """stdout and stderr combined, for outcome reporting."""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)

    def check(self, what: str, *, probing: bool = False) -> CommandResult:
        """Raise the matching taxonomy error unless the command succeeded.

        Args:
            what: Short description used in the error message.
            probing: Timeouts become ``ProbeTimeout`` when True,
                ``ExternalCommandFailed`` otherwise.
        """
        if self.timed_out:
            message = f"{what}: timed out after {self.timeout}s"
            if probing:
                raise ProbeTimeout(message, self.output)
            raise ExternalCommandFailed(message, self.output)
        if self.return_code != 0:
            lowered = self.stderr.lower()
            if any(marker in lowered for marker in _PERMISSION_MARKERS):
                raise PermissionDenied(f"{what}: permission denied", self.output)
            raise ExternalCommandFailed(
                f"{what}: command exited with code {self.return_code}",
                self.output,
                return_code=self.return_code,
            )
        return self


class Collaborator(ABC):
    """Common surface of every adapter."""

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'homebrew', 'defaults')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the underlying tool exists. Fast, never raises."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class PackageManager(Collaborator):
    @abstractmethod
    def query(self, name: str, cask: bool = False) -> str | None:
        """Installed version, or None when the package is absent."""

    @abstractmethod
    def outdated(self, name: str, cask: bool = False) -> bool:
        """Whether a newer version than the installed one is available."""

    @abstractmethod
    def install(self, name: str, version: str | None = None, cask: bool = False) -> CommandResult:
        """Install a package (optionally a specific version)."""

    @abstractmethod
    def upgrade(self, name: str, cask: bool = False) -> CommandResult:
        """Upgrade an installed package to the newest version."""


class PreferenceStore(Collaborator):
    @abstractmethod
    def read(self, domain: str, key: str) -> tuple[str, Any] | None:
        """``(type, value)`` of a key, or None when the key is not set."""

    @abstractmethod
    def write(
        self,
        domain: str,
        key: str,
        value: Any,
        value_type: str,
        sudo: PrivilegeSession | None = None,
    ) -> CommandResult:
        """Set a key to a typed value (through sudo when a session is given)."""


class JobScheduler(Collaborator):
    @abstractmethod
    def query(self, label: str) -> bool:
        """Whether a job with this label is registered (loaded)."""

    @abstractmethod
    def definition(self, label: str) -> bytes | None:
        """The job definition (plist bytes) on disk, or None."""

    @abstractmethod
    def register(self, label: str, definition: bytes, load: bool = True) -> CommandResult:
        """Write the definition; (re)load the job, or leave it unloaded."""


class CredentialVault(Collaborator):
    @abstractmethod
    def get(self, item: str, field: str, vault: str | None = None) -> str:
        """Fetch a secret field of a vault item."""


class VersionControl(Collaborator):
    @abstractmethod
    def clone(self, url: str, ref: str, dest: str) -> CommandResult:
        """Clone ``url`` into ``dest`` and check out ``ref``."""

    @abstractmethod
    def checkout(self, dest: str, ref: str) -> CommandResult:
        """Fetch and check out ``ref`` in an existing clone."""

    @abstractmethod
    def current_ref(self, dest: str) -> str | None:
        """Commit currently checked out in ``dest``, or None if not a clone."""

    @abstractmethod
    def resolve_ref(self, dest: str, ref: str) -> str | None:
        """Commit that ``ref`` points to in ``dest``, or None if unknown."""


class FileStore(Collaborator):
    @abstractmethod
    def read_bytes(self, path: str) -> bytes | None:
        """File content, or None when the file does not exist."""

    @abstractmethod
    def mode(self, path: str) -> int | None:
        """Permission bits, or None when the file does not exist."""

    @abstractmethod
    def write_bytes(
        self,
        path: str,
        data: bytes,
        mode: int | None = None,
        sudo: PrivilegeSession | None = None,
    ) -> None:
        """Write a file atomically (through sudo when a session is given)."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Whether a path exists."""


class Downloader(Collaborator):
    @abstractmethod
    def fetch(self, url: str, dest: Path, timeout: int) -> Path:
        """Download ``url`` to ``dest`` and return the path."""


class ScriptRunner(Collaborator):
    @abstractmethod
    def run_script(
        self,
        path: Path,
        args: list[str],
        env: dict[str, str] | None = None,
        timeout: int = 300,
    ) -> CommandResult:
        """Execute a verified script with bash."""
