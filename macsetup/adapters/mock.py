"""
Mock adapters — in-memory test doubles for every collaborator.

Used by the test-suite and by ``--mock`` runs to exercise the full
reconcile loop without touching the machine. Every fake keeps a call
log; calls to mutating methods are additionally listed in
``mutating_calls`` so dry-run purity can be asserted.

Failures are injected per method:

    pkgs = FakePackageManager()
    pkgs.set_failure("install", ExternalCommandFailed("boom"))
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import TYPE_CHECKING, Any

from macsetup.adapters.base import (
    CommandResult,
    CredentialVault,
    Downloader,
    FileStore,
    JobScheduler,
    PackageManager,
    PreferenceStore,
    ScriptRunner,
    VersionControl,
)
from macsetup.core.errors import ExternalCommandFailed, ReconcileError

if TYPE_CHECKING:
    from macsetup.core.engine.privilege import PrivilegeSession

MUTATING_METHODS = frozenset({
    "install", "upgrade", "write", "register",
    "clone", "checkout", "write_bytes", "run_script",
})


def _ok(*cmd: str, output: str = "") -> CommandResult:
    return CommandResult(cmd=list(cmd), stdout=output)


class _Fake:
    """Shared call logging and failure injection."""

    fake_name = "fake"

    def __init__(self, available: bool = True):
        self._available = available
        self.call_log: list[tuple[str, tuple[Any, ...]]] = []
        self._failures: dict[str, ReconcileError] = {}

    @property
    def name(self) -> str:
        return self.fake_name

    def is_available(self) -> bool:
        return self._available

    @property
    def mutating_calls(self) -> list[tuple[str, tuple[Any, ...]]]:
        return [call for call in self.call_log if call[0] in MUTATING_METHODS]

    def calls(self, method: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.call_log if name == method]

    def set_failure(self, method: str, error: ReconcileError) -> None:
        self._failures[method] = error

    def clear_failure(self, method: str) -> None:
        self._failures.pop(method, None)

    def _record(self, method: str, *args: Any) -> None:
        self.call_log.append((method, args))
        error = self._failures.get(method)
        if error is not None:
            raise error


class FakePackageManager(_Fake, PackageManager):
    """A pinned install registers ``name@version``, the way brew names versioned formulae."""

    fake_name = "mock-packages"

    def __init__(self, installed: dict[str, str] | None = None, latest: dict[str, str] | None = None):
        super().__init__()
        self.installed: dict[str, str] = dict(installed or {})
        self.latest: dict[str, str] = dict(latest or {})
        self.drop_writes = False

    def query(self, name: str, cask: bool = False) -> str | None:
        self._record("query", name, cask)
        return self.installed.get(name)

    def outdated(self, name: str, cask: bool = False) -> bool:
        self._record("outdated", name, cask)
        current = self.installed.get(name)
        newest = self.latest.get(name)
        return current is not None and newest is not None and current != newest

    def install(self, name: str, version: str | None = None, cask: bool = False) -> CommandResult:
        self._record("install", name, version, cask)
        target = f"{name}@{version}" if version else name
        if not self.drop_writes:
            self.installed[target] = version or self.latest.get(name, "1.0.0")
        return _ok("brew", "install", target, output=f"installed {target}")

    def upgrade(self, name: str, cask: bool = False) -> CommandResult:
        self._record("upgrade", name, cask)
        if not self.drop_writes:
            self.installed[name] = self.latest.get(name, self.installed.get(name, "1.0.0"))
        return _ok("brew", "upgrade", name, output=f"upgraded {name}")


class FakePreferenceStore(_Fake, PreferenceStore):
    fake_name = "mock-defaults"

    def __init__(self, values: dict[tuple[str, str], tuple[str, Any]] | None = None):
        super().__init__()
        self.values: dict[tuple[str, str], tuple[str, Any]] = dict(values or {})
        self.drop_writes = False
        self.sudo_writes: list[tuple[str, str]] = []

    def read(self, domain: str, key: str) -> tuple[str, Any] | None:
        self._record("read", domain, key)
        return self.values.get((domain, key))

    def write(
        self,
        domain: str,
        key: str,
        value: Any,
        value_type: str,
        sudo: PrivilegeSession | None = None,
    ) -> CommandResult:
        self._record("write", domain, key, value, value_type)
        if sudo is not None:
            self.sudo_writes.append((domain, key))
        if not self.drop_writes:
            self.values[(domain, key)] = (value_type, value)
        return _ok("defaults", "write", domain, key)


class FakeJobScheduler(_Fake, JobScheduler):
    fake_name = "mock-launchd"

    def __init__(self):
        super().__init__()
        self.definitions: dict[str, bytes] = {}
        self.loaded: set[str] = set()

    def query(self, label: str) -> bool:
        self._record("query", label)
        return label in self.loaded

    def definition(self, label: str) -> bytes | None:
        self._record("definition", label)
        return self.definitions.get(label)

    def register(self, label: str, definition: bytes, load: bool = True) -> CommandResult:
        self._record("register", label, definition, load)
        self.definitions[label] = definition
        if load:
            self.loaded.add(label)
        else:
            self.loaded.discard(label)
        return _ok("launchctl", "load" if load else "unload", label)


class FakeVault(_Fake, CredentialVault):
    fake_name = "mock-vault"

    def __init__(self, secrets: dict[tuple[str, str], str] | None = None):
        super().__init__()
        self.secrets: dict[tuple[str, str], str] = dict(secrets or {})

    def get(self, item: str, field: str, vault: str | None = None) -> str:
        self._record("get", item, field, vault)
        try:
            return self.secrets[(item, field)]
        except KeyError:
            raise ExternalCommandFailed(f"op item get {item}: item not found") from None


class FakeVersionControl(_Fake, VersionControl):
    """Clones are ``dest → {"url", "head"}``; ``remote_refs`` maps url → {ref: sha}."""

    fake_name = "mock-git"

    def __init__(self, remote_refs: dict[str, dict[str, str]] | None = None):
        super().__init__()
        # url → {ref: sha}
        self.remote_refs: dict[str, dict[str, str]] = dict(remote_refs or {})
        self.repos: dict[str, dict[str, Any]] = {}

    def _sha(self, url: str, ref: str) -> str:
        refs = self.remote_refs.get(url, {})
        return refs.get(ref, ref if len(ref) == 40 else hashlib.sha1(f"{url}@{ref}".encode()).hexdigest())

    def clone(self, url: str, ref: str, dest: str) -> CommandResult:
        self._record("clone", url, ref, dest)
        self.repos[dest] = {"url": url, "head": self._sha(url, ref)}
        return _ok("git", "clone", url, dest)

    def checkout(self, dest: str, ref: str) -> CommandResult:
        self._record("checkout", dest, ref)
        repo = self.repos[dest]
        repo["head"] = self._sha(repo["url"], ref)
        return _ok("git", "checkout", ref)

    def current_ref(self, dest: str) -> str | None:
        self._record("current_ref", dest)
        repo = self.repos.get(dest)
        return repo["head"] if repo else None

    def resolve_ref(self, dest: str, ref: str) -> str | None:
        self._record("resolve_ref", dest, ref)
        repo = self.repos.get(dest)
        return self._sha(repo["url"], ref) if repo else None


class FakeFileStore(_Fake, FileStore):
    fake_name = "mock-files"

    def __init__(self, files: dict[str, bytes] | None = None):
        super().__init__()
        self.files: dict[str, bytes] = dict(files or {})
        self.modes: dict[str, int] = {}
        self.sudo_writes: list[str] = []

    def read_bytes(self, path: str) -> bytes | None:
        self._record("read_bytes", path)
        return self.files.get(path)

    def mode(self, path: str) -> int | None:
        self._record("mode", path)
        if path not in self.files:
            return None
        return self.modes.get(path, 0o644)

    def exists(self, path: str) -> bool:
        self._record("exists", path)
        return path in self.files

    def write_bytes(
        self,
        path: str,
        data: bytes,
        mode: int | None = None,
        sudo: PrivilegeSession | None = None,
    ) -> None:
        self._record("write_bytes", path, data, mode)
        if sudo is not None:
            self.sudo_writes.append(path)
        self.files[path] = data
        if mode is not None:
            self.modes[path] = mode


class FakeDownloader(_Fake, Downloader):
    fake_name = "mock-download"

    def __init__(self, artifacts: dict[str, bytes] | None = None):
        super().__init__()
        self.artifacts: dict[str, bytes] = dict(artifacts or {})

    def fetch(self, url: str, dest: Path, timeout: int) -> Path:
        self._record("fetch", url, dest)
        if url not in self.artifacts:
            raise ExternalCommandFailed(f"download {url}: command exited with code 22")
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(self.artifacts[url])
        return dest


class FakeScriptRunner(_Fake, ScriptRunner):
    """Records executions; ``creates`` maps script URLs' side-effect paths."""

    fake_name = "mock-bash"

    def __init__(self, files: FakeFileStore | None = None, creates: list[str] | None = None):
        super().__init__()
        self._files = files
        self._creates = list(creates or [])

    def run_script(
        self,
        path: Path,
        args: list[str],
        env: dict[str, str] | None = None,
        timeout: int = 300,
    ) -> CommandResult:
        self._record("run_script", path, tuple(args))
        if self._files is not None:
            for created in self._creates:
                self._files.files.setdefault(created, b"")
        return _ok("/bin/bash", str(path), *args)
