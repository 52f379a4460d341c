"""
Git adapter — clones pinned to a ref (Oh My Zsh plugins, dotfile repos).

Uses the git CLI only. ``current_ref`` and ``resolve_ref`` return full
commit hashes so a branch, tag or commit pin compare the same way.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from macsetup.adapters.base import CommandResult, VersionControl
from macsetup.adapters.shell.command import run_command

logger = logging.getLogger(__name__)


class GitAdapter(VersionControl):
    """Version control backed by the ``git`` CLI."""

    def __init__(self, probe_timeout: int = 30, clone_timeout: int = 300):
        self._probe_timeout = probe_timeout
        self._clone_timeout = clone_timeout

    @property
    def name(self) -> str:
        return "git"

    def is_available(self) -> bool:
        return shutil.which("git") is not None

    def _git(self, args: list[str], cwd: str | None = None, timeout: int | None = None) -> CommandResult:
        return run_command(
            ["git", *args],
            cwd=cwd,
            timeout=timeout or self._probe_timeout,
            env_overrides={"GIT_TERMINAL_PROMPT": "0"},
        )

    def clone(self, url: str, ref: str, dest: str) -> CommandResult:
        Path(dest).parent.mkdir(parents=True, exist_ok=True)
        logger.info("Cloning %s → %s", url, dest)
        result = self._git(["clone", "--quiet", url, dest], timeout=self._clone_timeout)
        result.check(f"git clone {url}")
        return self._git(
            ["-c", "advice.detachedHead=false", "checkout", "--quiet", ref], cwd=dest,
        ).check(f"git checkout {ref}")

    def checkout(self, dest: str, ref: str) -> CommandResult:
        self._git(["fetch", "--quiet", "--tags", "origin"], cwd=dest, timeout=self._clone_timeout).check(
            f"git fetch in {dest}"
        )
        target = ref
        remote = self._git(["rev-parse", "--verify", "--quiet", f"origin/{ref}^{{commit}}"], cwd=dest)
        if remote.ok and remote.stdout.strip():
            target = f"origin/{ref}"
        return self._git(
            ["-c", "advice.detachedHead=false", "checkout", "--quiet", "--detach", target], cwd=dest,
        ).check(f"git checkout {ref}")

    def current_ref(self, dest: str) -> str | None:
        if not (Path(dest) / ".git").exists():
            return None
        result = self._git(["rev-parse", "HEAD"], cwd=dest)
        result.check(f"git rev-parse HEAD in {dest}", probing=True)
        return result.stdout.strip() or None

    def resolve_ref(self, dest: str, ref: str) -> str | None:
        # Prefer the remote-tracking branch so a moved branch pin is detected
        for candidate in (f"origin/{ref}", ref):
            result = self._git(["rev-parse", "--verify", "--quiet", f"{candidate}^{{commit}}"], cwd=dest)
            if result.timed_out:
                result.check(f"git rev-parse {ref}", probing=True)
            if result.ok and result.stdout.strip():
                return result.stdout.strip()
        return None
