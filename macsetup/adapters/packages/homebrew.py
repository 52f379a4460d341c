"""
Homebrew adapter — query, install and upgrade formulae and casks.
"""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path

from macsetup.adapters.base import CommandResult, PackageManager
from macsetup.adapters.shell.command import run_command

logger = logging.getLogger(__name__)

# Apple Silicon prefix first, then Intel
_BREW_CANDIDATES = ("/opt/homebrew/bin/brew", "/usr/local/bin/brew")


def find_brew() -> str | None:
    """Locate the brew binary even when it is not on PATH yet."""
    on_path = shutil.which("brew")
    if on_path:
        return on_path
    for candidate in _BREW_CANDIDATES:
        if Path(candidate).is_file():
            return candidate
    return None


class HomebrewAdapter(PackageManager):
    """Package manager backed by the ``brew`` CLI."""

    def __init__(self, probe_timeout: int = 30, install_timeout: int = 300):
        self._probe_timeout = probe_timeout
        self._install_timeout = install_timeout

    @property
    def name(self) -> str:
        return "homebrew"

    def is_available(self) -> bool:
        return find_brew() is not None

    def _brew(self) -> str:
        return find_brew() or "brew"

    def query(self, name: str, cask: bool = False) -> str | None:
        cmd = [self._brew(), "list", "--versions"]
        if cask:
            cmd.append("--cask")
        cmd.append(name)
        result = run_command(
            cmd,
            timeout=self._probe_timeout,
            env_overrides={"HOMEBREW_NO_AUTO_UPDATE": "1"},
        )
        # `brew list --versions` exits 1 silently for packages that are not installed
        if result.return_code == 1 and not result.stdout.strip() and not result.timed_out:
            return None
        result.check(f"brew list {name}", probing=True)
        tokens = result.stdout.split()
        if len(tokens) < 2:
            return None
        return tokens[-1]

    def outdated(self, name: str, cask: bool = False) -> bool:
        cmd = [self._brew(), "outdated", "--json=v2"]
        if cask:
            cmd.append("--cask")
        cmd.append(name)
        result = run_command(
            cmd,
            timeout=self._probe_timeout,
            env_overrides={"HOMEBREW_NO_AUTO_UPDATE": "1"},
        )
        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            result.check(f"brew outdated {name}", probing=True)
            return False
        entries = data.get("casks" if cask else "formulae", [])
        return any(entry.get("name") == name for entry in entries)

    def install(self, name: str, version: str | None = None, cask: bool = False) -> CommandResult:
        target = f"{name}@{version}" if version else name
        cmd = [self._brew(), "install"]
        if cask:
            cmd.append("--cask")
        cmd.append(target)
        logger.info("Installing %s%s", target, " (cask)" if cask else "")
        return run_command(cmd, timeout=self._install_timeout).check(f"brew install {target}")

    def upgrade(self, name: str, cask: bool = False) -> CommandResult:
        cmd = [self._brew(), "upgrade"]
        if cask:
            cmd.append("--cask")
        cmd.append(name)
        logger.info("Upgrading %s", name)
        return run_command(cmd, timeout=self._install_timeout).check(f"brew upgrade {name}")
