"""
Launchd adapter — user LaunchAgents registered with ``launchctl``.

A job is stored as ``~/Library/LaunchAgents/<label>.plist`` and loaded
with ``launchctl load -w``. Re-registering unloads the old definition
first so launchd picks up the new schedule; ``load=False`` leaves the
new definition on disk without loading it.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from macsetup.adapters.base import CommandResult, JobScheduler
from macsetup.adapters.shell.command import run_command
from macsetup.adapters.shell.filesystem import LocalFileStore

logger = logging.getLogger(__name__)

DEFAULT_AGENTS_DIR = "~/Library/LaunchAgents"


class LaunchdAdapter(JobScheduler):
    """Job scheduler backed by launchd user agents."""

    def __init__(
        self,
        agents_dir: Path | None = None,
        probe_timeout: int = 30,
        files: LocalFileStore | None = None,
    ):
        self._agents_dir = agents_dir or Path(DEFAULT_AGENTS_DIR).expanduser()
        self._probe_timeout = probe_timeout
        self._files = files or LocalFileStore()

    @property
    def name(self) -> str:
        return "launchd"

    def is_available(self) -> bool:
        return shutil.which("launchctl") is not None

    def plist_path(self, label: str) -> Path:
        return self._agents_dir / f"{label}.plist"

    def query(self, label: str) -> bool:
        result = run_command(["launchctl", "list", label], timeout=self._probe_timeout)
        if result.timed_out:
            result.check(f"launchctl list {label}", probing=True)
        return result.return_code == 0

    def definition(self, label: str) -> bytes | None:
        return self._files.read_bytes(str(self.plist_path(label)))

    def register(self, label: str, definition: bytes, load: bool = True) -> CommandResult:
        path = self.plist_path(label)
        if self.query(label) and path.exists():
            logger.debug("Unloading existing agent %s", label)
            run_command(["launchctl", "unload", str(path)], timeout=self._probe_timeout)

        self._files.write_bytes(str(path), definition, mode=0o644)
        if not load:
            logger.info("Wrote agent %s (not loaded)", label)
            return CommandResult(cmd=[str(path)], stdout=f"wrote {path} (not loaded)")
        logger.info("Loading agent %s", label)
        return run_command(
            ["launchctl", "load", "-w", str(path)], timeout=self._probe_timeout,
        ).check(f"launchctl load {label}")
