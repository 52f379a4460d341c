"""
Shell command runner — the single place ``subprocess.run`` is called.

Every adapter funnels its external commands through ``run_command`` so
timeouts, sudo handling and output capture behave the same way for
``brew``, ``defaults``, ``launchctl``, ``git`` and ``op``.

Sudo invariants:
- The password comes from the run's PrivilegeSession, never from args
- It is piped via stdin only (``sudo -S``) and ``-k`` is always passed
- It is never logged and never written to disk
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from pathlib import Path
from typing import TYPE_CHECKING

from macsetup.adapters.base import CommandResult, ScriptRunner
from macsetup.core.errors import PermissionDenied

if TYPE_CHECKING:
    from macsetup.core.engine.privilege import PrivilegeSession

logger = logging.getLogger(__name__)

# Tail of stdout/stderr kept per command
_KEEP_CHARS = 4000


def run_command(
    cmd: list[str],
    *,
    timeout: int = 120,
    sudo: PrivilegeSession | None = None,
    input_text: str | None = None,
    env_overrides: dict[str, str] | None = None,
    cwd: str | None = None,
) -> CommandResult:
    """Run a command and capture its result.

    Args:
        cmd: Command list for ``subprocess.run()``.
        timeout: Seconds before the command is killed.
        sudo: Run elevated through this session. Ignored when the
            process is already root.
        input_text: Data for stdin (not allowed together with sudo).
        env_overrides: Extra environment variables.
        cwd: Working directory.

    Returns:
        CommandResult. Non-zero exits and timeouts are reported in the
        result, never raised; callers use ``result.check()``.

    Raises:
        PermissionDenied: sudo was requested but no credential is held.
    """
    stdin_data = input_text
    if sudo is not None and not sudo.is_root:
        password = sudo.password
        if password is None:
            raise PermissionDenied(f"Elevation required for: {cmd[0]}")
        if input_text is not None:
            raise ValueError("stdin input cannot be combined with sudo")
        cmd = ["sudo", "-S", "-k", "-p", ""] + cmd
        stdin_data = password + "\n"

    env = os.environ.copy()
    if env_overrides:
        for key, value in env_overrides.items():
            env[key] = os.path.expandvars(value)

    logger.debug("Executing: %s", " ".join(cmd))
    start = time.monotonic()
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            input=stdin_data,
            env=env,
            cwd=cwd,
        )
    except subprocess.TimeoutExpired:
        return CommandResult(
            cmd=cmd,
            return_code=-1,
            elapsed_ms=int((time.monotonic() - start) * 1000),
            timed_out=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        return CommandResult(
            cmd=cmd,
            return_code=127,
            stderr=f"command not found: {cmd[0]}",
        )

    elapsed_ms = int((time.monotonic() - start) * 1000)
    stderr = result.stderr or ""
    if sudo is not None and "incorrect password" in stderr.lower():
        stderr = "sudo: permission denied (incorrect password)"

    return CommandResult(
        cmd=cmd,
        return_code=result.returncode,
        stdout=(result.stdout or "")[-_KEEP_CHARS:],
        stderr=stderr[-_KEEP_CHARS:],
        elapsed_ms=elapsed_ms,
        timeout=timeout,
    )


class BashScriptRunner(ScriptRunner):
    """Run downloaded, verified installer scripts with bash."""

    @property
    def name(self) -> str:
        return "bash"

    def is_available(self) -> bool:
        return shutil.which("bash") is not None

    def run_script(
        self,
        path: Path,
        args: list[str],
        env: dict[str, str] | None = None,
        timeout: int = 300,
    ) -> CommandResult:
        # Homebrew's installer skips its confirmation prompt with NONINTERACTIVE
        overrides = {"NONINTERACTIVE": "1", **(env or {})}
        return run_command(
            ["/bin/bash", str(path), *args],
            timeout=timeout,
            env_overrides=overrides,
            input_text="",
        )
