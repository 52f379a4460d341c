"""
Filesystem adapter — reads and atomic writes for managed files.

Unprivileged writes go to a temp file in the target directory which is
fsynced and renamed over the target. Privileged writes stage the bytes
in a private temp file and copy them into place with ``sudo cp``.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from macsetup.adapters.base import FileStore
from macsetup.adapters.shell.command import run_command
from macsetup.core.errors import ExternalCommandFailed, PermissionDenied

if TYPE_CHECKING:
    from macsetup.core.engine.privilege import PrivilegeSession

logger = logging.getLogger(__name__)


class LocalFileStore(FileStore):
    """Files on the local disk."""

    @property
    def name(self) -> str:
        return "filesystem"

    def is_available(self) -> bool:
        return True

    def read_bytes(self, path: str) -> bytes | None:
        try:
            return Path(path).read_bytes()
        except FileNotFoundError:
            return None
        except PermissionError as e:
            raise PermissionDenied(f"Cannot read {path}: {e}") from e
        except IsADirectoryError as e:
            raise ExternalCommandFailed(f"Expected a file, found a directory: {path}") from e

    def mode(self, path: str) -> int | None:
        try:
            return Path(path).stat().st_mode & 0o7777
        except FileNotFoundError:
            return None
        except PermissionError as e:
            raise PermissionDenied(f"Cannot stat {path}: {e}") from e

    def exists(self, path: str) -> bool:
        return Path(path).exists()

    def write_bytes(
        self,
        path: str,
        data: bytes,
        mode: int | None = None,
        sudo: PrivilegeSession | None = None,
    ) -> None:
        if sudo is not None and not sudo.is_root:
            self._write_privileged(path, data, mode, sudo)
            return

        target = Path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=".macsetup_", suffix=".tmp")
        except PermissionError as e:
            raise PermissionDenied(f"Cannot write {path}: {e}") from e

        tmp = Path(tmp_path)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            if mode is not None:
                os.chmod(tmp, mode)
            elif target.exists():
                os.chmod(tmp, target.stat().st_mode & 0o7777)
            else:
                os.chmod(tmp, 0o644)
            tmp.replace(target)
            logger.debug("Wrote %d bytes to %s", len(data), path)
        except PermissionError as e:
            tmp.unlink(missing_ok=True)
            raise PermissionDenied(f"Cannot write {path}: {e}") from e
        except Exception:
            tmp.unlink(missing_ok=True)
            raise

    def _write_privileged(
        self,
        path: str,
        data: bytes,
        mode: int | None,
        sudo: PrivilegeSession,
    ) -> None:
        fd, tmp_path = tempfile.mkstemp(prefix="macsetup_stage_")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            parent = str(Path(path).parent)
            run_command(["mkdir", "-p", parent], sudo=sudo, timeout=15).check(f"mkdir {parent}")
            run_command(["cp", tmp_path, path], sudo=sudo, timeout=15).check(f"write {path}")
            if mode is not None:
                run_command(
                    ["chmod", format(mode, "o"), path], sudo=sudo, timeout=15,
                ).check(f"chmod {path}")
            logger.debug("Wrote %d bytes to %s (sudo)", len(data), path)
        finally:
            Path(tmp_path).unlink(missing_ok=True)
