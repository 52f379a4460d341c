"""
Privilege session — sudo elevation obtained at most once per run.

The password is asked for through an injected prompt (the CLI passes a
hidden click prompt), validated with ``sudo -S -k -v`` and then held in
memory only until ``close()``. Commands that need it receive the
session and pipe the password on stdin; it is never put on a command
line, logged or written to disk.

A refused or failed elevation is remembered: later privileged resources
in the same run fail immediately without prompting again.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable

from macsetup.core.errors import PermissionDenied

logger = logging.getLogger(__name__)

PromptFn = Callable[[], str | None]
ValidateFn = Callable[[str], bool]


def _sudo_validate(password: str) -> bool:
    from macsetup.adapters.shell.command import run_command

    result = run_command(
        ["sudo", "-S", "-k", "-p", "", "-v"],
        input_text=password + "\n",
        timeout=30,
    )
    return result.ok


class PrivilegeSession:
    """Elevation for one run."""

    def __init__(
        self,
        prompt: PromptFn | None = None,
        validate: ValidateFn | None = None,
        is_root: bool | None = None,
    ):
        self._prompt = prompt
        self._validate = validate or _sudo_validate
        self._is_root = (os.geteuid() == 0) if is_root is None else is_root
        self._password: str | None = None
        self._failed = False
        self._closed = False
        self.prompt_count = 0

    @classmethod
    def granted(cls) -> PrivilegeSession:
        """A session that always succeeds without prompting (mock runs)."""
        return cls(prompt=lambda: "", validate=lambda _pw: True, is_root=True)

    @property
    def is_root(self) -> bool:
        return self._is_root

    @property
    def password(self) -> str | None:
        return self._password

    @property
    def failed(self) -> bool:
        return self._failed

    @property
    def active(self) -> bool:
        return self._is_root or self._password is not None

    def ensure(self) -> None:
        """Obtain elevation if not held yet.

        Raises:
            PermissionDenied: No prompt available, the prompt was
                declined, the password was rejected, or an earlier
                attempt in this run failed.
        """
        if self._closed:
            raise PermissionDenied("Privilege session is closed")
        if self.active:
            return
        if self._failed:
            raise PermissionDenied("Elevation was refused earlier in this run")
        if self._prompt is None:
            self._failed = True
            raise PermissionDenied("Elevation required but no password prompt is available")

        self.prompt_count += 1
        try:
            password = self._prompt()
        except EOFError as e:
            self._failed = True
            raise PermissionDenied("Password prompt was cancelled") from e

        if not password:
            self._failed = True
            raise PermissionDenied("No password given")

        if not self._validate(password):
            self._failed = True
            raise PermissionDenied("sudo rejected the password")

        self._password = password
        logger.info("Elevated privileges obtained")

    def close(self) -> None:
        """Drop the held credential."""
        if self._password is not None:
            logger.debug("Dropping elevated privileges")
        self._password = None
        self._closed = True
