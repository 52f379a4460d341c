"""
1Password adapter — reads secret fields with the ``op`` CLI.

Secrets are returned to the caller only; they are never logged and
never included in outcomes or backups' log lines.
"""

from __future__ import annotations

import logging
import shutil

from macsetup.adapters.base import CredentialVault
from macsetup.adapters.shell.command import run_command
from macsetup.core.errors import PermissionDenied

logger = logging.getLogger(__name__)


class OnePasswordAdapter(CredentialVault):
    """Credential vault backed by ``op item get``."""

    def __init__(self, timeout: int = 30):
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "1password"

    def is_available(self) -> bool:
        return shutil.which("op") is not None

    def get(self, item: str, field: str, vault: str | None = None) -> str:
        cmd = ["op", "item", "get", item, "--fields", field, "--reveal"]
        if vault:
            cmd += ["--vault", vault]
        result = run_command(cmd, timeout=self._timeout)
        if result.return_code != 0 and "not currently signed in" in result.stderr.lower():
            raise PermissionDenied("1Password CLI is not signed in (run `op signin`)")
        result.check(f"op item get {item}", probing=True)
        logger.debug("Fetched field '%s' of item '%s'", field, item)
        return result.stdout.rstrip("\n")
