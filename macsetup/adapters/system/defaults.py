"""
Defaults adapter — the macOS preference store (``defaults`` CLI).

A key that does not exist is a valid "not set" answer (``None``), not
an error.
"""

from __future__ import annotations

import logging
import shutil
from typing import TYPE_CHECKING, Any

from macsetup.adapters.base import CommandResult, PreferenceStore
from macsetup.adapters.shell.command import run_command
from macsetup.core.errors import InvalidDeclaration
from macsetup.core.models.resource import PREFERENCE_TYPES, coerce_preference

if TYPE_CHECKING:
    from macsetup.core.engine.privilege import PrivilegeSession

logger = logging.getLogger(__name__)

# `defaults read-type` wording → our type names
_READ_TYPES = {
    "boolean": "bool",
    "integer": "int",
    "float": "float",
    "string": "string",
}

_WRITE_FLAGS = {
    "bool": "-bool",
    "int": "-int",
    "float": "-float",
    "string": "-string",
}


def _is_missing(stderr: str) -> bool:
    return "does not exist" in stderr.lower()


def format_value(value: Any, value_type: str) -> str:
    """Render a typed value as a ``defaults write`` argument."""
    if value_type == "bool":
        return "true" if coerce_preference(value, "bool") else "false"
    return str(value)


class DefaultsAdapter(PreferenceStore):
    """Preference store backed by ``/usr/bin/defaults``."""

    def __init__(self, probe_timeout: int = 30, write_timeout: int = 30):
        self._probe_timeout = probe_timeout
        self._write_timeout = write_timeout

    @property
    def name(self) -> str:
        return "defaults"

    def is_available(self) -> bool:
        return shutil.which("defaults") is not None

    def read(self, domain: str, key: str) -> tuple[str, Any] | None:
        type_result = run_command(
            ["defaults", "read-type", domain, key], timeout=self._probe_timeout,
        )
        if type_result.return_code != 0 and _is_missing(type_result.stderr):
            return None
        type_result.check(f"defaults read-type {domain} {key}", probing=True)

        raw_type = type_result.stdout.strip().removeprefix("Type is ").strip()
        value_type = _READ_TYPES.get(raw_type, raw_type or "string")

        value_result = run_command(
            ["defaults", "read", domain, key], timeout=self._probe_timeout,
        )
        if value_result.return_code != 0 and _is_missing(value_result.stderr):
            return None
        value_result.check(f"defaults read {domain} {key}", probing=True)

        text = value_result.stdout.rstrip("\n")
        if value_type in _WRITE_FLAGS:
            try:
                return value_type, coerce_preference(text, value_type)
            except ValueError:
                logger.debug("Unparseable %s value for %s %s: %r", value_type, domain, key, text)
        return value_type, text

    def write(
        self,
        domain: str,
        key: str,
        value: Any,
        value_type: str,
        sudo: PrivilegeSession | None = None,
    ) -> CommandResult:
        flag = _WRITE_FLAGS.get(value_type)
        if flag is None:
            raise InvalidDeclaration(
                f"defaults write {domain} {key}: type '{value_type}' cannot be written "
                f"(supported: {', '.join(PREFERENCE_TYPES)})"
            )
        cmd = ["defaults", "write", domain, key, flag, format_value(value, value_type)]
        return run_command(cmd, timeout=self._write_timeout, sudo=sudo).check(f"defaults write {domain} {key}")
