"""
Run settings — the explicit configuration threaded through every run.

There is no ambient global state: the CLI builds one ``Settings``
object and passes it to the use cases, which pass it down to the
reconciler, executor and handlers.

Defaults can be overridden from the environment:

    MACSETUP_HOME              state directory (default ~/.macsetup)
    MACSETUP_PROBE_TIMEOUT     seconds per probe call (default 30)
    MACSETUP_INSTALL_TIMEOUT   seconds per install/apply call (default 300)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = "~/.macsetup"
RUNS_DIR = "runs"
BACKUPS_DIR = "backups"
CACHE_DIR = "cache"


class Settings(BaseModel):
    """Configuration for a single invocation."""

    state_dir: Path = Field(default_factory=lambda: Path(DEFAULT_STATE_DIR).expanduser())

    # Timeouts (seconds)
    probe_timeout: int = 30
    install_timeout: int = 300
    download_timeout: int = 300

    # Behaviour flags
    dry_run: bool = False
    verbose: bool = False
    assume_yes: bool = False
    with_optional: bool = False

    # Backup retention; None keeps every restore point
    backup_keep_last: int | None = None

    # Captured command output kept per outcome
    output_truncate: int = 2000

    @property
    def runs_dir(self) -> Path:
        return self.state_dir / RUNS_DIR

    @property
    def backups_dir(self) -> Path:
        return self.state_dir / BACKUPS_DIR

    @property
    def cache_dir(self) -> Path:
        return self.state_dir / CACHE_DIR

    def truncate(self, text: str) -> str:
        """Trim captured output to the configured tail length."""
        if len(text) <= self.output_truncate:
            return text
        return "…" + text[-self.output_truncate:]

    @classmethod
    def from_env(cls, **overrides: object) -> Settings:
        """Build settings from ``MACSETUP_*`` env vars plus explicit overrides."""
        values: dict[str, object] = {}

        home = os.environ.get("MACSETUP_HOME")
        if home:
            values["state_dir"] = Path(home).expanduser()

        for env_name, field in (
            ("MACSETUP_PROBE_TIMEOUT", "probe_timeout"),
            ("MACSETUP_INSTALL_TIMEOUT", "install_timeout"),
        ):
            raw = os.environ.get(env_name)
            if raw:
                try:
                    values[field] = int(raw)
                except ValueError:
                    logger.warning("Ignoring non-integer %s=%r", env_name, raw)

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(values)
