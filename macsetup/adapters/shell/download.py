"""
Download adapter — fetches network artifacts with curl.

Artifacts land in the cache directory and are never executed or
installed from here; the executor verifies them first.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from macsetup.adapters.base import Downloader
from macsetup.adapters.shell.command import run_command

logger = logging.getLogger(__name__)

_RETRIES = 3
_RETRY_DELAY = 5
_CONNECT_TIMEOUT = 10


class CurlDownloader(Downloader):
    """curl with retries, following redirects and failing on HTTP errors."""

    @property
    def name(self) -> str:
        return "curl"

    def is_available(self) -> bool:
        return shutil.which("curl") is not None

    def fetch(self, url: str, dest: Path, timeout: int) -> Path:
        dest.parent.mkdir(parents=True, exist_ok=True)
        partial = dest.with_name(dest.name + ".part")
        logger.info("Downloading %s", url)
        result = run_command(
            [
                "curl", "-fsSL",
                "--proto", "=https,http",
                "--retry", str(_RETRIES),
                "--retry-delay", str(_RETRY_DELAY),
                "--connect-timeout", str(_CONNECT_TIMEOUT),
                "--max-time", str(timeout),
                "-o", str(partial),
                url,
            ],
            timeout=timeout + _RETRIES * _RETRY_DELAY + 15,
        )
        try:
            result.check(f"download {url}")
        except Exception:
            partial.unlink(missing_ok=True)
            raise
        partial.replace(dest)
        return dest
