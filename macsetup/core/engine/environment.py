"""
Environment check — refuse to provision a host that cannot be provisioned.
"""

from __future__ import annotations

import logging
import platform

from macsetup.adapters.registry import AdapterRegistry
from macsetup.core.errors import EnvironmentUnsupported

logger = logging.getLogger(__name__)

SUPPORTED_SYSTEM = "Darwin"


def check_environment(registry: AdapterRegistry, system: str | None = None) -> None:
    """Abort unless this is macOS with the package manager installed.

    Skipped for mock registries.

    Raises:
        EnvironmentUnsupported: Wrong platform or no package manager.
    """
    if registry.mock_mode:
        logger.debug("Mock mode: skipping environment check")
        return

    system = system or platform.system()
    if system != SUPPORTED_SYSTEM:
        raise EnvironmentUnsupported(f"Unsupported platform '{system}': macsetup only runs on macOS")

    packages = registry.packages
    if not packages.is_available():
        raise EnvironmentUnsupported(
            f"Package manager '{packages.name}' not found. Install Homebrew first: https://brew.sh"
        )
    logger.debug("Environment OK (%s, %s)", system, packages.name)
