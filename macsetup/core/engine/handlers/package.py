"""
Package handler — Homebrew formulae/casks and script-installed tools.

Packages are not backed up: the package manager owns their history.

An exact pin installs the versioned formula (``node: "18"`` installs
``node@18``), so probing and verification query that formula too.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from macsetup.core.engine.handlers.base import ApplyResult, ResourceHandler
from macsetup.core.engine.version_constraint import (
    check_version_constraint,
    pinned_version,
    split_constraint,
)
from macsetup.core.models.observed import ObservedState
from macsetup.core.models.resource import PackageSpec, ResourceDeclaration, ResourceKind

if TYPE_CHECKING:
    from macsetup.core.engine.privilege import PrivilegeSession

logger = logging.getLogger(__name__)


def formula_name(spec: PackageSpec) -> str:
    """Name the package manager knows the installed package by."""
    pinned = pinned_version(spec.version)
    return f"{spec.name}@{pinned}" if pinned else spec.name


class PackageHandler(ResourceHandler):
    kind = ResourceKind.PACKAGE

    def probe(self, decl: ResourceDeclaration) -> ObservedState:
        spec: PackageSpec = decl.desired_value  # type: ignore[assignment]

        if spec.installer is not None:
            if self.registry.files.exists(spec.installer.creates):
                return ObservedState.present("installed", True, detail=spec.installer.creates)
            return ObservedState.absent(detail=f"{spec.installer.creates} not found")

        packages = self.registry.packages
        formula = formula_name(spec)
        installed = packages.query(formula, cask=spec.cask)
        if installed is None:
            return ObservedState.absent(detail=f"{formula} not installed")

        ctype, _ = split_constraint(spec.version)
        if ctype == "latest":
            outdated = packages.outdated(spec.name, cask=spec.cask)
            return ObservedState.present(
                installed, not outdated, detail="outdated" if outdated else "up to date",
            )

        check = check_version_constraint(installed, spec.version)
        return ObservedState.present(installed, check["valid"], detail=check.get("message", ""))

    def apply(
        self,
        decl: ResourceDeclaration,
        observed: ObservedState,
        sudo: PrivilegeSession | None = None,
    ) -> ApplyResult:
        spec: PackageSpec = decl.desired_value  # type: ignore[assignment]

        if spec.installer is not None:
            installer = spec.installer
            script, annotations = self._fetch_verified(installer.url, installer.digest, installer.algorithm)
            logger.info("Running installer for %s", spec.name)
            result = self.registry.shell.run_script(
                script, installer.args, env=installer.env, timeout=self.settings.install_timeout,
            ).check(f"{spec.name} installer")
            return ApplyResult(output=result.output, annotations=annotations)

        packages = self.registry.packages
        pinned = pinned_version(spec.version)
        if observed.exists and pinned is None:
            result = packages.upgrade(spec.name, cask=spec.cask)
        else:
            result = packages.install(spec.name, version=pinned, cask=spec.cask)
        return ApplyResult(output=result.output)

    def describe(self, decl: ResourceDeclaration, observed: ObservedState) -> str:
        spec: PackageSpec = decl.desired_value  # type: ignore[assignment]
        if spec.installer is not None:
            return f"download and run installer {spec.installer.url}"
        cask = " --cask" if spec.cask else ""
        pinned = pinned_version(spec.version)
        if observed.exists and pinned is None:
            return f"brew upgrade{cask} {spec.name} (installed {observed.current_value})"
        return f"brew install{cask} {formula_name(spec)}"

