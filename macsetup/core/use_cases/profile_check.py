"""
Profile check use case — validate the profile file and report issues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from macsetup.core.config.loader import load_profiles
from macsetup.core.errors import InvalidDeclaration
from macsetup.core.models.profile import ProfileSet
from macsetup.core.models.resource import FileSpec, PackageSpec, ResourceDeclaration


@dataclass
class ProfileCheckResult:
    """Result of profile validation."""

    valid: bool = False
    profiles: ProfileSet | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "source": self.profiles.source if self.profiles else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "profiles": {
                name: {
                    "description": p.description,
                    "resources": len(p.resources),
                    "optional": len(p.optional),
                }
                for name, p in (self.profiles.profiles.items() if self.profiles else [])
            },
        }


def _digest_warnings(decl: ResourceDeclaration) -> list[str]:
    spec = decl.desired_value
    if isinstance(spec, PackageSpec) and spec.installer is not None:
        digest, algorithm = spec.installer.digest, spec.installer.algorithm
        source = spec.installer.url
    elif isinstance(spec, FileSpec) and spec.source_url is not None:
        digest, algorithm = spec.digest, spec.algorithm
        source = spec.source_url
    else:
        return []

    if not digest:
        return [f"{decl.id}: {source} has no digest and will be used unverified"]
    if digest.lower().startswith("md5:") or (":" not in digest and algorithm == "md5"):
        return [f"{decl.id}: md5 is a legacy digest, prefer sha256"]
    return []


def check_profiles(config_path: Path | None = None) -> ProfileCheckResult:
    """Load every profile and collect errors and warnings.

    Args:
        config_path: Optional explicit profile file.
    """
    result = ProfileCheckResult()
    try:
        result.profiles = load_profiles(config_path)
    except InvalidDeclaration as e:
        result.errors.append(str(e))
        return result

    for profile in result.profiles.profiles.values():
        declarations = profile.declarations(with_optional=True)
        if not declarations:
            result.warnings.append(f"Profile '{profile.name}' declares no resources")
        for decl in declarations:
            result.warnings.extend(_digest_warnings(decl))

    result.valid = True
    return result
