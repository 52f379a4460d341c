"""
Version constraints for package declarations (pure).

A package's ``version`` field is one of:

    any        installed at all
    latest     installed and not outdated
    1.2.3      exactly this version (Homebrew revision suffixes ignored)
    >=1.2      at least this version
    ~=1.2      same major, at least this minor

No I/O, no subprocess.
"""

from __future__ import annotations

import re

_REVISION_RE = re.compile(r"_\d+$")


def _parse_semver(v: str) -> tuple[int, ...]:
    v = _REVISION_RE.sub("", v.strip().lstrip("v"))
    return tuple(int(x) for x in v.split(".")[:3])


def split_constraint(version: str) -> tuple[str, str]:
    """``">=1.2"`` → ``("gte", "1.2")``; ``"any"`` → ``("any", "")``."""
    version = version.strip()
    if version in ("", "any", "*"):
        return "any", ""
    if version == "latest":
        return "latest", ""
    if version.startswith(">="):
        return "gte", version[2:].strip()
    if version.startswith("~="):
        return "semver_compat", version[2:].strip()
    if version.startswith("=="):
        return "exact", version[2:].strip()
    return "exact", version


def pinned_version(version: str) -> str | None:
    """The version to pass to the installer, or None for "whatever is current"."""
    ctype, ref = split_constraint(version)
    return ref if ctype == "exact" else None


def check_version_constraint(installed: str, version: str) -> dict:
    """Validate an installed version against a declared constraint.

    ``latest`` cannot be decided from the version string alone; callers
    ask the package manager whether the package is outdated.

    Returns:
        ``{"valid": True}`` or ``{"valid": False, "message": "..."}``
    """
    ctype, ref = split_constraint(version)
    if ctype in ("any", "latest"):
        return {"valid": True}

    try:
        sel_parts = _parse_semver(installed)
        ref_parts = _parse_semver(ref)
    except (ValueError, IndexError):
        if ctype == "exact" and _REVISION_RE.sub("", installed) == ref:
            return {"valid": True}
        return {"valid": False, "message": f"Cannot compare version {installed} with {version}"}

    if ctype == "gte":
        if sel_parts >= ref_parts:
            return {"valid": True}
        return {
            "valid": False,
            "message": f"Version {installed} < {ref}. Minimum required: {ref}.",
        }

    if ctype == "semver_compat":
        if sel_parts[0] != ref_parts[0]:
            return {
                "valid": False,
                "message": f"Major version mismatch: {installed} vs {ref}.",
            }
        if sel_parts[1:] >= ref_parts[1:]:
            return {"valid": True}
        return {
            "valid": False,
            "message": f"Version {installed} not compatible with ~={ref}.",
        }

    # exact: compare only as many components as were declared
    if sel_parts[: len(ref_parts)] == ref_parts:
        return {"valid": True}
    return {
        "valid": False,
        "message": f"Version {installed} != {ref}. Exact match required.",
    }

