"""
Profile loader — reads macsetup.yml into validated profiles.

The file maps profile names to ordered resource lists:

    profiles:
      developer:
        description: Core CLI tooling
        resources:
          - id: brew:jq
            kind: package
            desired_value: any
        optional:
          - id: brew:orbstack
            kind: package
            desired_value: {name: orbstack, cask: true}

When no file is found, the bundled ``default_profiles.yml`` is used.
"""

from __future__ import annotations

import logging
from importlib import resources
from pathlib import Path

import yaml
from pydantic import ValidationError

from macsetup.core.errors import ConfigError, InvalidDeclaration
from macsetup.core.models.profile import Profile, ProfileSet
from macsetup.core.models.resource import ResourceDeclaration

logger = logging.getLogger(__name__)

# Default config filename
PROFILE_CONFIG_FILE = "macsetup.yml"
BUNDLED_PROFILES = "default_profiles.yml"


def find_profile_file(start_dir: Path | None = None) -> Path | None:
    """Search for macsetup.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to macsetup.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / PROFILE_CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def bundled_profiles_text() -> str:
    return resources.files("macsetup.data").joinpath(BUNDLED_PROFILES).read_text(encoding="utf-8")


def load_profiles(path: Path | None = None) -> ProfileSet:
    """Load and validate every profile in a configuration file.

    Args:
        path: Explicit path. If None, searches upward for macsetup.yml
            and falls back to the bundled profiles.

    Returns:
        Validated ProfileSet.

    Raises:
        ConfigError: If the file is missing, unreadable or not YAML.
        InvalidDeclaration: If a profile or resource is malformed.
    """
    if path is None:
        path = find_profile_file()

    if path is None:
        logger.debug("No %s found, using bundled profiles", PROFILE_CONFIG_FILE)
        raw = bundled_profiles_text()
        source = f"<bundled>/{BUNDLED_PROFILES}"
    else:
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e
        source = str(path)

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {source}: {e}") from e

    profiles = parse_profiles(data, source)
    logger.info("Loaded %d profiles from %s", len(profiles.profiles), source)
    return profiles


def parse_profiles(data: object, source: str = "") -> ProfileSet:
    """Validate already-parsed YAML data into a ProfileSet."""
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {source}, got {type(data).__name__}")

    raw_profiles = data.get("profiles")
    if not isinstance(raw_profiles, dict) or not raw_profiles:
        raise ConfigError(f"No 'profiles' mapping found in {source}")

    profiles: dict[str, Profile] = {}
    for name, body in raw_profiles.items():
        body = body or {}
        if not isinstance(body, dict):
            raise InvalidDeclaration(f"Profile '{name}' must be a mapping")
        try:
            profiles[str(name)] = Profile(
                name=str(name),
                description=str(body.get("description", "")),
                resources=_parse_resources(name, body.get("resources")),
                optional=_parse_resources(name, body.get("optional")),
            )
        except ValidationError as e:
            raise InvalidDeclaration(f"Invalid profile '{name}': {e}") from e
    return ProfileSet(source=source, profiles=profiles)


def _parse_resources(profile: str, items: object) -> list[ResourceDeclaration]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise InvalidDeclaration(f"Profile '{profile}': resources must be a list")
    out = []
    for item in items:
        if not isinstance(item, dict):
            raise InvalidDeclaration(f"Profile '{profile}': each resource must be a mapping")
        out.append(ResourceDeclaration.parse(item))
    return out
