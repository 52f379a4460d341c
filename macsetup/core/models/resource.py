"""
Resource declarations — the immutable description of desired state.

A declaration is a tagged union: ``kind`` selects which payload model
``desired_value`` is parsed into. Parsing happens once, when the
profile is loaded; a malformed descriptor raises ``InvalidDeclaration``
before any resource is probed.
"""

from __future__ import annotations

import os
import re
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from macsetup.core.errors import InvalidDeclaration

_PACKAGE_NAME_RE = re.compile(r"^[a-zA-Z0-9@/_.+-]+$")
_REPO_URL_RE = re.compile(r"^(https?://|ssh://|git@)[^\s]+$")
_LABEL_RE = re.compile(r"^[a-zA-Z0-9_.-]+$")
_ID_RE = re.compile(r"^\S+$")

DIGEST_ALGORITHMS = ("sha256", "sha512", "md5")

# `defaults` value types that can be written back with a type flag
PREFERENCE_TYPES = ("bool", "int", "float", "string")

# launchd StartCalendarInterval keys, accepted case-insensitively
_CALENDAR_KEYS = {"minute": "Minute", "hour": "Hour", "day": "Day", "weekday": "Weekday", "month": "Month"}

DEFAULT_PAM_HEADER = "# sudo_local: local config file for sudo which survives macOS updates"


class ResourceKind(str, Enum):
    """Kinds of resource the engine knows how to reconcile."""

    PACKAGE = "package"
    PREFERENCE_KEY = "preference_key"
    FILE = "file"
    SCHEDULED_JOB = "scheduled_job"
    PAM_MODULE = "pam_module"
    GIT_CLONE = "git_clone"

    @property
    def restorable(self) -> bool:
        """Whether prior state is captured before mutating this kind."""
        return self in RESTORABLE_KINDS

    @classmethod
    def parse(cls, raw: Any) -> ResourceKind:
        """Accept ``package``, ``Package``, ``PreferenceKey``, ``preference-key``…"""
        if isinstance(raw, ResourceKind):
            return raw
        token = re.sub(r"[-_\s]", "", str(raw)).lower()
        for kind in cls:
            if kind.value.replace("_", "") == token:
                return kind
        valid = ", ".join(k.value for k in cls)
        raise ValueError(f"Unknown resource kind '{raw}'. Valid: {valid}")


RESTORABLE_KINDS = frozenset({
    ResourceKind.PREFERENCE_KEY,
    ResourceKind.FILE,
    ResourceKind.SCHEDULED_JOB,
    ResourceKind.PAM_MODULE,
})

# Kinds whose collaborators can run elevated (sudo defaults, sudo cp)
PRIVILEGED_KINDS = frozenset({
    ResourceKind.PREFERENCE_KEY,
    ResourceKind.FILE,
    ResourceKind.PAM_MODULE,
})


def _expand(path: str) -> str:
    return os.path.expandvars(os.path.expanduser(path))


def _reject_traversal(path: str) -> str:
    if ".." in path.replace("\\", "/").split("/"):
        raise ValueError(f"Invalid path '{path}': directory traversal detected")
    return path


def _check_algorithm(algorithm: str) -> str:
    algorithm = algorithm.lower()
    if algorithm not in DIGEST_ALGORITHMS:
        raise ValueError(
            f"Unknown checksum algorithm '{algorithm}'. Valid: {', '.join(DIGEST_ALGORITHMS)}"
        )
    return algorithm


def _check_https(url: str) -> str:
    if not url.startswith(("https://", "http://")):
        raise ValueError(f"Invalid URL '{url}': must start with http:// or https://")
    return url


# ── Kind payloads ───────────────────────────────────────────────────


class _Spec(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class InstallerSpec(_Spec):
    """A script-based installer (Homebrew itself, Oh My Zsh)."""

    url: str
    creates: str                    # path whose existence means "installed"
    digest: str | None = None
    algorithm: str = "sha256"
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)

    @field_validator("url")
    @classmethod
    def _valid_url(cls, v: str) -> str:
        return _check_https(v)

    @field_validator("algorithm")
    @classmethod
    def _valid_algorithm(cls, v: str) -> str:
        return _check_algorithm(v)

    @field_validator("creates")
    @classmethod
    def _expand_creates(cls, v: str) -> str:
        return _expand(_reject_traversal(v))


class PackageSpec(_Spec):
    """A package-manager package (formula or cask)."""

    name: str
    version: str = "any"            # any | latest | 1.2.3 | >=1.2
    cask: bool = False
    installer: InstallerSpec | None = None

    @field_validator("name")
    @classmethod
    def _valid_name(cls, v: str) -> str:
        if not _PACKAGE_NAME_RE.match(v):
            raise ValueError(f"Invalid package name: {v}")
        return v


class PreferenceSpec(_Spec):
    """A key in the OS preference store (``defaults``)."""

    domain: str
    key: str
    value: bool | int | float | str
    type: Literal["bool", "int", "float", "string"] | None = None

    @property
    def value_type(self) -> str:
        if self.type:
            return self.type
        if isinstance(self.value, bool):
            return "bool"
        if isinstance(self.value, int):
            return "int"
        if isinstance(self.value, float):
            return "float"
        return "string"

    @property
    def typed_value(self) -> bool | int | float | str:
        """The desired value coerced to its declared type."""
        return coerce_preference(self.value, self.value_type)


def coerce_preference(value: Any, value_type: str) -> bool | int | float | str:
    """Coerce a raw preference value (as printed by ``defaults``) to a type."""
    if value_type == "bool":
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if value_type == "int":
        return int(value)
    if value_type == "float":
        return float(value)
    return str(value)


class SecretRef(_Spec):
    """A field of a credential-vault item."""

    item: str
    field: str = "password"
    vault: str | None = None


class FileSpec(_Spec):
    """A file whose content is inline, downloaded, fetched from the vault,
    or a block of ``lines`` that must be present among other content.

    ``lines`` never replaces the file: when any of them is missing the
    whole block is appended and everything already there is kept.
    """

    path: str
    content: str | None = None
    source_url: str | None = None
    secret: SecretRef | None = None
    lines: list[str] | None = None
    digest: str | None = None
    algorithm: str = "sha256"
    mode: int | None = None

    @field_validator("algorithm")
    @classmethod
    def _valid_algorithm(cls, v: str) -> str:
        return _check_algorithm(v)

    @field_validator("path")
    @classmethod
    def _expand_path(cls, v: str) -> str:
        return _expand(_reject_traversal(v))

    @field_validator("source_url")
    @classmethod
    def _valid_url(cls, v: str | None) -> str | None:
        return _check_https(v) if v is not None else v

    @field_validator("lines")
    @classmethod
    def _non_blank_lines(cls, v: list[str] | None) -> list[str] | None:
        if v is not None and not any(line.strip() for line in v):
            raise ValueError("lines must contain at least one non-blank line")
        return v

    @model_validator(mode="after")
    def _one_source(self) -> FileSpec:
        sources = [s for s in (self.content, self.source_url, self.secret, self.lines) if s is not None]
        if len(sources) != 1:
            raise ValueError("exactly one of 'content', 'source_url', 'secret' or 'lines' is required")
        if self.lines is not None and self.digest:
            raise ValueError("'digest' cannot be combined with 'lines'")
        return self


class JobSpec(_Spec):
    """A periodic job registered with the job scheduler (launchd)."""

    label: str
    program_arguments: list[str]
    calendar: dict[str, int] | None = None
    interval: int | None = None
    run_at_load: bool = False
    stdout_path: str | None = None
    stderr_path: str | None = None

    @field_validator("label")
    @classmethod
    def _valid_label(cls, v: str) -> str:
        if not _LABEL_RE.match(v):
            raise ValueError(f"Invalid job label: {v}")
        return v

    @field_validator("program_arguments")
    @classmethod
    def _non_empty(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("program_arguments must not be empty")
        return [_expand(arg) for arg in v]

    @field_validator("calendar")
    @classmethod
    def _calendar_keys(cls, v: dict[str, int] | None) -> dict[str, int] | None:
        if v is None:
            return v
        out: dict[str, int] = {}
        for key, value in v.items():
            launchd_key = _CALENDAR_KEYS.get(key.lower())
            if launchd_key is None:
                raise ValueError(f"Unknown calendar field '{key}'")
            out[launchd_key] = int(value)
        return out

    @field_validator("stdout_path", "stderr_path")
    @classmethod
    def _expand_log(cls, v: str | None) -> str | None:
        return _expand(v) if v else v

    @model_validator(mode="after")
    def _one_schedule(self) -> JobSpec:
        if (self.calendar is None) == (self.interval is None):
            raise ValueError("exactly one of 'calendar' or 'interval' is required")
        return self


class PamSpec(_Spec):
    """A line that must be present in a PAM configuration file."""

    line: str
    path: str = "/etc/pam.d/sudo_local"
    header: str = DEFAULT_PAM_HEADER

    @field_validator("path")
    @classmethod
    def _valid_path(cls, v: str) -> str:
        return _reject_traversal(v)

    @property
    def normalized_line(self) -> str:
        return normalize_pam_line(self.line)


def normalize_pam_line(line: str) -> str:
    return " ".join(line.split())


class GitCloneSpec(_Spec):
    """A repository cloned to ``dest`` and checked out at a pinned ref."""

    url: str
    ref: str
    dest: str

    @field_validator("url")
    @classmethod
    def _valid_url(cls, v: str) -> str:
        if not _REPO_URL_RE.match(v):
            raise ValueError(f"Invalid repository URL: {v}")
        return v

    @field_validator("dest")
    @classmethod
    def _expand_dest(cls, v: str) -> str:
        return _expand(_reject_traversal(v))


PAYLOAD_TYPES: dict[ResourceKind, type[_Spec]] = {
    ResourceKind.PACKAGE: PackageSpec,
    ResourceKind.PREFERENCE_KEY: PreferenceSpec,
    ResourceKind.FILE: FileSpec,
    ResourceKind.SCHEDULED_JOB: JobSpec,
    ResourceKind.PAM_MODULE: PamSpec,
    ResourceKind.GIT_CLONE: GitCloneSpec,
}

DesiredValue = PackageSpec | PreferenceSpec | FileSpec | JobSpec | PamSpec | GitCloneSpec


def _id_suffix(resource_id: str) -> str:
    return resource_id.split(":", 1)[1] if ":" in resource_id else resource_id


def _shorthand_payload(kind: ResourceKind, resource_id: str, raw: Any) -> Any:
    """Expand scalar ``desired_value`` shorthands using the resource id.

    ``brew:jq`` + ``"any"`` → ``{name: jq, version: any}``
    ``pref:com.apple.finder.AppleShowAllFiles`` + ``true`` →
    ``{domain: com.apple.finder, key: AppleShowAllFiles, value: true}``
    """
    if isinstance(raw, dict) or raw is None:
        return raw
    if kind is ResourceKind.PACKAGE and isinstance(raw, str):
        return {"name": _id_suffix(resource_id), "version": raw}
    if kind is ResourceKind.PREFERENCE_KEY:
        domain, _, key = _id_suffix(resource_id).rpartition(".")
        return {"domain": domain, "key": key, "value": raw}
    if kind is ResourceKind.PAM_MODULE and isinstance(raw, str):
        return {"line": raw}
    return raw


# ── Declaration ─────────────────────────────────────────────────────


class ResourceDeclaration(BaseModel):
    """Immutable descriptor of one resource's desired state."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: ResourceKind
    desired_value: DesiredValue
    requires_privilege: bool = False
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _parse_tagged(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "kind" not in data:
            raise ValueError("missing required field 'kind'")
        kind = ResourceKind.parse(data["kind"])
        data["kind"] = kind
        payload_type = PAYLOAD_TYPES[kind]
        raw = data.get("desired_value")
        if not isinstance(raw, payload_type):
            raw = _shorthand_payload(kind, str(data.get("id", "")), raw)
            data["desired_value"] = payload_type.model_validate(raw)
        return data

    @field_validator("id")
    @classmethod
    def _valid_id(cls, v: str) -> str:
        if not v or not _ID_RE.match(v):
            raise ValueError(f"Invalid resource id '{v}': must be non-empty without whitespace")
        return v

    @model_validator(mode="after")
    def _privilege_supported(self) -> ResourceDeclaration:
        if self.requires_privilege and self.kind not in PRIVILEGED_KINDS:
            allowed = ", ".join(sorted(k.value for k in PRIVILEGED_KINDS))
            raise ValueError(
                f"{self.kind.value} resources cannot require privilege (allowed: {allowed})"
            )
        return self

    @property
    def restorable(self) -> bool:
        return self.kind.restorable

    @classmethod
    def parse(cls, data: dict[str, Any]) -> ResourceDeclaration:
        """Validate raw profile data, raising ``InvalidDeclaration`` on error."""
        try:
            return cls.model_validate(data)
        except (ValidationError, ValueError) as e:
            rid = data.get("id", "?") if isinstance(data, dict) else "?"
            raise InvalidDeclaration(f"Invalid resource '{rid}': {e}") from e
