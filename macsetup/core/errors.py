"""
Error taxonomy — every failure the engine can report.

Handlers and adapters raise these exceptions. The probe and executor
boundaries catch them and convert them into ``ObservedState`` /
``ActionOutcome`` values, so a single resource's failure never crashes
a run. Only ``InvalidDeclaration`` (before the run) and
``EnvironmentUnsupported`` (before probing) abort a whole run.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Machine-readable failure category attached to outcomes."""

    DIGEST_MISMATCH = "DigestMismatch"
    PROBE_TIMEOUT = "ProbeTimeout"
    PERMISSION_DENIED = "PermissionDenied"
    POSTCONDITION_NOT_MET = "PostconditionNotMet"
    NO_BACKUP_FOUND = "NoBackupFound"
    INVALID_DECLARATION = "InvalidDeclaration"
    EXTERNAL_COMMAND_FAILED = "ExternalCommandFailed"


class ReconcileError(Exception):
    """Base class for all per-resource failures.

    Attributes:
        kind: The ErrorKind reported in outcomes.
        output: Captured collaborator output (stdout/stderr), if any.
    """

    kind: ErrorKind = ErrorKind.EXTERNAL_COMMAND_FAILED

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.message = message
        self.output = output


class DigestMismatch(ReconcileError):
    """A downloaded artifact does not match its declared digest."""

    kind = ErrorKind.DIGEST_MISMATCH

    def __init__(self, path: str, expected: str, actual: str, algorithm: str = "sha256"):
        super().__init__(
            f"{algorithm} mismatch for {path}\n"
            f"Expected: {expected}\n"
            f"Got:      {actual}"
        )
        self.path = path
        self.expected = expected
        self.actual = actual
        self.algorithm = algorithm


class ProbeTimeout(ReconcileError):
    """A collaborator call exceeded its bounded timeout."""

    kind = ErrorKind.PROBE_TIMEOUT


class PermissionDenied(ReconcileError):
    """Access to a resource or to elevated privileges was refused."""

    kind = ErrorKind.PERMISSION_DENIED


class PostconditionNotMet(ReconcileError):
    """The resource did not reach its desired state after applying."""

    kind = ErrorKind.POSTCONDITION_NOT_MET


class NoBackupFound(ReconcileError):
    """No restorable backup exists for a resource id."""

    kind = ErrorKind.NO_BACKUP_FOUND

    def __init__(self, resource_id: str):
        super().__init__(f"No backup found for '{resource_id}'")
        self.resource_id = resource_id


class InvalidDeclaration(ReconcileError):
    """A resource descriptor or profile is malformed."""

    kind = ErrorKind.INVALID_DECLARATION


class ConfigError(InvalidDeclaration):
    """The profile file is missing, unreadable or not valid YAML."""


class ExternalCommandFailed(ReconcileError):
    """A collaborator command exited non-zero."""

    kind = ErrorKind.EXTERNAL_COMMAND_FAILED

    def __init__(self, message: str, output: str = "", return_code: int | None = None):
        super().__init__(message, output)
        self.return_code = return_code


class EnvironmentUnsupported(Exception):
    """The host cannot run provisioning at all (wrong OS, no package manager)."""
