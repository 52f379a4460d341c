"""
Domain models — Pydantic types for the provisioning engine.

All models are re-exported here for convenient access:

    from macsetup.core.models import ResourceDeclaration, ActionOutcome, RunRecord
"""

from macsetup.core.models.backup import BackupEntry
from macsetup.core.models.observed import ObservedState
from macsetup.core.models.outcome import (
    ActionOutcome,
    OutcomeStatus,
    RunDraft,
    RunRecord,
    generate_run_id,
)
from macsetup.core.models.profile import Profile, ProfileSet
from macsetup.core.models.resource import (
    FileSpec,
    GitCloneSpec,
    InstallerSpec,
    JobSpec,
    PackageSpec,
    PamSpec,
    PreferenceSpec,
    ResourceDeclaration,
    ResourceKind,
    SecretRef,
)

__all__ = [
    # outcome.py
    "ActionOutcome",
    # backup.py
    "BackupEntry",
    # resource.py
    "FileSpec",
    "GitCloneSpec",
    "InstallerSpec",
    "JobSpec",
    # observed.py
    "ObservedState",
    "OutcomeStatus",
    "PackageSpec",
    "PamSpec",
    "PreferenceSpec",
    # profile.py
    "Profile",
    "ProfileSet",
    "ResourceDeclaration",
    "ResourceKind",
    "RunDraft",
    "RunRecord",
    "SecretRef",
    "generate_run_id",
]
