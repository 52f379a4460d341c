"""
BackupEntry — a pre-change snapshot of a mutable resource.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from macsetup.core.models.resource import ResourceKind


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class BackupEntry(BaseModel):
    """One captured prior state, owned by the BackupStore.

    ``payload`` carries everything needed to put the resource back
    (path + bytes, or domain/key/type/value) so that a restore does not
    need the profile that produced it. A fresh creation is recorded
    with ``restorable=False`` and no payload.
    """

    model_config = ConfigDict(frozen=True)

    backup_id: str
    resource_id: str
    kind: ResourceKind
    captured_at: str = Field(default_factory=_now_iso)
    payload: dict[str, Any] | None = None
    restorable: bool = True

    @property
    def captured_datetime(self) -> datetime:
        return datetime.fromisoformat(self.captured_at)
