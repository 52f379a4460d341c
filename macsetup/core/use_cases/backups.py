"""
Backups use case — list and prune restore points.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from macsetup.core.config.settings import Settings
from macsetup.core.models.backup import BackupEntry
from macsetup.core.persistence.backup_store import BackupStore


@dataclass
class BackupListResult:
    """Restore points grouped by resource id (newest first)."""

    entries: dict[str, list[BackupEntry]] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(len(v) for v in self.entries.values())

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "resources": {
                rid: [
                    {
                        "backup_id": e.backup_id,
                        "kind": e.kind.value,
                        "captured_at": e.captured_at,
                        "restorable": e.restorable,
                    }
                    for e in entries
                ]
                for rid, entries in self.entries.items()
            },
        }


@dataclass
class PruneResult:
    removed: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        result: dict = {"removed": self.removed}
        if self.error:
            result["error"] = self.error
        return result


def list_backups(settings: Settings, resource_id: str | None = None) -> BackupListResult:
    store = BackupStore(settings.backups_dir)
    ids = [resource_id] if resource_id else store.resource_ids()
    result = BackupListResult()
    for rid in ids:
        entries = store.entries(rid)
        if entries:
            result.entries[rid] = entries
    return result


def prune_backups(
    settings: Settings,
    resource_id: str | None = None,
    keep_last: int | None = None,
    older_than_days: int | None = None,
) -> PruneResult:
    """Delete restore points by count and/or age; at least one rule is required."""
    if keep_last is None and older_than_days is None:
        return PruneResult(error="Nothing to prune: give --keep and/or --older-than.")
    if (keep_last is not None and keep_last < 0) or (older_than_days is not None and older_than_days < 0):
        return PruneResult(error="--keep and --older-than must not be negative.")

    store = BackupStore(settings.backups_dir)
    return PruneResult(
        removed=store.prune(resource_id, keep_last=keep_last, older_than_days=older_than_days),
    )
