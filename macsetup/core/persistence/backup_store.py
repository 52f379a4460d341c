"""
Backup store — pre-change snapshots of mutable resources.

Layout::

    <state_dir>/backups/<safe-resource-id>/<captured_at>-<short uuid>.json

Each entry is one JSON document, written atomically (temp file, fsync,
rename, directory fsync) before ``capture`` returns, so a crash after
capture never leaves a half-written restore point. Entries are kept
until explicitly pruned or consumed by a rollback.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import tempfile
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from macsetup.core.errors import NoBackupFound
from macsetup.core.models.backup import BackupEntry
from macsetup.core.models.resource import ResourceKind

logger = logging.getLogger(__name__)

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]")


def safe_dirname(resource_id: str) -> str:
    """Filesystem-safe directory name, unique per resource id."""
    slug = _UNSAFE_RE.sub("_", resource_id)[:80]
    suffix = hashlib.sha1(resource_id.encode("utf-8")).hexdigest()[:8]
    return f"{slug}-{suffix}"


def _fsync_dir(path: Path) -> None:
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Write JSON via temp file + fsync + rename (+ directory fsync)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=".json")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        tmp.replace(path)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise
    _fsync_dir(path.parent)


class BackupStore:
    """Filesystem-backed store of BackupEntry documents.

    Args:
        root: Directory holding one subdirectory per resource.
        keep_last: Retention applied after each capture; None keeps all.
    """

    def __init__(self, root: Path, keep_last: int | None = None):
        self._root = root
        self._keep_last = keep_last

    @property
    def root(self) -> Path:
        return self._root

    def _dir(self, resource_id: str) -> Path:
        return self._root / safe_dirname(resource_id)

    def _path(self, entry: BackupEntry) -> Path:
        return self._dir(entry.resource_id) / f"{entry.backup_id}.json"

    # ── Write ───────────────────────────────────────────────────

    def capture(
        self,
        resource_id: str,
        payload: dict[str, Any] | None,
        kind: ResourceKind,
        restorable: bool = True,
    ) -> BackupEntry:
        """Persist a snapshot and return its entry.

        A ``None`` payload is always stored as a non-restorable marker
        (the resource did not exist before the change).
        """
        now = datetime.now(UTC)
        backup_id = f"{now.strftime('%Y%m%dT%H%M%S%fZ')}-{uuid.uuid4().hex[:8]}"
        entry = BackupEntry(
            backup_id=backup_id,
            resource_id=resource_id,
            kind=kind,
            captured_at=now.isoformat(),
            payload=payload,
            restorable=restorable and payload is not None,
        )

        self._root.mkdir(parents=True, exist_ok=True, mode=0o700)
        write_json_atomic(self._path(entry), entry.model_dump(mode="json"))
        logger.debug(
            "Captured backup %s for %s (restorable=%s)", backup_id, resource_id, entry.restorable,
        )

        if self._keep_last is not None:
            self.prune(resource_id, keep_last=self._keep_last)
        return entry

    def discard(self, entry: BackupEntry) -> None:
        path = self._path(entry)
        path.unlink(missing_ok=True)
        logger.debug("Discarded backup %s for %s", entry.backup_id, entry.resource_id)
        self._remove_if_empty(path.parent)

    def prune(
        self,
        resource_id: str | None = None,
        keep_last: int | None = None,
        older_than_days: int | None = None,
    ) -> int:
        """Delete old entries. Nothing is deleted unless a rule is given.

        Args:
            resource_id: Restrict to one resource (default: all).
            keep_last: Keep this many newest entries per resource.
            older_than_days: Delete entries captured before this age.

        Returns:
            Number of entries deleted.
        """
        if keep_last is None and older_than_days is None:
            return 0

        cutoff = None
        if older_than_days is not None:
            cutoff = datetime.now(UTC) - timedelta(days=older_than_days)

        ids = [resource_id] if resource_id is not None else self.resource_ids()
        removed = 0
        for rid in ids:
            for index, entry in enumerate(self.entries(rid)):
                expired = cutoff is not None and entry.captured_datetime < cutoff
                surplus = keep_last is not None and index >= keep_last
                if expired or surplus:
                    self._path(entry).unlink(missing_ok=True)
                    removed += 1
            self._remove_if_empty(self._dir(rid))

        if removed:
            logger.info("Pruned %d backup entr%s", removed, "y" if removed == 1 else "ies")
        return removed

    # ── Read ────────────────────────────────────────────────────

    def entries(self, resource_id: str) -> list[BackupEntry]:
        """All entries for a resource, most recent first."""
        directory = self._dir(resource_id)
        if not directory.is_dir():
            return []
        found = [entry for entry in self._load_dir(directory) if entry.resource_id == resource_id]
        found.sort(key=lambda e: (e.captured_at, e.backup_id), reverse=True)
        return found

    def restore_latest(self, resource_id: str) -> BackupEntry:
        """The newest restorable entry.

        Raises:
            NoBackupFound: No restorable entry exists.
        """
        for entry in self.entries(resource_id):
            if entry.restorable and entry.payload is not None:
                return entry
        raise NoBackupFound(resource_id)

    def resource_ids(self) -> list[str]:
        if not self._root.is_dir():
            return []
        ids: set[str] = set()
        for directory in sorted(self._root.iterdir()):
            if directory.is_dir():
                ids.update(entry.resource_id for entry in self._load_dir(directory))
        return sorted(ids)

    def _load_dir(self, directory: Path) -> list[BackupEntry]:
        out = []
        for path in sorted(directory.glob("*.json")):
            if path.name.startswith(".tmp_"):
                continue
            try:
                out.append(BackupEntry.model_validate_json(path.read_text(encoding="utf-8")))
            except (OSError, ValidationError) as e:
                logger.warning("Skipping unreadable backup %s: %s", path, e)
        return out

    @staticmethod
    def _remove_if_empty(directory: Path) -> None:
        try:
            directory.rmdir()
        except OSError:
            pass
