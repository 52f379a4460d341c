"""
Run log — persisted RunRecords plus an append-only index.

    <state_dir>/runs/<run_id>.json    full record (atomic write)
    <state_dir>/runs/index.ndjson     one summary line per run

The index is append-only: entries are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from macsetup.core.models.outcome import RunRecord
from macsetup.core.persistence.backup_store import write_json_atomic

logger = logging.getLogger(__name__)

INDEX_FILE = "index.ndjson"


class RunIndexEntry(BaseModel):
    """A single index line."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    profile: str = ""
    status: str = ""               # ok, partial, failed
    dry_run: bool = False
    started_at: str = ""
    ended_at: str = ""
    counts: dict[str, int] = Field(default_factory=dict)
    failed: list[str] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: RunRecord) -> RunIndexEntry:
        return cls(
            run_id=record.run_id,
            profile=record.profile,
            status=record.status,
            dry_run=record.dry_run,
            started_at=record.started_at,
            ended_at=record.ended_at,
            counts=record.counts,
            failed=[o.resource_id for o in record.failed],
        )


class RunLog:
    """Reads and writes run records under one directory."""

    def __init__(self, runs_dir: Path):
        self._dir = runs_dir

    @property
    def directory(self) -> Path:
        return self._dir

    @property
    def index_path(self) -> Path:
        return self._dir / INDEX_FILE

    def record_path(self, run_id: str) -> Path:
        return self._dir / f"{run_id}.json"

    def save(self, record: RunRecord) -> Path:
        """Write the full record atomically and append its index line."""
        path = self.record_path(record.run_id)
        write_json_atomic(path, record.to_dict())

        line = json.dumps(RunIndexEntry.from_record(record).model_dump(mode="json"), ensure_ascii=False) + "\n"
        with self.index_path.open("a", encoding="utf-8") as f:
            f.write(line)
        logger.debug("Run %s persisted to %s", record.run_id, path)
        return path

    def load(self, run_id: str) -> RunRecord | None:
        path = self.record_path(run_id)
        if not path.is_file():
            return None
        try:
            return RunRecord.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning("Cannot load run %s: %s", run_id, e)
            return None

    def read_all(self) -> list[RunIndexEntry]:
        """Every index entry, oldest first."""
        if not self.index_path.is_file():
            return []

        entries = []
        with self.index_path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(RunIndexEntry.model_validate_json(line))
                except ValidationError as e:
                    logger.warning("Skipping corrupt index entry at line %d: %s", line_num, e)
        return entries

    def read_recent(self, n: int = 20) -> list[RunIndexEntry]:
        """The most recent N entries, newest first."""
        return list(reversed(self.read_all()[-n:])) if n > 0 else []

    def last(self) -> RunRecord | None:
        for entry in reversed(self.read_all()):
            record = self.load(entry.run_id)
            if record is not None:
                return record
        return None
