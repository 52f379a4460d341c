"""
ActionOutcome and RunRecord — the result contract of a reconciliation run.

Exactly one ActionOutcome is produced per resource per run. Outcomes
are collected by a ``RunDraft`` while the run is in progress and frozen
into a ``RunRecord`` when the run is finalized. Neither model is
mutated after creation.
"""

from __future__ import annotations

import uuid
from collections import Counter
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from macsetup.core.errors import ErrorKind


def now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class OutcomeStatus(str, Enum):
    UNCHANGED = "unchanged"
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


class ActionOutcome(BaseModel):
    """The result of reconciling one resource."""

    model_config = ConfigDict(frozen=True)

    resource_id: str
    status: OutcomeStatus
    error: ErrorKind | None = None

    started_at: str = Field(default_factory=now_iso)
    finished_at: str = Field(default_factory=now_iso)
    duration_ms: int = 0

    message: str = ""
    output: str = ""                # captured collaborator output (truncated)
    annotations: tuple[str, ...] = ()
    backup_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is not OutcomeStatus.FAILED

    @property
    def failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED

    @classmethod
    def unchanged(cls, resource_id: str, **kwargs: Any) -> ActionOutcome:
        return cls(resource_id=resource_id, status=OutcomeStatus.UNCHANGED, **kwargs)

    @classmethod
    def applied(cls, resource_id: str, **kwargs: Any) -> ActionOutcome:
        return cls(resource_id=resource_id, status=OutcomeStatus.APPLIED, **kwargs)

    @classmethod
    def skipped(cls, resource_id: str, reason: str = "", **kwargs: Any) -> ActionOutcome:
        return cls(resource_id=resource_id, status=OutcomeStatus.SKIPPED, message=reason, **kwargs)

    @classmethod
    def failure(
        cls,
        resource_id: str,
        error: ErrorKind,
        message: str = "",
        **kwargs: Any,
    ) -> ActionOutcome:
        return cls(
            resource_id=resource_id,
            status=OutcomeStatus.FAILED,
            error=error,
            message=message,
            **kwargs,
        )


class RunRecord(BaseModel):
    """A finalized reconciliation run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    profile: str = ""
    started_at: str
    ended_at: str
    dry_run: bool = False
    outcomes: tuple[ActionOutcome, ...] = ()

    @property
    def counts(self) -> dict[str, int]:
        """Outcome counts keyed by status value (every status present)."""
        tally = Counter(o.status.value for o in self.outcomes)
        return {status.value: tally.get(status.value, 0) for status in OutcomeStatus}

    @property
    def failed(self) -> list[ActionOutcome]:
        return [o for o in self.outcomes if o.failed]

    @property
    def success(self) -> bool:
        return not self.failed

    @property
    def status(self) -> str:
        if self.success:
            return "ok"
        if len(self.failed) < len(self.outcomes):
            return "partial"
        return "failed"

    def outcome_for(self, resource_id: str) -> ActionOutcome | None:
        for outcome in self.outcomes:
            if outcome.resource_id == resource_id:
                return outcome
        return None

    def to_dict(self) -> dict:
        data = self.model_dump(mode="json")
        data["status"] = self.status
        data["success"] = self.success
        data["counts"] = self.counts
        return data


class RunDraft:
    """Mutable accumulator for a run in progress.

    Enforces one outcome per resource id; ``finalize()`` may be called
    once and returns the frozen RunRecord.
    """

    def __init__(self, profile: str = "", dry_run: bool = False, run_id: str | None = None):
        self.run_id = run_id or generate_run_id()
        self.profile = profile
        self.dry_run = dry_run
        self.started_at = now_iso()
        self._outcomes: list[ActionOutcome] = []
        self._seen: set[str] = set()
        self._record: RunRecord | None = None

    @property
    def outcomes(self) -> list[ActionOutcome]:
        return list(self._outcomes)

    @property
    def finalized(self) -> bool:
        return self._record is not None

    def add(self, outcome: ActionOutcome) -> None:
        if self._record is not None:
            raise RuntimeError(f"Run {self.run_id} is already finalized")
        if outcome.resource_id in self._seen:
            raise ValueError(
                f"Duplicate outcome for '{outcome.resource_id}' in run {self.run_id}"
            )
        self._seen.add(outcome.resource_id)
        self._outcomes.append(outcome)

    def finalize(self) -> RunRecord:
        if self._record is None:
            self._record = RunRecord(
                run_id=self.run_id,
                profile=self.profile,
                started_at=self.started_at,
                ended_at=now_iso(),
                dry_run=self.dry_run,
                outcomes=tuple(self._outcomes),
            )
        return self._record


def generate_run_id() -> str:
    """Generate a unique, time-sortable run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"
