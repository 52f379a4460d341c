"""
ObservedState — what a probe found, created fresh on every probe.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict

from macsetup.core.errors import ErrorKind


class ObservedState(BaseModel):
    """Result of probing a resource.

    ``exists`` is tri-state: ``None`` means the probe could not
    determine the state (timeout, permission denied). An unknown state
    never matches the desired state.
    """

    model_config = ConfigDict(frozen=True)

    exists: bool | None
    current_value: Any = None
    matches_desired: bool = False
    error: ErrorKind | None = None
    detail: str = ""

    @property
    def unknown(self) -> bool:
        return self.exists is None

    @classmethod
    def present(cls, current_value: Any, matches: bool, detail: str = "") -> ObservedState:
        return cls(exists=True, current_value=current_value, matches_desired=matches, detail=detail)

    @classmethod
    def absent(cls, detail: str = "") -> ObservedState:
        return cls(exists=False, matches_desired=False, detail=detail)

    @classmethod
    def undetermined(cls, error: ErrorKind, detail: str = "") -> ObservedState:
        return cls(exists=None, matches_desired=False, error=error, detail=detail)
