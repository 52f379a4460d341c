"""
Preference handler — keys in the macOS ``defaults`` store.

A key that is not set is a valid observed state. Values compare by
type: booleans as booleans, numbers numerically, everything else as
strings. Only scalar values can be written back, so a prior
array, dictionary, data or date value is captured as not restorable.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any

from macsetup.core.engine.handlers.base import ApplyResult, ResourceHandler
from macsetup.core.models.observed import ObservedState
from macsetup.core.models.resource import (
    PREFERENCE_TYPES,
    PreferenceSpec,
    ResourceDeclaration,
    ResourceKind,
    coerce_preference,
)

if TYPE_CHECKING:
    from macsetup.core.engine.privilege import PrivilegeSession

logger = logging.getLogger(__name__)


def values_equal(current: Any, desired: Any, value_type: str) -> bool:
    try:
        current = coerce_preference(current, value_type)
    except (TypeError, ValueError):
        return False
    if value_type == "float":
        return math.isclose(current, desired)
    return current == desired


class PreferenceHandler(ResourceHandler):
    kind = ResourceKind.PREFERENCE_KEY

    def probe(self, decl: ResourceDeclaration) -> ObservedState:
        spec: PreferenceSpec = decl.desired_value  # type: ignore[assignment]
        found = self.registry.preferences.read(spec.domain, spec.key)
        if found is None:
            return ObservedState.absent(detail=f"{spec.domain} {spec.key} not set")
        current_type, current = found
        matches = values_equal(current, spec.typed_value, spec.value_type)
        return ObservedState.present(current, matches, detail=f"type {current_type}")

    def apply(
        self,
        decl: ResourceDeclaration,
        observed: ObservedState,
        sudo: PrivilegeSession | None = None,
    ) -> ApplyResult:
        spec: PreferenceSpec = decl.desired_value  # type: ignore[assignment]
        result = self.registry.preferences.write(
            spec.domain, spec.key, spec.typed_value, spec.value_type, sudo=self._sudo_for(decl, sudo),
        )
        return ApplyResult(output=result.output)

    def describe(self, decl: ResourceDeclaration, observed: ObservedState) -> str:
        spec: PreferenceSpec = decl.desired_value  # type: ignore[assignment]
        before = "unset" if not observed.exists else repr(observed.current_value)
        return f"defaults write {spec.domain} {spec.key} -{spec.value_type} {spec.typed_value!r} (was {before})"

    def snapshot(self, decl: ResourceDeclaration, observed: ObservedState) -> dict[str, Any] | None:
        spec: PreferenceSpec = decl.desired_value  # type: ignore[assignment]
        found = self.registry.preferences.read(spec.domain, spec.key)
        if found is None:
            return None
        value_type, value = found
        if value_type not in PREFERENCE_TYPES:
            logger.warning(
                "%s %s holds a %s value which cannot be written back; not restorable",
                spec.domain, spec.key, value_type,
            )
            return None
        return {
            "domain": spec.domain,
            "key": spec.key,
            "type": value_type,
            "value": value,
            "privileged": decl.requires_privilege,
        }

    def restore(self, payload: dict[str, Any], sudo: PrivilegeSession | None = None) -> ApplyResult:
        logger.info("Restoring %s %s", payload["domain"], payload["key"])
        result = self.registry.preferences.write(
            payload["domain"], payload["key"], payload["value"], payload["type"],
            sudo=sudo if payload.get("privileged") else None,
        )
        return ApplyResult(output=result.output)
