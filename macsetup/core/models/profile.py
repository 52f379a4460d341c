"""
Profile — a named, ordered list of resource declarations.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from macsetup.core.models.resource import ResourceDeclaration


class Profile(BaseModel):
    """A named setup goal (e.g. ``developer``).

    ``resources`` are always reconciled; ``optional`` ones only when the
    caller asks for them. Order is declaration order — there is no
    implicit dependency resolution.
    """

    name: str
    description: str = ""
    resources: list[ResourceDeclaration] = Field(default_factory=list)
    optional: list[ResourceDeclaration] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_ids(self) -> Profile:
        seen: set[str] = set()
        for decl in [*self.resources, *self.optional]:
            if decl.id in seen:
                raise ValueError(f"Duplicate resource id '{decl.id}' in profile '{self.name}'")
            seen.add(decl.id)
        return self

    def declarations(self, with_optional: bool = False) -> list[ResourceDeclaration]:
        """Resources to reconcile, in declaration order."""
        if with_optional:
            return [*self.resources, *self.optional]
        return list(self.resources)


class ProfileSet(BaseModel):
    """All profiles loaded from one configuration file."""

    source: str = ""
    profiles: dict[str, Profile] = Field(default_factory=dict)

    def get(self, name: str) -> Profile | None:
        return self.profiles.get(name)

    def names(self) -> list[str]:
        return list(self.profiles.keys())

    def all_declarations(self, with_optional: bool = False) -> list[ResourceDeclaration]:
        """Every declared resource across profiles, de-duplicated by id."""
        out: list[ResourceDeclaration] = []
        seen: set[str] = set()
        for profile in self.profiles.values():
            for decl in profile.declarations(with_optional):
                if decl.id not in seen:
                    seen.add(decl.id)
                    out.append(decl)
        return out
