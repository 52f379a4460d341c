"""Adapters — bindings to the external tools the engine drives.

Public re-exports for convenient access.
"""

from macsetup.adapters.base import CommandResult, Collaborator
from macsetup.adapters.registry import AdapterRegistry

__all__ = [
    "AdapterRegistry",
    "Collaborator",
    "CommandResult",
]
