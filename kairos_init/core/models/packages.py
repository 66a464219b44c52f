"""
Package matrix model — per-axis package tables.

A matrix has two independent keyspaces, ``distros`` and ``families``,
each mapping a key to ``{architecture or "common": VersionMap}``.  A
VersionMap maps a constraint expression to package-name templates;
both levels keep declaration order.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from kairos_init.core.models.system import COMMON, SystemDescriptor

VersionMap = dict[str, tuple[str, ...]]
ArchTable = dict[str, VersionMap]

Axis = Literal["distro", "family"]


class PackageMatrix(BaseModel):
    """A named table of package templates keyed by distro/family × arch."""

    model_config = ConfigDict(frozen=True)

    name: str
    distros: dict[str, ArchTable] = Field(default_factory=dict)
    families: dict[str, ArchTable] = Field(default_factory=dict)

    def lookup(self, axis: Axis, key: str, arch: str) -> VersionMap | None:
        """Return the VersionMap at (axis, key, arch), or None if absent.

        An explicitly declared empty map is returned as-is, so callers
        can tell "declared, nothing to add" from "not declared".
        """
        table = self.distros if axis == "distro" else self.families
        per_arch = table.get(key)
        if per_arch is None:
            return None
        return per_arch.get(arch)

    def version_maps(self, system: SystemDescriptor) -> list[VersionMap]:
        """The present maps for a system, in union order.

        distro×arch, distro×common, family×arch, family×common.
        """
        lookups: list[tuple[Axis, str, str]] = [
            ("distro", system.distro.value, system.arch.value),
            ("distro", system.distro.value, COMMON),
            ("family", system.family.value, system.arch.value),
            ("family", system.family.value, COMMON),
        ]
        found: list[VersionMap] = []
        for axis, key, arch in lookups:
            # unknown arch is never a table key, skip rather than risk a match
            if arch == "unknown":
                continue
            vmap = self.lookup(axis, key, arch)
            if vmap is not None:
                found.append(vmap)
        return found
