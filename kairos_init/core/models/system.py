"""
System model — the canonical description of the OS being provisioned.

A SystemDescriptor is built once per invocation from the live OS
(see ``core.detection.system``) and is never mutated afterwards.
Unknown values are legitimate: they simply match nothing but the
``common`` rules of a package matrix.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict

# Key used for "applies regardless" in version maps and architecture axes
COMMON = "common"


class Distro(StrEnum):
    """Individual distributions, for when a rule must be specific."""

    UNKNOWN = "unknown"
    DEBIAN = "debian"
    UBUNTU = "ubuntu"
    RHEL = "rhel"
    ROCKY = "rocky"
    ALMALINUX = "almalinux"
    FEDORA = "fedora"
    ARCH = "arch"
    ALPINE = "alpine"
    OPENSUSE_LEAP = "opensuse-leap"
    OPENSUSE_TUMBLEWEED = "opensuse-tumbleweed"
    SLES = "sles"


class Family(StrEnum):
    """OS lineages sharing packaging conventions."""

    UNKNOWN = "unknown"
    DEBIAN = "debian"
    REDHAT = "redhat"
    ARCH = "arch"
    ALPINE = "alpine"
    SUSE = "suse"


class Architecture(StrEnum):
    """Supported CPU architectures plus the matrix-only ``common`` axis."""

    AMD64 = "amd64"
    ARM64 = "arm64"
    COMMON = COMMON
    UNKNOWN = "unknown"


class SystemDescriptor(BaseModel):
    """Detected OS identity.

    Attributes:
        distro:  Specific distribution id.
        family:  Lineage derived from the distro (or its ID_LIKE).
        arch:    CPU architecture, ``unknown`` outside the supported set.
        version: Version string (alpine is truncated to major.minor).
        name:    Human display name (PRETTY_NAME or NAME).
    """

    model_config = ConfigDict(frozen=True)

    distro: Distro = Distro.UNKNOWN
    family: Family = Family.UNKNOWN
    arch: Architecture = Architecture.UNKNOWN
    version: str = ""
    name: str = ""

    @classmethod
    def unknown(cls) -> SystemDescriptor:
        """A descriptor for a system that could not be identified at all."""
        return cls()

    @property
    def is_known(self) -> bool:
        return self.distro != Distro.UNKNOWN

    def template_params(self) -> dict[str, str]:
        """Parameters available to package-name templates."""
        return {
            "distro": self.distro.value,
            "family": self.family.value,
            "arch": self.arch.value,
            "version": self.version,
        }
