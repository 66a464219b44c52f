"""
Package Matrix Resolver — descriptor + matrices → install list.

Pure function of its inputs: the same descriptor and matrices always
produce the same list in the same order.  No I/O, safe to call from
several threads at once.

Union order:

    COMMON_PACKAGES
    for each matrix (base, kernel, bootloader...):
        distro×arch, distro×common, family×arch, family×common
            every VersionMap entry in declaration order

No sorting and no de-duplication.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from packaging.version import Version

from kairos_init.core.errors import ConstraintError
from kairos_init.core.models.config import InitConfig
from kairos_init.core.models.packages import PackageMatrix, VersionMap
from kairos_init.core.models.system import SystemDescriptor
from kairos_init.core.packages.constraint import parse_constraint, parse_version
from kairos_init.core.packages.matrices import (
    BASE_PACKAGES,
    COMMON_PACKAGES,
    GRUB_PACKAGES,
    IMMUCORE_PACKAGES,
    KERNEL_PACKAGES,
    SYSTEMD_BOOT_PACKAGES,
)
from kairos_init.core.packages.template import render_packages

logger = logging.getLogger(__name__)

__all__ = [
    "PackageMatrix",
    "filter_version_map",
    "resolve_packages",
    "select_matrices",
]


def select_matrices(config: InitConfig) -> list[PackageMatrix]:
    """Matrices that apply for the boot mode, in union order.

    Trusted boot ships systemd-boot only; everything else gets grub and
    the immucore initrd tooling.  Never both.
    """
    matrices = [BASE_PACKAGES, KERNEL_PACKAGES]
    if config.trusted_boot:
        matrices.append(SYSTEMD_BOOT_PACKAGES)
    else:
        matrices.extend([GRUB_PACKAGES, IMMUCORE_PACKAGES])
    return matrices


class _LazyVersion:
    """Parses the descriptor version on first use only.

    An unknown system has an empty version; it must still resolve to
    the ``common`` entries, so parsing waits until a real constraint
    needs it.
    """

    def __init__(self, text: str) -> None:
        self._text = text
        self._parsed: Version | None = None

    def get(self) -> Version:
        if self._parsed is None:
            self._parsed = parse_version(self._text)
        return self._parsed


def _filter(version_map: VersionMap, version: _LazyVersion) -> list[str]:
    selected: list[str] = []
    for expression, packages in version_map.items():
        try:
            constraint = parse_constraint(expression)
        except ConstraintError as e:
            logger.warning("Skipping package entry: %s", e)
            continue
        if constraint.always:
            logger.debug("Adding common packages: %s", ", ".join(packages))
            selected.extend(packages)
            continue
        if constraint.allows(version.get()):
            logger.debug("Constraint %r matches, adding: %s", expression, ", ".join(packages))
            selected.extend(packages)
    return selected


def filter_version_map(version_map: VersionMap, system: SystemDescriptor) -> list[str]:
    """Templates from every entry of ``version_map`` whose constraint matches.

    Raises:
        VersionParseError: A non-common constraint had to be checked and
            the system version is not a version.
    """
    return _filter(version_map, _LazyVersion(system.version))


def resolve_packages(
    system: SystemDescriptor,
    matrices: Sequence[PackageMatrix],
    common: Sequence[str] = COMMON_PACKAGES,
) -> list[str]:
    """Resolve the full, rendered package list for ``system``.

    Raises:
        VersionParseError: Unparseable system version (only when needed).
        TemplateError: A package template cannot be rendered.
    """
    version = _LazyVersion(system.version)
    templates: list[str] = list(common)
    for matrix in matrices:
        for vmap in matrix.version_maps(system):
            templates.extend(_filter(vmap, version))

    packages = render_packages(templates, system.template_params())
    logger.debug(
        "Resolved %d packages for %s %s (%s)",
        len(packages), system.distro.value, system.version or "-", system.arch.value,
    )
    return packages
