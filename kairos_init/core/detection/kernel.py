"""
Kernel locator — which kernel did the install pipeline leave behind.

The init pipeline links ``/boot/vmlinuz`` and rebuilds the initrd for
the newest installed kernel, so it needs to look at the modules tree
after packages are in place.  The composer only talks to the
``KernelLocator`` protocol; tests supply a fixed value.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Protocol

from kairos_init.core.errors import KernelNotFound

logger = logging.getLogger(__name__)

DEFAULT_MODULES_DIR = "/lib/modules"

# 6.8.0-45-generic, 5.14.0-427.el9.x86_64, 6.6.31-0-lts
_KERNEL_RE = re.compile(r"^(\d+)\.(\d+)(?:\.(\d+))?(?:[-+._~](.*))?$")


class KernelLocator(Protocol):
    def latest_kernel(self) -> str:
        """Return the version string of the newest installed kernel."""
        ...


class StaticKernelLocator:
    """A locator that always answers the same version."""

    def __init__(self, version: str) -> None:
        self.version = version

    def latest_kernel(self) -> str:
        return self.version


def _sort_key(name: str) -> tuple[int, int, int, tuple] | None:
    m = _KERNEL_RE.match(name)
    if not m:
        return None
    major, minor, patch, rest = m.group(1), m.group(2), m.group(3) or "0", m.group(4) or ""
    # numeric chunks of the suffix break ties (-45 > -9)
    extra = tuple(int(x) for x in re.findall(r"\d+", rest))
    return int(major), int(minor), int(patch), extra


class ModulesDirKernelLocator:
    """Find the newest kernel by reading the modules directory.

    Directory names that look like kernel versions are compared
    numerically.  When none do (custom kernel naming), the first entry
    in sorted order is used as is.
    """

    def __init__(self, modules_dir: str | Path = DEFAULT_MODULES_DIR) -> None:
        self.modules_dir = Path(modules_dir)

    def latest_kernel(self) -> str:
        try:
            names = sorted(p.name for p in self.modules_dir.iterdir() if p.is_dir())
        except OSError as e:
            raise KernelNotFound(f"Cannot read {self.modules_dir}: {e}") from e

        if not names:
            raise KernelNotFound(f"No kernel versions found in {self.modules_dir}")

        versioned = [(key, name) for name in names if (key := _sort_key(name)) is not None]
        if not versioned:
            logger.debug("No semver-like kernel dirs in %s, using %s", self.modules_dir, names[0])
            return names[0]

        skipped = len(names) - len(versioned)
        if skipped:
            logger.debug("Ignored %d non-version entries in %s", skipped, self.modules_dir)

        latest = max(versioned)[1]
        logger.debug("Latest kernel: %s", latest)
        return latest
