"""
System detection — os-release → SystemDescriptor.

Read-only.  Turns the KEY=VALUE identification data of the running OS
into a canonical descriptor.  Detection never raises: a missing or
unreadable os-release yields a fully unknown descriptor, and unknown
values simply match only the ``common`` package rules downstream.

Resolution order:
    1. ``ID`` → (distro, family) direct table
    2. ``ID_LIKE`` → family table, with a representative distro
    3. CPU machine → architecture (unsupported = ``unknown``)
    4. ``VERSION_ID`` verbatim, truncated per family policy
    5. ``PRETTY_NAME``, falling back to ``NAME``
"""

from __future__ import annotations

import logging
import os
import platform
import re
from pathlib import Path

from kairos_init.core.models.system import Architecture, Distro, Family, SystemDescriptor

logger = logging.getLogger(__name__)

OS_RELEASE_ENV = "KAIROS_OS_RELEASE_PATH"
DEFAULT_OS_RELEASE = "/etc/os-release"

# ── Tables ──────────────────────────────────────────────────────

_DISTRO_FAMILY: dict[str, tuple[Distro, Family]] = {
    "debian": (Distro.DEBIAN, Family.DEBIAN),
    "ubuntu": (Distro.UBUNTU, Family.DEBIAN),
    "fedora": (Distro.FEDORA, Family.REDHAT),
    "rocky": (Distro.ROCKY, Family.REDHAT),
    "almalinux": (Distro.ALMALINUX, Family.REDHAT),
    "rhel": (Distro.RHEL, Family.REDHAT),
    "arch": (Distro.ARCH, Family.ARCH),
    "alpine": (Distro.ALPINE, Family.ALPINE),
    "opensuse-leap": (Distro.OPENSUSE_LEAP, Family.SUSE),
    "opensuse-tumbleweed": (Distro.OPENSUSE_TUMBLEWEED, Family.SUSE),
    "sles": (Distro.SLES, Family.SUSE),
}

# Derivatives keep their own ID but point ID_LIKE at the parent
_LIKE_FAMILY: dict[str, tuple[Distro, Family]] = {
    "debian": (Distro.DEBIAN, Family.DEBIAN),
    "ubuntu": (Distro.DEBIAN, Family.DEBIAN),
    "redhat": (Distro.FEDORA, Family.REDHAT),
    "rhel": (Distro.FEDORA, Family.REDHAT),
    "fedora": (Distro.FEDORA, Family.REDHAT),
    "arch": (Distro.ARCH, Family.ARCH),
    "suse": (Distro.OPENSUSE_LEAP, Family.SUSE),
    "opensuse": (Distro.OPENSUSE_LEAP, Family.SUSE),
}

_MACHINE_ARCH: dict[str, Architecture] = {
    "x86_64": Architecture.AMD64,
    "amd64": Architecture.AMD64,
    "aarch64": Architecture.ARM64,
    "arm64": Architecture.ARM64,
}

# Families whose version is stored as major.minor even when os-release
# reports a patch level (kept for backwards compatibility of image tags)
_MAJOR_MINOR_FAMILIES: frozenset[Family] = frozenset({Family.ALPINE})

_LINE_RE = re.compile(r"^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*?)\s*$")


# ── Parsing ─────────────────────────────────────────────────────


def parse_os_release(text: str) -> dict[str, str]:
    """Parse newline-delimited KEY=VALUE data.

    Blank lines and ``#`` comments are skipped, values may be wrapped
    in double or single quotes.  Malformed lines are skipped.
    """
    values: dict[str, str] = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        m = _LINE_RE.match(line)
        if not m:
            logger.debug("Skipping malformed os-release line %d: %r", lineno, line)
            continue
        key, raw = m.group(1), m.group(2)
        values[key] = _unquote(raw)
    return values


def _unquote(raw: str) -> str:
    if len(raw) >= 2 and raw[0] == raw[-1] == '"':
        inner = raw[1:-1]
        return re.sub(r"\\([\\\"$`])", r"\1", inner)
    if len(raw) >= 2 and raw[0] == raw[-1] == "'":
        return raw[1:-1]
    # Unquoted values end at an inline comment
    return raw.split(" #", 1)[0].strip()


# ── Resolution ──────────────────────────────────────────────────


def resolve_architecture(machine: str) -> Architecture:
    """Map a CPU machine string onto the supported architecture set."""
    return _MACHINE_ARCH.get(machine.strip().lower(), Architecture.UNKNOWN)


def resolve_system(values: dict[str, str], machine: str | None = None) -> SystemDescriptor:
    """Build a descriptor from parsed os-release values.

    Args:
        values: Parsed os-release mapping.
        machine: CPU machine string; defaults to ``platform.machine()``.
    """
    distro, family = Distro.UNKNOWN, Family.UNKNOWN

    os_id = values.get("ID", "").strip().lower()
    if os_id in _DISTRO_FAMILY:
        distro, family = _DISTRO_FAMILY[os_id]
    else:
        for like in values.get("ID_LIKE", "").lower().split():
            if like in _LIKE_FAMILY:
                distro, family = _LIKE_FAMILY[like]
                logger.debug("Resolved %r through ID_LIKE=%r as %s", os_id, like, distro)
                break

    if distro == Distro.UNKNOWN and os_id:
        logger.info("Unrecognized distro %r, only common rules will apply", os_id)

    arch = resolve_architecture(machine if machine is not None else platform.machine())
    if arch == Architecture.UNKNOWN:
        logger.info("Unsupported architecture %r", machine or platform.machine())

    version = values.get("VERSION_ID", "")
    if not version:
        logger.debug("os-release has no VERSION_ID")
    if family in _MAJOR_MINOR_FAMILIES:
        parts = version.split(".")
        if len(parts) == 3:
            version = f"{parts[0]}.{parts[1]}"
        else:
            logger.debug("Keeping %s version as is: %s", family, version)

    name = values.get("PRETTY_NAME") or values.get("NAME", "")

    system = SystemDescriptor(
        distro=distro, family=family, arch=arch, version=version, name=name,
    )
    logger.debug("Detected system: %s", system.model_dump(mode="json"))
    return system


def os_release_path(explicit: str | Path | None = None) -> Path:
    """Explicit path > KAIROS_OS_RELEASE_PATH > /etc/os-release."""
    if explicit:
        return Path(explicit)
    return Path(os.environ.get(OS_RELEASE_ENV) or DEFAULT_OS_RELEASE)


def detect_system(path: str | Path | None = None, machine: str | None = None) -> SystemDescriptor:
    """Detect the running system.  Never raises."""
    source = os_release_path(path)
    try:
        text = source.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning("Cannot read %s: %s, system is unknown", source, e)
        return SystemDescriptor.unknown()
    return resolve_system(parse_os_release(text), machine=machine)
