"""
Image validation — check that a built image has every Kairos piece in place.

Meant as the last step of an image build, after the plan was executed.
Every check runs; problems are collected rather than raised, so a
single invocation reports everything that is missing.

Checks, with the tag each problem is reported under:

    [BINARIES]  kairos binaries, plus provider binaries for standard
    [FILES]     /boot/vmlinuz (a symlink must resolve), /boot/initrd
    [SERVICES]  systemd units (not on Alpine)
    [RELEASE]   keys of /etc/kairos-release
    [DIRS]      directories the runtime expects
    [INITRD]    immucore and kairos-agent inside the initrd (lsinitrd)
    [SSH]       no ssh host keys baked into the image

Paths are checked under ``root``, so a mounted rootfs can be validated
from the outside.  The initrd listing uses the host's ``lsinitrd``.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from kairos_init.core.detection.system import parse_os_release
from kairos_init.core.models.config import InitConfig, KubernetesProvider
from kairos_init.core.models.system import Family, SystemDescriptor

logger = logging.getLogger(__name__)

# Provider and discovery plugins live outside the usual bin dirs
PROVIDER_DIRS: tuple[str, ...] = ("/system/providers", "/system/discovery")
BIN_DIRS: tuple[str, ...] = (
    "/usr/local/sbin", "/usr/local/bin", "/usr/sbin", "/usr/bin", "/sbin", "/bin",
)

BASE_BINARIES: tuple[str, ...] = (
    "immucore", "kairos-agent", "sudo", "less", "kcrypt-discovery-challenger",
)
STANDARD_BINARIES: tuple[str, ...] = ("agent-provider-kairos", "kairos", "edgevpn")
PROVIDER_BINARIES: dict[KubernetesProvider, tuple[str, ...]] = {
    KubernetesProvider.K3S: ("k3s",),
    KubernetesProvider.K0S: ("k0s",),
}

BASE_SERVICES: tuple[str, ...] = (
    "kairos-agent", "kairos-interactive", "kairos-recovery", "kairos-reset", "kairos-webui",
)
PROVIDER_SERVICES: dict[KubernetesProvider, tuple[str, ...]] = {
    KubernetesProvider.K3S: ("k3s", "k3s-agent"),
    KubernetesProvider.K0S: ("k0scontroller", "k0sworker"),
}

RELEASE_FILE = "/etc/kairos-release"
RELEASE_KEYS: tuple[str, ...] = (
    "KAIROS_ID",
    "KAIROS_ID_LIKE",
    "KAIROS_NAME",
    "KAIROS_VERSION",
    "KAIROS_ARCH",
    "KAIROS_TARGETARCH",
    "KAIROS_FLAVOR",
    "KAIROS_FLAVOR_RELEASE",
    "KAIROS_FAMILY",
    "KAIROS_MODEL",
    "KAIROS_VARIANT",
    "KAIROS_BUG_REPORT_URL",
    "KAIROS_HOME_URL",
    "KAIROS_RELEASE",
)
STANDARD_RELEASE_KEYS: tuple[str, ...] = ("KAIROS_SOFTWARE_VERSION", "KAIROS_SOFTWARE_VERSION_PREFIX")

EXPECTED_DIRS: tuple[str, ...] = ("/var/lock",)

KERNEL_LINK = "/boot/vmlinuz"
INITRD = "/boot/initrd"
INITRD_BINARIES: tuple[str, ...] = ("immucore", "kairos-agent")
LSINITRD_TIMEOUT = 300


@dataclass
class ValidationReport:
    """Result of validating an image."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def fail(self, tag: str, message: str) -> None:
        self.errors.append(f"[{tag}] {message}")

    def warn(self, tag: str, message: str) -> None:
        self.warnings.append(f"[{tag}] {message}")

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": self.errors,
            "warnings": self.warnings,
        }


def _in_root(root: Path, path: str) -> Path:
    return root / path.lstrip("/")


# ── Checks ──────────────────────────────────────────────────────


def _check_binaries(
    report: ValidationReport, root: Path, config: InitConfig, search_dirs: Sequence[str],
) -> None:
    binaries = list(BASE_BINARIES)
    if config.is_standard:
        binaries += STANDARD_BINARIES
        binaries += PROVIDER_BINARIES.get(config.kubernetes_provider, ())

    search_path = os.pathsep.join(str(_in_root(root, d)) for d in search_dirs)
    for binary in binaries:
        found = shutil.which(binary, path=search_path)
        if found is None:
            report.fail("BINARIES", f"could not find binary {binary}")
        else:
            logger.info("Found binary %s at %s", binary, found)


def _symlink_resolves(root: Path, link: Path) -> bool:
    target = Path(os.readlink(link))
    if target.is_absolute():
        target = _in_root(root, str(target))
    else:
        target = link.parent / target
    return target.exists()


def _check_files(report: ValidationReport, root: Path, config: InitConfig) -> None:
    files = [KERNEL_LINK]
    if not config.trusted_boot:
        files.append(INITRD)

    for name in files:
        path = _in_root(root, name)
        if not os.path.lexists(path):
            report.fail("FILES", f"file missing {name}")
            continue
        if name == KERNEL_LINK and path.is_symlink():
            if not _symlink_resolves(root, path):
                report.fail("FILES", f"{name} symlink does not resolve")
                continue
            logger.info("%s is a symlink and resolves", name)
        else:
            logger.info("Found file %s", name)


def _check_services(
    report: ValidationReport, root: Path, config: InitConfig, system: SystemDescriptor,
) -> None:
    if system.family == Family.ALPINE:
        logger.debug("Alpine uses openrc, not checking systemd units")
        return

    services = list(BASE_SERVICES)
    if config.is_standard:
        services += PROVIDER_SERVICES.get(config.kubernetes_provider, ())
    for service in services:
        if _in_root(root, f"/etc/systemd/system/{service}.service").exists():
            logger.info("Found service %s", service)
        else:
            report.fail("SERVICES", f"service {service} not found")


def _check_release(report: ValidationReport, root: Path, config: InitConfig) -> None:
    try:
        values = parse_os_release(_in_root(root, RELEASE_FILE).read_text(encoding="utf-8"))
    except OSError as e:
        logger.debug("Cannot read %s: %s", RELEASE_FILE, e)
        report.fail("RELEASE", "could not open kairos-release file")
        values = {}
    else:
        for key in RELEASE_KEYS:
            if not values.get(key):
                report.fail("RELEASE", f"key {key} not found or empty in kairos-release")

    if config.is_standard:
        if values.get("KAIROS_VARIANT") != "standard":
            report.fail("RELEASE", "KAIROS_VARIANT is not standard")
        for key in STANDARD_RELEASE_KEYS:
            if not values.get(key):
                report.fail("RELEASE", f"{key} is empty")


def _check_dirs(report: ValidationReport, root: Path) -> None:
    for name in EXPECTED_DIRS:
        if not _in_root(root, name).exists():
            report.fail("DIRS", f"directory {name} does not exist")


def _check_initrd(report: ValidationReport, root: Path, config: InitConfig, lsinitrd: str | None) -> None:
    if config.trusted_boot:
        return
    binary = shutil.which(lsinitrd) if lsinitrd else None
    if binary is None:
        report.warn("INITRD", "lsinitrd not found, cannot check initrd contents")
        return

    logger.info("Checking initrd contents")
    try:
        result = subprocess.run(
            [binary, str(_in_root(root, INITRD))],
            capture_output=True,
            text=True,
            timeout=LSINITRD_TIMEOUT,
        )
        output = result.stdout + result.stderr
        if result.returncode != 0:
            report.fail("INITRD", f"failed checking initrd contents: exit code {result.returncode}")
    except (OSError, subprocess.TimeoutExpired) as e:
        report.fail("INITRD", f"failed checking initrd contents: {e}")
        output = ""

    for name in INITRD_BINARIES:
        if name in output:
            logger.info("Found %s in the initrd", name)
        else:
            report.fail("INITRD", f"did not find {name} in the initrd")


def _check_ssh_keys(report: ValidationReport, root: Path) -> None:
    ssh_dir = _in_root(root, "/etc/ssh")
    keys = sorted(f"/etc/ssh/{p.name}" for p in ssh_dir.glob("ssh_host_*_key"))
    if keys:
        report.fail("SSH", f"found SSH host keys in the system: {', '.join(keys)}")
    else:
        logger.info("No SSH host keys bundled in the system")


def validate_image(
    config: InitConfig,
    system: SystemDescriptor,
    root: Path = Path("/"),
    *,
    search_dirs: Sequence[str] = PROVIDER_DIRS + BIN_DIRS,
    lsinitrd: str | None = "lsinitrd",
) -> ValidationReport:
    """Run every check against the image at ``root``.

    Args:
        config: Variant, provider and boot mode the image was built for.
        system: Detected system of the image.
        root: Root of the image filesystem.
        search_dirs: Directories (inside ``root``) searched for binaries.
        lsinitrd: Host command used to list the initrd; ``None`` skips
            the initrd listing with a warning.

    Returns:
        ValidationReport with every problem found.
    """
    report = ValidationReport()
    _check_binaries(report, root, config, search_dirs)
    _check_files(report, root, config)
    _check_services(report, root, config, system)
    _check_release(report, root, config)
    _check_dirs(report, root)
    # Slowest check last
    _check_initrd(report, root, config, lsinitrd)
    _check_ssh_keys(report, root)

    if report.valid:
        logger.info("System validation passed")
    else:
        logger.info("System validation found %d problem(s)", len(report.errors))
    return report
