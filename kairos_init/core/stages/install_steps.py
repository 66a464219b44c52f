"""
Install pipeline generators — everything laid down in the ``install`` phase.

Packages, the framework image, the kubernetes provider bundles,
branding, boot args, helper files and the kairos service units.
Init generators rely on all of this being present on disk.
"""

from __future__ import annotations

import logging

from kairos_init.core.models.config import (
    DEFAULT_PROVIDER_PACKAGE,
    InitConfig,
    KubernetesProvider,
)
from kairos_init.core.models.stage import (
    Stage,
    StageDirectory,
    StageFile,
    StagePackages,
    UnpackImage,
)
from kairos_init.core.models.system import Architecture, SystemDescriptor
from kairos_init.core.packages.resolver import resolve_packages, select_matrices
from kairos_init.core.stages.base import (
    OPENRC,
    SYSTEMD,
    StepContext,
    StepDefinition,
    when,
)

logger = logging.getLogger(__name__)

PHASE = "install"

# Pinned bundle versions, overridable through VersionOverrides
DEFAULT_EDGEVPN_VERSION = "0.30.2"
DEFAULT_K9S_VERSION = "0.32.7"
DEFAULT_NERDCTL_VERSION = "2.0.3"
DEFAULT_KUBE_VIP_VERSION = "0.8.9"


def _platform(system: SystemDescriptor) -> str:
    if system.arch in (Architecture.AMD64, Architecture.ARM64):
        return f"linux/{system.arch.value}"
    return ""


def _file(path: str, content: str, permissions: int = 0o644) -> StageFile:
    return StageFile(path=path, content=content, permissions=permissions)


# ── Packages ────────────────────────────────────────────────────


def install_packages(system: SystemDescriptor, config: InitConfig, ctx: StepContext) -> list[Stage]:
    packages = resolve_packages(system, select_matrices(config))
    logger.info("Installing %d packages", len(packages))
    return [
        Stage(
            name="Install base packages",
            packages=StagePackages(install=tuple(packages), refresh=True, upgrade=True),
        ),
    ]


# ── Framework & binaries ────────────────────────────────────────


def install_framework(system: SystemDescriptor, config: InitConfig, ctx: StepContext) -> list[Stage]:
    """The framework image carries agent, immucore and the OEM configs."""
    image = f"{config.registry}/framework:{config.framework_tag}"
    return [
        Stage(
            name="Create kairos directory",
            predicate=when("test ! -d /etc/kairos"),
            directories=(StageDirectory(path="/etc/kairos"),),
        ),
        Stage(
            name="Install framework",
            unpack_images=(UnpackImage(source=image, platform=_platform(system)),),
        ),
    ]


_RELEASE_BINARIES = (
    # (override field, github repo, binary name)
    ("agent", "kairos-agent", "kairos-agent"),
    ("immucore", "immucore", "immucore"),
    ("kcrypt_challenger", "kcrypt-challenger", "kcrypt-discovery-challenger"),
)


def install_binaries(system: SystemDescriptor, config: InitConfig, ctx: StepContext) -> list[Stage]:
    """Replace framework binaries with pinned release builds.

    Only components with a version override are fetched; the framework
    image already ships default builds of all of them.
    """
    fips = "-fips" if config.fips else ""
    commands: list[str] = []
    for field_name, repo, binary in _RELEASE_BINARIES:
        version = getattr(config.version_overrides, field_name)
        if not version:
            continue
        url = (
            f"https://github.com/kairos-io/{repo}/releases/download/{version}/"
            f"{binary}-{version}-Linux-{system.arch.value}{fips}.tar.gz"
        )
        commands.append(f"curl -sfL {url} | tar -xz -C /usr/bin {binary}")
        commands.append(f"chmod 0755 /usr/bin/{binary}")

    if not commands:
        return []
    return [Stage(name="Install kairos binaries", commands=tuple(commands))]


# ── Kubernetes provider ─────────────────────────────────────────


def _k3s_stages(config: InitConfig) -> list[Stage]:
    env = "INSTALL_K3S_BIN_DIR=/usr/bin INSTALL_K3S_SKIP_ENABLE=true INSTALL_K3S_SKIP_SELINUX_RPM=true"
    if config.kubernetes_version:
        env = f"INSTALL_K3S_VERSION={config.kubernetes_version} {env}"
    return [
        Stage(
            name="Install Kubernetes packages",
            commands=(
                "curl -sfL https://get.k3s.io > installer.sh",
                "chmod +x installer.sh",
                f"{env} sh installer.sh",
                f"{env} sh installer.sh agent",
                "rm installer.sh",
            ),
        ),
    ]


def _k0s_stages(config: InitConfig, ctx: StepContext) -> list[Stage]:
    cmd = "sh installer.sh"
    if config.kubernetes_version:
        cmd = f"K0S_VERSION={config.kubernetes_version} {cmd}"
    return [
        Stage(
            name="Install Kubernetes packages",
            commands=(
                "curl -sfL https://get.k0s.sh > installer.sh",
                "chmod +x installer.sh",
                cmd,
                "rm installer.sh",
                "mv /usr/local/bin/k0s /usr/bin/k0s",
            ),
        ),
        Stage(
            name="Create k0s services for systemd",
            predicate=SYSTEMD,
            files=(
                _file("/etc/systemd/system/k0scontroller.service", ctx.store.get("k0s/k0scontroller.service")),
                _file("/etc/systemd/system/k0sworker.service", ctx.store.get("k0s/k0sworker.service")),
            ),
        ),
        Stage(
            name="Create k0s services for openrc",
            predicate=OPENRC,
            files=(
                _file("/etc/init.d/k0scontroller", ctx.store.get("k0s/k0scontroller.openrc"), 0o755),
                _file("/etc/init.d/k0sworker", ctx.store.get("k0s/k0sworker.openrc"), 0o755),
            ),
        ),
    ]


def _bundle_images(config: InitConfig) -> list[tuple[str, str]]:
    """(stage name, image) for the provider and the k8s utility bundles."""
    overrides = config.version_overrides
    packages = f"{config.registry}/packages"

    provider = DEFAULT_PROVIDER_PACKAGE
    if overrides.provider:
        provider = f"{packages}:provider-kairos-system-{overrides.provider.lstrip('v')}"

    return [
        ("Install Provider packages", provider),
        ("Install Edgevpn packages",
         f"{packages}:edgevpn-utils-{overrides.edgevpn or DEFAULT_EDGEVPN_VERSION}"),
        ("Install K9s packages",
         f"{packages}:k9s-utils-{overrides.k9s or DEFAULT_K9S_VERSION}"),
        ("Install Nerdctl packages",
         f"{packages}:nerdctl-utils-{overrides.nerdctl or DEFAULT_NERDCTL_VERSION}"),
        ("Install Kube-vip packages",
         f"{packages}:kube-vip-{overrides.kube_vip or DEFAULT_KUBE_VIP_VERSION}"),
    ]


def install_provider(system: SystemDescriptor, config: InitConfig, ctx: StepContext) -> list[Stage]:
    """Kubernetes distribution plus provider bundles (standard variant only)."""
    if not config.is_standard:
        return []

    if config.kubernetes_provider == KubernetesProvider.K0S:
        stages = _k0s_stages(config, ctx)
    else:
        stages = _k3s_stages(config)

    platform = _platform(system)
    for name, image in _bundle_images(config):
        stages.append(Stage(name=name, unpack_images=(UnpackImage(source=image, platform=platform),)))
    return stages


# ── Files ───────────────────────────────────────────────────────


def branding(system: SystemDescriptor, config: InitConfig, ctx: StepContext) -> list[Stage]:
    base = "/etc/kairos/branding"
    names = ("grubmenu.cfg", "interactive_install", "recovery_text", "reset_text", "install_text")
    return [
        Stage(
            name="Create branding files",
            files=tuple(_file(f"{base}/{n}", ctx.store.get(f"branding/{n}")) for n in names),
        ),
    ]


def grub_boot_args(system: SystemDescriptor, config: InitConfig, ctx: StepContext) -> list[Stage]:
    # Signed UKIs carry their own cmdline
    if config.trusted_boot:
        return []
    return [
        Stage(
            name="Create bootargs.cfg",
            files=(_file("/etc/cos/bootargs.cfg", ctx.store.get("grub/bootargs.cfg")),),
        ),
    ]


def misc_files(system: SystemDescriptor, config: InitConfig, ctx: StepContext) -> list[Stage]:
    return [
        Stage(
            name="Create kairos welcome message",
            files=(
                _file("/etc/issue.d/01-KAIROS", ctx.store.get("misc/issue")),
                _file("/etc/motd", ctx.store.get("misc/motd")),
            ),
        ),
        Stage(
            name="Create miscellaneous binaries",
            files=(
                _file("/usr/bin/cos-setup-reconcile", ctx.store.get("misc/cos-setup-reconcile"), 0o755),
                _file("/usr/bin/fix-home-dir-ownership", ctx.store.get("misc/fix-home-dir-ownership"), 0o755),
            ),
        ),
    ]


KAIROS_UNITS: tuple[str, ...] = (
    "kairos-agent.service",
    "kairos-recovery.service",
    "kairos-reset.service",
    "kairos-webui.service",
    "kairos.service",
    "kairos-interactive.service",
)


def install_services(system: SystemDescriptor, config: InitConfig, ctx: StepContext) -> list[Stage]:
    return [
        Stage(
            name="Create system services dir",
            predicate=SYSTEMD.model_copy(update={"condition": "test ! -d /etc/systemd/system"}),
            directories=(StageDirectory(path="/etc/systemd/system"),),
        ),
        Stage(
            name="Create kairos services",
            predicate=SYSTEMD,
            files=tuple(
                _file(f"/etc/systemd/system/{unit}", ctx.store.get(f"services/{unit}"))
                for unit in KAIROS_UNITS
            ),
        ),
    ]


# ── Registry ────────────────────────────────────────────────────

INSTALL_STEPS: list[StepDefinition] = [
    StepDefinition("installPackages", PHASE, "Install the resolved base, kernel and bootloader packages", install_packages),
    StepDefinition("installFramework", PHASE, "Unpack the kairos framework image", install_framework),
    StepDefinition("installBinaries", PHASE, "Fetch pinned kairos binaries when versions are overridden", install_binaries),
    StepDefinition("installProvider", PHASE, "Install kubernetes and provider bundles (standard variant)", install_provider),
    StepDefinition("branding", PHASE, "Write branding texts and the grub recovery menu", branding),
    StepDefinition("grubBootArgs", PHASE, "Write /etc/cos/bootargs.cfg (not for trusted boot)", grub_boot_args),
    StepDefinition("miscFiles", PHASE, "Write motd, issue and helper scripts", misc_files),
    StepDefinition("installServices", PHASE, "Write the kairos systemd units", install_services),
]
