"""
Init pipeline generators — turn an installed rootfs into a bootable image.

These run after the install pipeline has executed: the kernel locator
looks at what the package step actually installed, so they must not be
composed earlier.
"""

from __future__ import annotations

import logging

import kairos_init
from kairos_init.core.errors import KernelNotFound
from kairos_init.core.models.config import InitConfig
from kairos_init.core.models.stage import (
    Stage,
    StageDirectory,
    StageFile,
    Systemctl,
    SystemctlOverride,
)
from kairos_init.core.models.system import Distro, Family, SystemDescriptor
from kairos_init.core.packages.constraint import matches_constraint
from kairos_init.core.stages.base import (
    OPENRC,
    SYSTEMD,
    StepContext,
    StepDefinition,
    on_distros,
    on_families,
    when,
)

logger = logging.getLogger(__name__)

PHASE = "init"

RELEASE_FILE = "/etc/kairos-release"

# Families whose initrd is built by dracut
_DRACUT_FAMILIES = (Family.DEBIAN, Family.REDHAT, Family.SUSE, Family.ARCH)

_DRACUT_CONF_DIR = "/etc/dracut.conf.d"


# ── Release metadata ────────────────────────────────────────────


def _flavor(system: SystemDescriptor) -> tuple[str, str]:
    """(flavor, flavor release) as published in the release file.

    openSUSE variants share one flavor: ``opensuse-leap`` 15.6 is
    stored as flavor ``opensuse`` with release ``leap-15.6``.
    """
    flavor = system.distro.value
    if flavor.startswith("opensuse-"):
        _, variant = flavor.split("-", 1)
        return "opensuse", f"{variant}-{system.version}"
    return flavor, system.version


def kairos_release(system: SystemDescriptor, config: InitConfig, ctx: StepContext) -> list[Stage]:
    """The release file other kairos components read at boot and upgrade."""
    id_like = f"kairos-{config.variant.value}-{system.distro.value}-{system.version}"
    flavor, flavor_release = _flavor(system)
    release = config.release_version

    env = {
        "KAIROS_ID": "kairos",
        "KAIROS_ID_LIKE": id_like,
        "KAIROS_NAME": id_like,
        "KAIROS_VERSION": release,
        "KAIROS_ARCH": system.arch.value,
        "KAIROS_TARGETARCH": system.arch.value,
        "KAIROS_FLAVOR": flavor,
        "KAIROS_FLAVOR_RELEASE": flavor_release,
        "KAIROS_FAMILY": system.family.value,
        "KAIROS_MODEL": config.model,           # grub reads it to pick consoles
        "KAIROS_VARIANT": config.variant.value,
        "KAIROS_BUG_REPORT_URL": "https://github.com/kairos-io/kairos/issues",
        "KAIROS_HOME_URL": "https://github.com/kairos-io/kairos",
        "KAIROS_RELEASE": release,
        "KAIROS_FIPS": str(config.fips).lower(),
        "KAIROS_TRUSTED_BOOT": str(config.trusted_boot).lower(),
        "KAIROS_INIT_VERSION": kairos_init.__version__,
    }
    if config.is_standard and config.kubernetes_version:
        env["KAIROS_SOFTWARE_VERSION"] = config.kubernetes_version
        env["KAIROS_SOFTWARE_VERSION_PREFIX"] = config.kubernetes_provider.value

    logger.debug("kairos-release: %s", env)
    return [Stage(name="Write kairos-release", environment=env, environment_file=RELEASE_FILE)]


# ── Kernel ──────────────────────────────────────────────────────


def kernel(system: SystemDescriptor, config: InitConfig, ctx: StepContext) -> list[Stage]:
    """Point /boot/vmlinuz at the newest installed kernel, whatever its name."""
    version = ctx.kernel_locator.latest_kernel()
    logger.info("Using kernel %s", version)

    return [
        Stage(
            name="Create dir if not exists",
            predicate=when("test ! -d /boot"),
            directories=(StageDirectory(path="/boot"),),
        ),
        Stage(name="Clean current kernel link", predicate=when("test -L /boot/vmlinuz"), commands=("rm /boot/vmlinuz",)),
        Stage(
            name="Clean current kernel link if its a symlink",
            predicate=when("test -L /boot/Image"),
            commands=("rm /boot/Image",),
        ),
        Stage(name="Clean old kernel link", predicate=when("test -f /boot/vmlinuz.old"), commands=("rm /boot/vmlinuz.old",)),
        Stage(
            name="Clean debug kernel",
            predicate=when(f"test -f /boot/vmlinux-{version}"),
            commands=(f"rm /boot/vmlinux-{version}",),
        ),
        # AGX Orin ships the kernel itself as /boot/Image
        Stage(
            name="Link kernel for Nvidia AGX Orin",
            predicate=when("test -e /boot/Image && test ! -L /boot/Image"),
            commands=("ln -s /boot/Image /boot/vmlinuz",),
        ),
        # without grub2 installed nothing copies the kernel into /boot
        Stage(
            name="Copy kernel for Trusted Boot",
            predicate=on_families(
                Family.REDHAT,
                condition=f"test ! -f /boot/vmlinuz-{version} && test -f /usr/lib/modules/{version}/vmlinuz",
            ),
            commands=(f"cp /usr/lib/modules/{version}/vmlinuz /boot/vmlinuz-{version}",),
        ),
        Stage(
            name="Link kernel",
            predicate=when(f"test -f /boot/vmlinuz-{version}"),
            commands=(f"ln -s /boot/vmlinuz-{version} /boot/vmlinuz",),
        ),
        # suse arm64 names the kernel Image-<version>
        Stage(
            name="Link kernel",
            predicate=when(f"test -f /boot/Image-{version}"),
            commands=(f"ln -s /boot/Image-{version} /boot/vmlinuz",),
        ),
        Stage(
            name="Link kernel for Alpine",
            predicate=when("test -f /boot/vmlinuz-lts"),
            commands=("ln -s /boot/vmlinuz-lts /boot/vmlinuz",),
        ),
        Stage(
            name="Link kernel for Alpine RPI",
            predicate=when("test -f /boot/vmlinuz-rpi"),
            commands=("ln -s /boot/vmlinuz-rpi /boot/vmlinuz",),
        ),
    ]


# ── Initrd ──────────────────────────────────────────────────────


def initrd(system: SystemDescriptor, config: InitConfig, ctx: StepContext) -> list[Stage]:
    """Drop distro initrds; rebuild ours unless the image is trusted boot.

    Trusted boot initrds are built and signed with the UKI at artifact
    build time, so only the removal is kept.
    """
    stages = [
        Stage(name="Remove all initrds", commands=("rm -f /boot/initrd*", "rm -f /boot/initramfs*")),
    ]
    if config.trusted_boot:
        return stages

    version = ctx.kernel_locator.latest_kernel()
    verbose = "-v " if config.level == "debug" else ""
    stages.extend([
        Stage(
            name="Create new initrd",
            predicate=on_families(*_DRACUT_FAMILIES),
            commands=(f"depmod -a {version}", f"dracut {verbose}-f /boot/initrd {version}"),
        ),
        Stage(
            name="Create new initrd for Alpine",
            predicate=on_families(Family.ALPINE),
            commands=(f"depmod -a {version}", f"mkinitfs -o /boot/initrd {version}"),
        ),
    ])
    return stages


def _dracut_network(system: SystemDescriptor) -> tuple[str, bool]:
    """(network modules, sysext enabled) for non-redhat dracut systems.

    network-legacy comes up fast enough for ipxe livenet boots, plain
    systemd-networkd does not trigger the dracut hooks in time.
    """
    if system.distro == Distro.UBUNTU:
        if matches_constraint("<=20.04", system.version):
            return "network", False
        if matches_constraint("<=22.04", system.version):
            return "systemd-networkd network-legacy", False
    return "systemd-networkd network-legacy", True


def _dracut_conf(ctx: StepContext, name: str, content: str | None = None) -> StageFile:
    return StageFile(path=f"{_DRACUT_CONF_DIR}/{name}", content=content or ctx.store.get(f"dracut/{name}"))


def initramfs_configs(system: SystemDescriptor, config: InitConfig, ctx: StepContext) -> list[Stage]:
    """dracut modules our initrd needs (pmem, sysext, network, multipath, fips)."""
    if config.trusted_boot:
        logger.info("Skipping initramfs configs for trusted boot")
        return []
    if system.family not in _DRACUT_FAMILIES:
        logger.debug("No dracut configs for family %s", system.family.value)
        return []

    dracut = on_families(*_DRACUT_FAMILIES)
    stages = [Stage(name="Add pmem modules to initramfs", predicate=dracut, files=(_dracut_conf(ctx, "10-pmem.conf"),))]

    if system.family == Family.REDHAT:
        sysext = not matches_constraint("<9.0", system.version)
        suffix = "network-legacy" if matches_constraint("<10", system.version) else "network"
        if sysext:
            stages.append(Stage(
                name="Add sysext module to initramfs", predicate=dracut,
                files=(_dracut_conf(ctx, "10-sysext.conf"),),
            ))
        # networkd wins over NetworkManager when both are present
        stages.extend([
            Stage(
                name="Add network module to initramfs",
                predicate=on_families(
                    Family.REDHAT,
                    condition="test -f /usr/sbin/NetworkManager && test ! -f /usr/lib/systemd/systemd-networkd",
                ),
                files=(_dracut_conf(ctx, "10-network.conf",
                                    ctx.store.render("dracut/10-network.conf", modules=f"network-manager {suffix}")),),
            ),
            Stage(
                name="Add network module to initramfs",
                predicate=on_families(Family.REDHAT, condition="test -f /usr/lib/systemd/systemd-networkd"),
                files=(_dracut_conf(ctx, "10-network.conf",
                                    ctx.store.render("dracut/10-network.conf", modules=f"systemd-networkd {suffix}")),),
            ),
        ])
    else:
        modules, sysext = _dracut_network(system)
        if sysext:
            stages.append(Stage(
                name="Add sysext module to initramfs", predicate=dracut,
                files=(_dracut_conf(ctx, "10-sysext.conf"),),
            ))
        stages.append(Stage(
            name="Add network module to initramfs", predicate=dracut,
            files=(_dracut_conf(ctx, "10-network.conf", ctx.store.render("dracut/10-network.conf", modules=modules)),),
        ))

    # the dracut multipath module is missing before ubuntu 21.04
    if system.distro == Distro.UBUNTU:
        stages.append(Stage(
            name="Add Multipath module to initramfs for Ubuntu 21.04 and above",
            predicate=on_distros(Distro.UBUNTU, version=">=21.04"),
            files=(_dracut_conf(ctx, "10-multipath.conf"),),
        ))
    else:
        stages.append(Stage(
            name="Add Multipath module to initramfs", predicate=dracut,
            files=(_dracut_conf(ctx, "10-multipath.conf"),),
        ))

    if config.fips:
        stages.append(Stage(
            name="Add fips support to initramfs", predicate=dracut,
            files=(_dracut_conf(ctx, "10-fips.conf"),),
        ))
    return stages


# ── Workarounds ─────────────────────────────────────────────────


def workarounds(system: SystemDescriptor, config: InitConfig, ctx: StepContext) -> list[Stage]:
    stages = [
        Stage(
            name="Link grub-editenv to grub2-editenv",
            predicate=when("test -f /usr/bin/grub-editenv && ! test -e /usr/bin/grub2-editenv"),
            commands=("ln -s /usr/bin/grub-editenv /usr/bin/grub2-editenv",),
        ),
        Stage(
            name="Fixup sudo perms",
            predicate=on_families(Family.DEBIAN),
            commands=("chown root:root /usr/bin/sudo", "chmod 4755 /usr/bin/sudo"),
        ),
        # /snap lives on the read-only rootfs, so it has to exist now
        Stage(
            name="Create snap dir in rootfs",
            predicate=on_families(Family.DEBIAN),
            directories=(StageDirectory(path="/snap"),),
        ),
    ]
    if not config.trusted_boot:
        return stages

    # UKI http boot needs the nvdimm modules that ubuntu only ships in
    # the 100MB+ linux-modules-extra package; lift just those
    try:
        version = ctx.kernel_locator.latest_kernel()
    except KernelNotFound as e:
        logger.warning("Skipping nvdimm module workaround: %s", e)
        return stages

    nvdimm = f"/usr/lib/modules/{version}/kernel/drivers/nvdimm"
    stages.append(Stage(
        name="Download linux-modules-extra for nvdimm modules",
        predicate=on_distros(Distro.UBUNTU, version="<25"),
        commands=(
            f"apt-get download linux-modules-extra-{version}",
            f"dpkg-deb -x linux-modules-extra-{version}_*.deb /tmp/modules",
            f"mkdir -p {nvdimm}",
            f"mv /tmp/modules/lib/modules/{version}/kernel/drivers/nvdimm/* {nvdimm}/",
            f"depmod -a {version}",
            "rm -rf /tmp/modules",
            "rm /*.deb",
        ),
    ))
    return stages


# ── Services ────────────────────────────────────────────────────

_RHEL_UNMASK = (
    "systemctl unmask getty.target",
    "systemctl unmask systemd-udevd",
    "systemctl unmask systemd-logind",
)


def services(system: SystemDescriptor, config: InitConfig, ctx: StepContext) -> list[Stage]:
    """Enable, disable and mask services per family and service manager."""
    return [
        Stage(
            name="Configure default systemd services",
            predicate=SYSTEMD,
            systemctl=Systemctl(
                mask=("systemd-firstboot.service",),
                overrides=(SystemctlOverride(
                    service="systemd-networkd-wait-online",
                    content=ctx.store.get("systemd/networkd-wait-online-override.conf"),
                ),),
            ),
        ),
        Stage(
            name="Enable fail2ban service for RHEL family",
            predicate=on_distros(
                Distro.RHEL, Distro.ROCKY, Distro.ALMALINUX,
                service_manager="systemd", condition="test -f /usr/bin/fail2ban-server",
            ),
            systemctl=Systemctl(enable=("fail2ban",)),
        ),
        Stage(
            name="Enable fail2ban service",
            predicate=on_distros(
                Distro.UBUNTU, Distro.DEBIAN, Distro.SLES,
                Distro.OPENSUSE_LEAP, Distro.OPENSUSE_TUMBLEWEED, Distro.FEDORA,
                service_manager="systemd",
            ),
            systemctl=Systemctl(enable=("fail2ban",)),
        ),
        Stage(
            name="Enable timesyncd service",
            predicate=on_distros(
                Distro.UBUNTU, Distro.DEBIAN, Distro.FEDORA, Distro.SLES,
                Distro.OPENSUSE_LEAP, Distro.OPENSUSE_TUMBLEWEED,
                service_manager="systemd",
            ),
            systemctl=Systemctl(enable=("systemd-timesyncd",)),
        ),
        Stage(
            name="Enable services for Debian family",
            predicate=on_families(Family.DEBIAN, service_manager="systemd"),
            systemctl=Systemctl(enable=("ssh", "systemd-networkd")),
        ),
        # wicked collides with systemd-networkd
        Stage(
            name="Disable Wicked for SUSE family",
            predicate=on_families(Family.SUSE, service_manager="systemd"),
            systemctl=Systemctl(disable=("wicked",), mask=("wicked",)),
        ),
        Stage(
            name="Enable services for SUSE family",
            predicate=on_families(Family.SUSE, service_manager="systemd"),
            systemctl=Systemctl(enable=("sshd", "systemd-networkd", "systemd-resolved")),
        ),
        Stage(
            name="Enable services for RHEL family",
            predicate=on_families(Family.REDHAT, service_manager="systemd"),
            systemctl=Systemctl(
                enable=("sshd", "systemd-resolved"),
                disable=("dnf-makecache", "dnf-makecache.timer"),
            ),
            commands=_RHEL_UNMASK,
        ),
        Stage(
            name="Enable networkd for RHEL family if binary is available",
            predicate=on_families(
                Family.REDHAT, service_manager="systemd",
                condition="test -f /usr/lib/systemd/systemd-networkd",
            ),
            systemctl=Systemctl(enable=("systemd-networkd",)),
        ),
        Stage(
            name="Enable NetworkManager for RHEL if binary is available",
            predicate=on_families(
                Family.REDHAT, service_manager="systemd",
                condition="test -f /usr/sbin/NetworkManager",
            ),
            systemctl=Systemctl(enable=("NetworkManager",)),
        ),
        Stage(
            name="Enable services for Alpine family",
            predicate=on_families(Family.ALPINE, service_manager="openrc"),
            commands=(
                "rc-update add sshd boot",
                "rc-update add fail2ban boot",
                "rc-update add connman boot",
                "rc-update add acpid boot",
                "rc-update add hwclock boot",
                "rc-update add syslog boot",
                "rc-update add udev sysinit",
                "rc-update add udev-trigger sysinit",
                "rc-update add cgroups sysinit",
                "rc-update add ntpd boot",
                "rc-update add crond",
            ),
        ),
        Stage(
            name="Enable services for Arch family",
            predicate=on_families(Family.ARCH, service_manager="systemd"),
            systemctl=Systemctl(enable=("sshd", "systemd-networkd", "systemd-resolved")),
        ),
    ]


# ── Cleanup ─────────────────────────────────────────────────────


def cleanup(system: SystemDescriptor, config: InitConfig, ctx: StepContext) -> list[Stage]:
    """Strip per-machine identity and package caches from the image."""
    return [
        Stage(
            name="Remove dbus machine-id",
            predicate=when("test -f /var/lib/dbus/machine-id"),
            commands=("rm -f /var/lib/dbus/machine-id",),
        ),
        Stage(name="truncate machine-id", predicate=when("test -f /etc/machine-id"), commands=("truncate -s 0 /etc/machine-id",)),
        Stage(name="truncate hostname", predicate=when("test -f /etc/hostname"), commands=("truncate -s 0 /etc/hostname",)),
        Stage(name="Remove host ssh keys", predicate=when("test -d /etc/ssh"), commands=("rm -f /etc/ssh/ssh_host_*_key*",)),
        Stage(
            name="Cleanup",
            predicate=on_families(Family.DEBIAN),
            commands=("apt-get clean", "rm -rf /var/lib/apt/lists/* /tmp/* /var/tmp/*"),
        ),
        Stage(
            name="Cleanup",
            predicate=on_families(Family.REDHAT),
            commands=("dnf clean all", "rm -rf /var/cache/dnf/* /tmp/* /var/tmp/*"),
        ),
        Stage(
            name="Cleanup",
            predicate=on_families(Family.ALPINE),
            commands=("rm -rf /var/cache/apk/* /tmp/* /var/tmp/*",),
        ),
        Stage(
            name="Cleanup",
            predicate=on_families(Family.SUSE),
            commands=("zypper clean -a", "rm -rf /var/cache/zypp/* /tmp/* /var/tmp/*"),
        ),
        Stage(
            name="Cleanup",
            predicate=on_families(Family.ARCH),
            commands=("pacman -Scc --noconfirm", "rm -rf /tmp/* /var/tmp/*"),
        ),
    ]


# ── Registry ────────────────────────────────────────────────────

INIT_STEPS: list[StepDefinition] = [
    StepDefinition("kairosRelease", PHASE, "Write /etc/kairos-release", kairos_release),
    StepDefinition("kernel", PHASE, "Link the newest installed kernel to /boot/vmlinuz", kernel),
    StepDefinition("initramfsConfigs", PHASE, "Write dracut module configs (not for trusted boot)", initramfs_configs),
    StepDefinition("initrd", PHASE, "Remove distro initrds and build ours (not for trusted boot)", initrd),
    StepDefinition("workarounds", PHASE, "Apply distro workarounds", workarounds),
    StepDefinition("services", PHASE, "Enable, disable and mask services", services),
    StepDefinition("cleanup", PHASE, "Remove machine identity and package caches", cleanup),
]
