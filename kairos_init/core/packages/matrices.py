"""
Built-in package matrices.

Distros name the same thing differently, so every table is keyed by
distro (for release-specific names) and by family (for names shared by
a whole lineage).  Names may be templates, see ``template.py``.

These tables are module constants built at import and never mutated.
"""

from __future__ import annotations

from kairos_init.core.models.packages import PackageMatrix
from kairos_init.core.models.system import COMMON

# Named identically everywhere
COMMON_PACKAGES: tuple[str, ...] = (
    "curl",        # also used to fetch netboot artifacts
    "file",
    "gawk",
    "iptables",
    "less",
    "nano",
    "sudo",
    "tar",
    "zstd",
    "rsync",       # install/upgrade/reset sync files with it
    "systemd",
    "dbus",
    "lvm2",
    "jq",
    "dosfstools",  # EFI fat32 partition
    "e2fsprogs",
    "parted",
)


# ── Base ────────────────────────────────────────────────────────

BASE_PACKAGES = PackageMatrix(
    name="base",
    distros={
        "ubuntu": {
            COMMON: {
                COMMON: (
                    "gdisk",
                    "fdisk",
                    "ca-certificates",
                    "conntrack",
                    "console-data",
                    "cloud-guest-utils",   # growpart
                    "cryptsetup",
                    "debianutils",
                    "gettext",
                    "haveged",
                    "iproute2",
                    "iputils-ping",
                    "krb5-locales",
                    "nbd-client",
                    "nfs-common",
                    "open-iscsi",
                    "open-vm-tools",
                    "openssh-server",
                    "systemd-timesyncd",
                    "systemd-container",
                    "ubuntu-advantage-tools",
                    "xz-utils",
                    "tpm2-tools",
                    "dmsetup",
                    "mdadm",
                    "ncurses-term",
                    "networkd-dispatcher",
                    "packagekit-tools",
                    "publicsuffix",
                    "xdg-user-dirs",
                    "xxd",
                    "zerofree",
                ),
                # split out of systemd in 24.04
                ">=24.04": ("systemd-resolved",),
            },
            "amd64": {},
            "arm64": {},
        },
        "debian": {
            COMMON: {
                COMMON: (
                    "gdisk",
                    "fdisk",
                    "ca-certificates",
                    "conntrack",
                    "cloud-guest-utils",
                    "cryptsetup",
                    "iproute2",
                    "iputils-ping",
                    "openssh-server",
                    "systemd-timesyncd",
                    "xz-utils",
                    "tpm2-tools",
                    "dmsetup",
                ),
                ">=12": ("systemd-resolved",),
            },
        },
        "fedora": {
            COMMON: {
                COMMON: (
                    "cracklib-dicts",
                    "haveged",
                    "qemu-guest-agent",
                    "systemd-networkd",
                    "systemd-resolved",
                ),
            },
        },
        "alpine": {
            COMMON: {
                COMMON: (
                    "bash",
                    "ca-certificates",
                    "cloud-utils-growpart",
                    "cryptsetup",
                    "e2fsprogs-extra",
                    "eudev",
                    "openrc",
                    "openssh-server",
                    "sgdisk",
                    "tpm2-tools",
                    "xz",
                ),
            },
        },
    },
    families={
        "redhat": {
            COMMON: {
                COMMON: (
                    "gdisk",
                    "audit",
                    "cloud-utils-growpart",
                    "device-mapper",
                    "openssh-server",
                    "openssh-clients",
                    "polkit",
                    "which",
                    "cryptsetup",
                ),
            },
        },
        "arch": {
            COMMON: {
                COMMON: (
                    "gptfdisk",
                    "cryptsetup",
                    "openssh",
                    "which",
                ),
            },
        },
        "suse": {
            COMMON: {
                COMMON: (
                    "gptfdisk",
                    "cryptsetup",
                    "openssh",
                    "growpart",
                    "which",
                ),
            },
        },
    },
)


# ── Kernel ──────────────────────────────────────────────────────

KERNEL_PACKAGES = PackageMatrix(
    name="kernel",
    distros={
        "ubuntu": {
            "amd64": {
                ">=20.04, != 24.10": ("linux-image-generic-hwe-{{version}}",),
                # 24.10 ships no hwe kernel of its own
                "24.10": ("linux-image-generic-hwe-24.04",),
            },
        },
        "debian": {
            COMMON: {
                COMMON: ("linux-image-{{arch}}",),
            },
        },
        "fedora": {
            COMMON: {
                COMMON: ("kernel-modules-extra",),
            },
        },
        "alpine": {
            COMMON: {
                COMMON: ("linux-lts",),
            },
        },
    },
    families={
        "redhat": {
            COMMON: {
                COMMON: ("kernel", "kernel-modules"),
            },
        },
        "arch": {
            COMMON: {
                COMMON: ("linux",),
            },
        },
        "suse": {
            COMMON: {
                COMMON: ("kernel-default",),
            },
        },
    },
)


# ── Bootloaders ─────────────────────────────────────────────────

GRUB_PACKAGES = PackageMatrix(
    name="grub",
    distros={
        "ubuntu": {
            "amd64": {
                COMMON: (
                    "grub2",
                    "grub-efi-amd64-bin",
                    "grub-efi-amd64-signed",
                    "grub-pc-bin",
                    "coreutils",
                    "grub2-common",
                    "kbd",
                    "lldpd",
                    "neovim",
                    "shim-signed",
                    "snmpd",
                    "squashfs-tools",
                    "zfsutils-linux",
                ),
            },
            "arm64": {
                COMMON: (
                    "grub-efi-arm64",
                    "grub-efi-arm64-bin",
                    "grub-efi-arm64-signed",
                ),
            },
        },
        "debian": {
            "amd64": {
                COMMON: ("grub-efi-amd64-bin", "grub-efi-amd64-signed", "grub-pc-bin", "shim-signed"),
            },
            "arm64": {
                COMMON: ("grub-efi-arm64", "grub-efi-arm64-bin", "grub-efi-arm64-signed"),
            },
        },
    },
    families={
        "redhat": {
            "amd64": {
                COMMON: ("grub2-efi-x64", "grub2-efi-x64-modules", "grub2-pc", "shim-x64"),
            },
            "arm64": {
                COMMON: ("grub2-efi-aa64", "grub2-efi-aa64-modules", "shim-aa64"),
            },
            COMMON: {
                COMMON: ("grub2",),
            },
        },
        "alpine": {
            "amd64": {
                COMMON: ("grub-bios",),
            },
            COMMON: {
                COMMON: ("grub", "grub-efi"),
            },
        },
        "arch": {
            COMMON: {
                COMMON: ("grub", "efibootmgr"),
            },
        },
        "suse": {
            "amd64": {
                COMMON: ("grub2-x86_64-efi", "grub2-i386-pc"),
            },
            "arm64": {
                COMMON: ("grub2-arm64-efi",),
            },
            COMMON: {
                COMMON: ("grub2", "shim"),
            },
        },
    },
)

IMMUCORE_PACKAGES = PackageMatrix(
    name="immucore",
    distros={
        "ubuntu": {
            "amd64": {
                COMMON: (
                    "dracut",
                    "dracut-network",
                    "isc-dhcp-common",
                    "isc-dhcp-client",
                    "systemd-sysv",
                    "cloud-guest-utils",
                ),
                # livenet support was split into its own package in 22.04
                ">=22.04": ("dracut-live",),
            },
            "arm64": {},
        },
        "debian": {
            COMMON: {
                COMMON: ("dracut", "dracut-network", "isc-dhcp-client"),
            },
        },
        "fedora": {
            "amd64": {
                COMMON: ("dhcp-client",),
            },
            "arm64": {},
        },
    },
    families={
        "redhat": {
            COMMON: {
                COMMON: ("dracut", "dracut-live", "dracut-network", "dracut-squash", "squashfs-tools"),
            },
        },
        "alpine": {
            COMMON: {
                COMMON: ("mkinitfs", "squashfs-tools"),
            },
        },
        "arch": {
            COMMON: {
                COMMON: ("dracut", "squashfs-tools"),
            },
        },
        "suse": {
            COMMON: {
                COMMON: ("dracut", "squashfs"),
            },
        },
    },
)

SYSTEMD_BOOT_PACKAGES = PackageMatrix(
    name="systemd-boot",
    distros={
        "ubuntu": {
            COMMON: {
                COMMON: ("systemd",),
                # systemd-boot became its own package in 24.04
                ">=24.04": ("iucode-tool", "kmod", "linux-base", "systemd-boot"),
            },
        },
        "fedora": {
            COMMON: {
                COMMON: ("systemd-boot-unsigned", "kmod"),
            },
        },
    },
    families={
        "arch": {
            COMMON: {
                COMMON: ("systemd",),
            },
        },
    },
)
