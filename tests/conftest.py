"""
Shared test fixtures and configuration.
"""

import textwrap
from pathlib import Path

import pytest

from kairos_init.core.data import ContentStore
from kairos_init.core.detection.kernel import StaticKernelLocator
from kairos_init.core.models.config import InitConfig
from kairos_init.core.models.system import Architecture, Distro, Family, SystemDescriptor
from kairos_init.core.stages.base import StepContext

KERNEL_VERSION = "6.8.0-45-generic"


@pytest.fixture
def ubuntu_system() -> SystemDescriptor:
    return SystemDescriptor(
        distro=Distro.UBUNTU, family=Family.DEBIAN, arch=Architecture.AMD64,
        version="24.04", name="Ubuntu 24.04.1 LTS",
    )


@pytest.fixture
def fedora_system() -> SystemDescriptor:
    return SystemDescriptor(
        distro=Distro.FEDORA, family=Family.REDHAT, arch=Architecture.AMD64,
        version="40", name="Fedora Linux 40",
    )


@pytest.fixture
def default_config() -> InitConfig:
    return InitConfig()


@pytest.fixture
def fake_kernel_locator() -> StaticKernelLocator:
    return StaticKernelLocator(KERNEL_VERSION)


@pytest.fixture
def step_context(fake_kernel_locator) -> StepContext:
    """Real assets, fixed kernel."""
    return StepContext(store=ContentStore(), kernel_locator=fake_kernel_locator)


@pytest.fixture
def os_release_file(tmp_path: Path):
    """Factory writing an os-release file and returning its path."""

    def _write(content: str) -> Path:
        path = tmp_path / "os-release"
        path.write_text(textwrap.dedent(content))
        return path

    return _write


@pytest.fixture
def write_fragment(tmp_path: Path):
    """Factory writing an extension fragment into a directory under tmp_path."""

    def _write(dirname: str, filename: str, content: str) -> Path:
        directory = tmp_path / dirname
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / filename
        path.write_text(textwrap.dedent(content))
        return path

    return _write


# ── Built image trees ───────────────────────────────────────────

KAIROS_RELEASE = textwrap.dedent("""\
    KAIROS_ID="kairos"
    KAIROS_ID_LIKE="kairos-core-ubuntu-24.04"
    KAIROS_NAME="kairos-core-ubuntu-24.04"
    KAIROS_VERSION="v3.2.1"
    KAIROS_ARCH="amd64"
    KAIROS_TARGETARCH="amd64"
    KAIROS_FLAVOR="ubuntu"
    KAIROS_FLAVOR_RELEASE="24.04"
    KAIROS_FAMILY="debian"
    KAIROS_MODEL="generic"
    KAIROS_VARIANT="core"
    KAIROS_BUG_REPORT_URL="https://github.com/kairos-io/kairos/issues"
    KAIROS_HOME_URL="https://github.com/kairos-io/kairos"
    KAIROS_RELEASE="v3.2.1"
""")

IMAGE_OS_RELEASE = textwrap.dedent("""\
    NAME="Ubuntu"
    VERSION_ID="24.04"
    ID=ubuntu
    ID_LIKE=debian
""")


def add_image_file(root: Path, path: str, content: str = "", mode: int = 0o644) -> Path:
    """Write ``path`` (absolute, as seen inside the image) under ``root``."""
    target = root / path.lstrip("/")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content)
    target.chmod(mode)
    return target


@pytest.fixture
def kairos_image(tmp_path: Path) -> Path:
    """Root of a complete core image: binaries, kernel, initrd, units, release."""
    root = tmp_path / "rootfs"
    for binary in ("immucore", "kairos-agent", "sudo", "less"):
        add_image_file(root, f"/usr/bin/{binary}", "#!/bin/sh\n", mode=0o755)
    add_image_file(root, "/system/discovery/kcrypt-discovery-challenger", "#!/bin/sh\n", mode=0o755)

    add_image_file(root, f"/boot/vmlinuz-{KERNEL_VERSION}", "kernel")
    (root / "boot" / "vmlinuz").symlink_to(f"/boot/vmlinuz-{KERNEL_VERSION}")
    add_image_file(root, "/boot/initrd", "initrd")

    for service in ("kairos-agent", "kairos-interactive", "kairos-recovery", "kairos-reset", "kairos-webui"):
        add_image_file(root, f"/etc/systemd/system/{service}.service", "[Unit]\n")
    add_image_file(root, "/etc/kairos-release", KAIROS_RELEASE)
    add_image_file(root, "/etc/os-release", IMAGE_OS_RELEASE)
    add_image_file(root, "/etc/ssh/sshd_config", "")
    (root / "var" / "lock").mkdir(parents=True)
    return root


@pytest.fixture
def image_file():
    """Helper adding a file to an image tree: ``image_file(root, path, content, mode)``."""
    return add_image_file
