"""
Tests for the built-in stage generators of the install and init pipelines.
"""

from pathlib import Path

import pytest

from kairos_init.core.data import ContentStore
from kairos_init.core.detection.kernel import ModulesDirKernelLocator
from kairos_init.core.errors import KernelNotFound, StageGeneratorError
from kairos_init.core.models.config import InitConfig, KubernetesProvider, Variant, VersionOverrides
from kairos_init.core.models.system import Architecture, Distro, Family, SystemDescriptor
from kairos_init.core.stages import init_steps, install_steps
from kairos_init.core.stages.base import StepContext
from kairos_init.core.stages.steps import step_keys, steps_for, steps_info

# matches the step_context fixture
KERNEL_VERSION = "6.8.0-45-generic"


def _names(stages):
    return [s.name for s in stages]


def _by_name(stages, name):
    return next(s for s in stages if s.name == name)


# ── Install: packages, framework, binaries ───────────────────────────


class TestInstallPackages:
    def test_single_stage(self, ubuntu_system, default_config, step_context):
        stages = install_steps.install_packages(ubuntu_system, default_config, step_context)
        assert _names(stages) == ["Install base packages"]
        packages = stages[0].packages
        assert packages.refresh and packages.upgrade
        assert "curl" in packages.install
        assert "linux-image-generic-hwe-24.04" in packages.install


class TestInstallFramework:
    def test_image_and_platform(self, ubuntu_system, default_config, step_context):
        stages = install_steps.install_framework(ubuntu_system, default_config, step_context)
        assert stages[0].condition == "test ! -d /etc/kairos"
        image = stages[1].unpack_images[0]
        assert image.source == "quay.io/kairos/framework:v2.15.11"
        assert image.platform == "linux/amd64"

    def test_fips_tag(self, ubuntu_system, step_context):
        config = InitConfig(fips=True, framework_version="v2.16.0", registry="registry.local/org")
        stages = install_steps.install_framework(ubuntu_system, config, step_context)
        assert stages[1].unpack_images[0].source == "registry.local/org/framework:v2.16.0-fips"

    def test_unknown_arch_has_no_platform(self, default_config, step_context):
        system = SystemDescriptor(distro=Distro.DEBIAN, family=Family.DEBIAN, version="12")
        stages = install_steps.install_framework(system, default_config, step_context)
        assert stages[1].unpack_images[0].platform == ""


class TestInstallBinaries:
    def test_nothing_without_overrides(self, ubuntu_system, default_config, step_context):
        assert install_steps.install_binaries(ubuntu_system, default_config, step_context) == []

    def test_overridden_agent(self, ubuntu_system, step_context):
        config = InitConfig(version_overrides=VersionOverrides(agent="v2.20.0"), fips=True)
        stages = install_steps.install_binaries(ubuntu_system, config, step_context)
        assert len(stages) == 1
        fetch = stages[0].commands[0]
        assert "kairos-agent/releases/download/v2.20.0/kairos-agent-v2.20.0-Linux-amd64-fips.tar.gz" in fetch
        assert "immucore" not in " ".join(stages[0].commands)


# ── Install: kubernetes provider ─────────────────────────────────────


class TestInstallProvider:
    def test_core_has_none(self, ubuntu_system, default_config, step_context):
        assert install_steps.install_provider(ubuntu_system, default_config, step_context) == []

    def test_k3s(self, ubuntu_system, step_context):
        config = InitConfig(variant=Variant.STANDARD, kubernetes_version="v1.31.1+k3s1")
        stages = install_steps.install_provider(ubuntu_system, config, step_context)
        assert _names(stages) == [
            "Install Kubernetes packages",
            "Install Provider packages",
            "Install Edgevpn packages",
            "Install K9s packages",
            "Install Nerdctl packages",
            "Install Kube-vip packages",
        ]
        commands = " ".join(stages[0].commands)
        assert "get.k3s.io" in commands
        assert "INSTALL_K3S_VERSION=v1.31.1+k3s1" in commands

    def test_k0s_service_units(self, ubuntu_system, step_context):
        config = InitConfig(variant=Variant.STANDARD, kubernetes_provider=KubernetesProvider.K0S)
        stages = install_steps.install_provider(ubuntu_system, config, step_context)
        systemd = _by_name(stages, "Create k0s services for systemd")
        openrc = _by_name(stages, "Create k0s services for openrc")
        assert systemd.predicate.service_manager == "systemd"
        assert openrc.predicate.service_manager == "openrc"
        assert openrc.files[0].permissions == 0o755
        assert "get.k0s.sh" in stages[0].commands[0]

    def test_bundle_versions(self, ubuntu_system, step_context):
        config = InitConfig(
            variant=Variant.STANDARD,
            version_overrides=VersionOverrides(provider="v2.10.0", k9s="0.40.0"),
        )
        stages = install_steps.install_provider(ubuntu_system, config, step_context)
        sources = {s.name: s.unpack_images[0].source for s in stages if s.unpack_images}
        assert sources["Install Provider packages"] == "quay.io/kairos/packages:provider-kairos-system-2.10.0"
        assert sources["Install K9s packages"] == "quay.io/kairos/packages:k9s-utils-0.40.0"
        assert sources["Install Edgevpn packages"] == "quay.io/kairos/packages:edgevpn-utils-0.30.2"


# ── Install: files ───────────────────────────────────────────────────


class TestInstallFiles:
    def test_bootargs_skipped_for_trusted_boot(self, ubuntu_system, step_context):
        config = InitConfig(trusted_boot=True)
        assert install_steps.grub_boot_args(ubuntu_system, config, step_context) == []

    def test_bootargs(self, ubuntu_system, default_config, step_context):
        stages = install_steps.grub_boot_args(ubuntu_system, default_config, step_context)
        assert stages[0].files[0].path == "/etc/cos/bootargs.cfg"
        assert stages[0].files[0].content

    def test_services_units(self, ubuntu_system, default_config, step_context):
        stages = install_steps.install_services(ubuntu_system, default_config, step_context)
        units = _by_name(stages, "Create kairos services")
        assert len(units.files) == len(install_steps.KAIROS_UNITS)
        assert units.predicate.service_manager == "systemd"

    def test_missing_asset(self, ubuntu_system, default_config):
        ctx = StepContext(store=ContentStore.from_mapping({}))
        with pytest.raises(StageGeneratorError):
            install_steps.branding(ubuntu_system, default_config, ctx)


# ── Init: release, kernel, initrd ────────────────────────────────────


class TestKairosRelease:
    def test_env(self, ubuntu_system, step_context):
        config = InitConfig(kairos_version="3.2.1", fips=False, trusted_boot=True)
        stage = init_steps.kairos_release(ubuntu_system, config, step_context)[0]
        env = stage.environment
        assert stage.environment_file == "/etc/kairos-release"
        assert env["KAIROS_VERSION"] == "v3.2.1"
        assert env["KAIROS_FLAVOR"] == "ubuntu"
        assert env["KAIROS_FLAVOR_RELEASE"] == "24.04"
        assert env["KAIROS_ID_LIKE"] == "kairos-core-ubuntu-24.04"
        assert env["KAIROS_FIPS"] == "false"
        assert env["KAIROS_TRUSTED_BOOT"] == "true"
        assert "KAIROS_SOFTWARE_VERSION" not in env

    def test_opensuse_flavor(self, default_config, step_context):
        system = SystemDescriptor(
            distro=Distro.OPENSUSE_LEAP, family=Family.SUSE, arch=Architecture.AMD64, version="15.6",
        )
        env = init_steps.kairos_release(system, default_config, step_context)[0].environment
        assert env["KAIROS_FLAVOR"] == "opensuse"
        assert env["KAIROS_FLAVOR_RELEASE"] == "leap-15.6"

    def test_software_version(self, ubuntu_system, step_context):
        config = InitConfig(variant=Variant.STANDARD, kubernetes_version="v1.31.1+k3s1")
        env = init_steps.kairos_release(ubuntu_system, config, step_context)[0].environment
        assert env["KAIROS_SOFTWARE_VERSION"] == "v1.31.1+k3s1"
        assert env["KAIROS_SOFTWARE_VERSION_PREFIX"] == "k3s"


class TestKernel:
    def test_links_located_kernel(self, ubuntu_system, default_config, step_context):
        stages = init_steps.kernel(ubuntu_system, default_config, step_context)
        link = next(s for s in stages if s.condition == f"test -f /boot/vmlinuz-{KERNEL_VERSION}")
        assert link.commands == (f"ln -s /boot/vmlinuz-{KERNEL_VERSION} /boot/vmlinuz",)

    def test_trusted_copy_only_on_redhat(self, ubuntu_system, default_config, step_context):
        stages = init_steps.kernel(ubuntu_system, default_config, step_context)
        copy = _by_name(stages, "Copy kernel for Trusted Boot")
        assert copy.predicate.families == (Family.REDHAT,)

    def test_no_kernel(self, ubuntu_system, default_config, tmp_path: Path):
        ctx = StepContext(kernel_locator=ModulesDirKernelLocator(tmp_path / "missing"))
        with pytest.raises(KernelNotFound):
            init_steps.kernel(ubuntu_system, default_config, ctx)


class TestInitrd:
    def test_trusted_only_removes(self, ubuntu_system, step_context):
        stages = init_steps.initrd(ubuntu_system, InitConfig(trusted_boot=True), step_context)
        assert _names(stages) == ["Remove all initrds"]

    def test_rebuild(self, ubuntu_system, default_config, step_context):
        stages = init_steps.initrd(ubuntu_system, default_config, step_context)
        dracut = _by_name(stages, "Create new initrd")
        assert dracut.commands[-1] == f"dracut -f /boot/initrd {KERNEL_VERSION}"
        alpine = _by_name(stages, "Create new initrd for Alpine")
        assert alpine.predicate.families == (Family.ALPINE,)

    def test_debug_is_verbose(self, ubuntu_system, step_context):
        stages = init_steps.initrd(ubuntu_system, InitConfig(level="debug"), step_context)
        assert "dracut -v -f" in _by_name(stages, "Create new initrd").commands[-1]


class TestInitramfsConfigs:
    def test_skipped_for_trusted_boot(self, ubuntu_system, step_context):
        assert init_steps.initramfs_configs(ubuntu_system, InitConfig(trusted_boot=True), step_context) == []

    def test_skipped_for_alpine(self, default_config, step_context):
        system = SystemDescriptor(distro=Distro.ALPINE, family=Family.ALPINE, version="3.19")
        assert init_steps.initramfs_configs(system, default_config, step_context) == []

    def test_ubuntu_2204_no_sysext(self, default_config, step_context):
        system = SystemDescriptor(distro=Distro.UBUNTU, family=Family.DEBIAN, version="22.04")
        stages = init_steps.initramfs_configs(system, default_config, step_context)
        assert "Add sysext module to initramfs" not in _names(stages)
        network = _by_name(stages, "Add network module to initramfs")
        assert "systemd-networkd network-legacy" in network.files[0].content

    def test_ubuntu_2404(self, ubuntu_system, default_config, step_context):
        stages = init_steps.initramfs_configs(ubuntu_system, default_config, step_context)
        assert "Add sysext module to initramfs" in _names(stages)
        multipath = _by_name(stages, "Add Multipath module to initramfs for Ubuntu 21.04 and above")
        assert multipath.predicate.version == ">=21.04"

    def test_redhat_network_choice(self, fedora_system, default_config, step_context):
        stages = init_steps.initramfs_configs(fedora_system, default_config, step_context)
        network = [s for s in stages if s.name == "Add network module to initramfs"]
        assert len(network) == 2
        assert "network-manager network" in network[0].files[0].content
        assert "systemd-networkd network" in network[1].files[0].content
        assert "network-legacy" not in network[0].files[0].content

    def test_fips(self, fedora_system, step_context):
        stages = init_steps.initramfs_configs(fedora_system, InitConfig(fips=True), step_context)
        assert "Add fips support to initramfs" in _names(stages)


# ── Init: workarounds, services, cleanup ─────────────────────────────


class TestWorkarounds:
    def test_nvdimm_for_trusted_ubuntu(self, ubuntu_system, step_context):
        stages = init_steps.workarounds(ubuntu_system, InitConfig(trusted_boot=True), step_context)
        nvdimm = _by_name(stages, "Download linux-modules-extra for nvdimm modules")
        assert nvdimm.predicate.version == "<25"
        assert f"apt-get download linux-modules-extra-{KERNEL_VERSION}" in nvdimm.commands

    def test_missing_kernel_is_not_fatal(self, ubuntu_system, tmp_path: Path):
        ctx = StepContext(kernel_locator=ModulesDirKernelLocator(tmp_path / "missing"))
        stages = init_steps.workarounds(ubuntu_system, InitConfig(trusted_boot=True), ctx)
        assert len(stages) == 3


class TestServicesAndCleanup:
    def test_default_systemd_override(self, ubuntu_system, default_config, step_context):
        stages = init_steps.services(ubuntu_system, default_config, step_context)
        default = _by_name(stages, "Configure default systemd services")
        assert default.systemctl.mask == ("systemd-firstboot.service",)
        assert default.systemctl.overrides[0].service == "systemd-networkd-wait-online"

    def test_cleanup_per_family(self, ubuntu_system, default_config, step_context):
        stages = init_steps.cleanup(ubuntu_system, default_config, step_context)
        families = {s.predicate.families for s in stages if s.name == "Cleanup"}
        assert len(families) == 5


# ── Registry ─────────────────────────────────────────────────────────


class TestStepRegistry:
    def test_phases(self):
        assert [s.key for s in steps_for("install")][0] == "installPackages"
        assert [s.key for s in steps_for("init")][0] == "kairosRelease"
        assert steps_for("after-init") == []

    def test_keys_include_pipelines(self):
        keys = step_keys()
        assert "install" in keys
        assert "init" in keys
        assert "initramfsConfigs" in keys
        assert keys == sorted(keys)

    def test_descriptions(self):
        assert all(description for _, description in steps_info())
