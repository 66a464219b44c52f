"""
Tests for image validation — every check, run against tmp_path image trees.
"""

import subprocess
from pathlib import Path

import pytest

from kairos_init.core.models.config import InitConfig, KubernetesProvider, Variant
from kairos_init.core.models.system import Distro, Family, SystemDescriptor
from kairos_init.core.validation.image import ValidationReport, validate_image

NO_LSINITRD_WARNING = "[INITRD] lsinitrd not found, cannot check initrd contents"


def _validate(root: Path, system: SystemDescriptor, config: InitConfig | None = None, **kwargs) -> ValidationReport:
    kwargs.setdefault("lsinitrd", None)
    return validate_image(config or InitConfig(), system, root, **kwargs)


class FakeCompleted:
    def __init__(self, stdout: str = "", returncode: int = 0) -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = ""


# ── Complete image ───────────────────────────────────────────────────


class TestCompleteImage:
    def test_passes(self, kairos_image, ubuntu_system):
        report = _validate(kairos_image, ubuntu_system)
        assert report.errors == []
        assert report.valid
        assert report.warnings == [NO_LSINITRD_WARNING]

    def test_to_dict(self, kairos_image, ubuntu_system):
        data = _validate(kairos_image, ubuntu_system).to_dict()
        assert data == {"valid": True, "errors": [], "warnings": [NO_LSINITRD_WARNING]}

    def test_every_problem_collected(self, tmp_path, ubuntu_system):
        report = _validate(tmp_path, ubuntu_system)
        assert not report.valid
        tags = {err.split("]")[0] + "]" for err in report.errors}
        assert tags == {"[BINARIES]", "[FILES]", "[SERVICES]", "[RELEASE]", "[DIRS]"}
        assert "[FILES] file missing /boot/vmlinuz" in report.errors
        assert "[FILES] file missing /boot/initrd" in report.errors


# ── Binaries ─────────────────────────────────────────────────────────


class TestBinaries:
    def test_missing(self, kairos_image, ubuntu_system):
        (kairos_image / "usr" / "bin" / "sudo").unlink()
        report = _validate(kairos_image, ubuntu_system)
        assert report.errors == ["[BINARIES] could not find binary sudo"]

    def test_not_executable(self, kairos_image, ubuntu_system):
        (kairos_image / "usr" / "bin" / "less").chmod(0o644)
        assert "[BINARIES] could not find binary less" in _validate(kairos_image, ubuntu_system).errors

    def test_search_dirs(self, kairos_image, ubuntu_system):
        report = _validate(kairos_image, ubuntu_system, search_dirs=("/usr/bin",))
        assert report.errors == ["[BINARIES] could not find binary kcrypt-discovery-challenger"]

    @pytest.mark.parametrize("provider,binary", [
        (KubernetesProvider.K3S, "k3s"),
        (KubernetesProvider.K0S, "k0s"),
    ])
    def test_standard_needs_provider(self, kairos_image, ubuntu_system, provider, binary):
        config = InitConfig(variant=Variant.STANDARD, kubernetes_provider=provider)
        errors = _validate(kairos_image, ubuntu_system, config).errors
        for name in ("agent-provider-kairos", "kairos", "edgevpn", binary):
            assert f"[BINARIES] could not find binary {name}" in errors


# ── Files ────────────────────────────────────────────────────────────


class TestFiles:
    def test_dangling_kernel_link(self, kairos_image, ubuntu_system):
        (kairos_image / "boot" / "vmlinuz-6.8.0-45-generic").unlink()
        report = _validate(kairos_image, ubuntu_system)
        assert report.errors == ["[FILES] /boot/vmlinuz symlink does not resolve"]

    def test_relative_kernel_link(self, kairos_image, ubuntu_system):
        link = kairos_image / "boot" / "vmlinuz"
        link.unlink()
        link.symlink_to("vmlinuz-6.8.0-45-generic")
        assert _validate(kairos_image, ubuntu_system).valid

    def test_plain_kernel_file(self, kairos_image, ubuntu_system, image_file):
        (kairos_image / "boot" / "vmlinuz").unlink()
        image_file(kairos_image, "/boot/vmlinuz", "kernel")
        assert _validate(kairos_image, ubuntu_system).valid

    def test_missing_initrd(self, kairos_image, ubuntu_system):
        (kairos_image / "boot" / "initrd").unlink()
        assert _validate(kairos_image, ubuntu_system).errors == ["[FILES] file missing /boot/initrd"]

    def test_trusted_boot_needs_no_initrd(self, kairos_image, ubuntu_system):
        (kairos_image / "boot" / "initrd").unlink()
        report = _validate(kairos_image, ubuntu_system, InitConfig(trusted_boot=True))
        assert report.valid
        assert report.warnings == []


# ── Services ─────────────────────────────────────────────────────────


class TestServices:
    def test_missing(self, kairos_image, ubuntu_system):
        (kairos_image / "etc" / "systemd" / "system" / "kairos-webui.service").unlink()
        assert _validate(kairos_image, ubuntu_system).errors == ["[SERVICES] service kairos-webui not found"]

    def test_alpine_skipped(self, kairos_image):
        alpine = SystemDescriptor(distro=Distro.ALPINE, family=Family.ALPINE, version="3.20")
        for unit in (kairos_image / "etc" / "systemd" / "system").iterdir():
            unit.unlink()
        assert _validate(kairos_image, alpine).valid

    def test_k0s_units(self, kairos_image, ubuntu_system):
        config = InitConfig(variant=Variant.STANDARD, kubernetes_provider=KubernetesProvider.K0S)
        errors = _validate(kairos_image, ubuntu_system, config).errors
        assert "[SERVICES] service k0scontroller not found" in errors
        assert "[SERVICES] service k0sworker not found" in errors
        assert "[SERVICES] service k3s not found" not in errors


# ── kairos-release ───────────────────────────────────────────────────


class TestRelease:
    def test_missing_file(self, kairos_image, ubuntu_system):
        (kairos_image / "etc" / "kairos-release").unlink()
        assert _validate(kairos_image, ubuntu_system).errors == ["[RELEASE] could not open kairos-release file"]

    def test_empty_key(self, kairos_image, ubuntu_system):
        release = kairos_image / "etc" / "kairos-release"
        release.write_text(release.read_text().replace('KAIROS_MODEL="generic"', 'KAIROS_MODEL=""'))
        assert _validate(kairos_image, ubuntu_system).errors == [
            "[RELEASE] key KAIROS_MODEL not found or empty in kairos-release",
        ]

    def test_standard_keys(self, kairos_image, ubuntu_system):
        config = InitConfig(variant=Variant.STANDARD)
        errors = _validate(kairos_image, ubuntu_system, config).errors
        assert "[RELEASE] KAIROS_VARIANT is not standard" in errors
        assert "[RELEASE] KAIROS_SOFTWARE_VERSION is empty" in errors
        assert "[RELEASE] KAIROS_SOFTWARE_VERSION_PREFIX is empty" in errors


# ── Dirs & ssh ───────────────────────────────────────────────────────


class TestDirsAndSsh:
    def test_var_lock(self, kairos_image, ubuntu_system):
        (kairos_image / "var" / "lock").rmdir()
        assert _validate(kairos_image, ubuntu_system).errors == ["[DIRS] directory /var/lock does not exist"]

    def test_host_keys_rejected(self, kairos_image, ubuntu_system, image_file):
        image_file(kairos_image, "/etc/ssh/ssh_host_rsa_key", "secret", mode=0o600)
        image_file(kairos_image, "/etc/ssh/ssh_host_ed25519_key", "secret", mode=0o600)
        image_file(kairos_image, "/etc/ssh/ssh_host_rsa_key.pub", "public")
        assert _validate(kairos_image, ubuntu_system).errors == [
            "[SSH] found SSH host keys in the system: "
            "/etc/ssh/ssh_host_ed25519_key, /etc/ssh/ssh_host_rsa_key",
        ]


# ── initrd listing ───────────────────────────────────────────────────


class TestInitrd:
    @pytest.fixture
    def lsinitrd(self, tmp_path: Path) -> str:
        path = tmp_path / "lsinitrd"
        path.write_text("#!/bin/sh\n")
        path.chmod(0o755)
        return str(path)

    def test_contents_checked(self, kairos_image, ubuntu_system, lsinitrd, monkeypatch):
        calls = []

        def _run(command, **kwargs):
            calls.append(command)
            return FakeCompleted(stdout="usr/bin/immucore\nusr/lib/dracut\n")

        monkeypatch.setattr(subprocess, "run", _run)
        report = _validate(kairos_image, ubuntu_system, lsinitrd=lsinitrd)
        assert calls == [[lsinitrd, str(kairos_image / "boot" / "initrd")]]
        assert report.errors == ["[INITRD] did not find kairos-agent in the initrd"]
        assert report.warnings == []

    def test_listing_failure(self, kairos_image, ubuntu_system, lsinitrd, monkeypatch):
        monkeypatch.setattr(subprocess, "run", lambda command, **kwargs: FakeCompleted(returncode=1))
        errors = _validate(kairos_image, ubuntu_system, lsinitrd=lsinitrd).errors
        assert errors[0] == "[INITRD] failed checking initrd contents: exit code 1"
        assert "[INITRD] did not find immucore in the initrd" in errors

    def test_skipped_for_trusted_boot(self, kairos_image, ubuntu_system, lsinitrd, monkeypatch):
        def _run(command, **kwargs):
            raise AssertionError("lsinitrd must not run for trusted boot")

        monkeypatch.setattr(subprocess, "run", _run)
        assert _validate(kairos_image, ubuntu_system, InitConfig(trusted_boot=True), lsinitrd=lsinitrd).valid
