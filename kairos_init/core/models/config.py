"""
Init configuration model — startup options for one invocation.

Built once by the CLI (``core.config.loader.build_config``) and passed
explicitly into every resolver and composer call.  It is frozen: there
is no process-wide mutable configuration.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kairos_init.core.models.stage import PIPELINE_CHOICES

# renovate-style pins for the default artifacts
DEFAULT_FRAMEWORK_VERSION = "v2.15.11"
DEFAULT_PROVIDER_PACKAGE = "quay.io/kairos/packages:provider-kairos-system-2.9.1"
DEFAULT_REGISTRY = "quay.io/kairos"

DEFAULT_OS_RELEASE_PATH = "/etc/os-release"
DEFAULT_EXPANSIONS_DIR = "/tmp/kairos-init"
DEFAULT_STAGE_EXTENSIONS_DIR = "/etc/kairos-init/stage-extensions"
DEFAULT_PLAN_DIR = "/etc/kairos"


class Variant(StrEnum):
    CORE = "core"
    STANDARD = "standard"


class KubernetesProvider(StrEnum):
    K3S = "k3s"
    K0S = "k0s"


# Board models that change boot behaviour (console, cmdline)
KNOWN_MODELS: tuple[str, ...] = ("generic", "rpi3", "rpi4", "agx-orin")


class VersionOverrides(BaseModel):
    """Pinned versions for bundled components; empty means default."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    agent: str = ""
    immucore: str = ""
    kcrypt_challenger: str = ""
    provider: str = ""
    edgevpn: str = ""
    k9s: str = ""
    nerdctl: str = ""
    kube_vip: str = ""


class InitConfig(BaseModel):
    """Everything a plan composition needs besides the detected system."""

    model_config = ConfigDict(frozen=True)

    level: str = "info"
    stage: str = "all"                  # pipeline selection: install, init or all
    model: str = "generic"
    variant: Variant = Variant.CORE
    kubernetes_provider: KubernetesProvider = KubernetesProvider.K3S
    kubernetes_version: str = ""
    framework_version: str = DEFAULT_FRAMEWORK_VERSION
    kairos_version: str = "v0.0.1"
    registry: str = DEFAULT_REGISTRY
    trusted_boot: bool = False
    fips: bool = False
    extensions: bool = False
    skip_steps: tuple[str, ...] = ()
    version_overrides: VersionOverrides = Field(default_factory=VersionOverrides)

    os_release_path: str = DEFAULT_OS_RELEASE_PATH
    expansions_dir: str = DEFAULT_EXPANSIONS_DIR
    stage_extensions_dir: str = DEFAULT_STAGE_EXTENSIONS_DIR
    output_path: str = ""               # empty = default per pipeline

    @field_validator("stage")
    @classmethod
    def _known_stage(cls, value: str) -> str:
        if value not in PIPELINE_CHOICES:
            raise ValueError(
                f"Unknown stage '{value}'. Valid values are {', '.join(PIPELINE_CHOICES)}"
            )
        return value

    @field_validator("skip_steps")
    @classmethod
    def _normalize_skip_steps(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(s.strip().lower() for s in value if s.strip())

    def skips(self, step: str) -> bool:
        """Whether a built-in step was disabled (case-insensitive)."""
        return step.lower() in self.skip_steps

    @property
    def is_standard(self) -> bool:
        return self.variant == Variant.STANDARD

    @property
    def release_version(self) -> str:
        """Kairos version, always prefixed with ``v`` for the upgrade checker."""
        version = self.kairos_version
        return version if version.startswith("v") else f"v{version}"

    @property
    def framework_tag(self) -> str:
        return f"{self.framework_version}-fips" if self.fips else self.framework_version

    def plan_output_path(self) -> str:
        """Where the composed plan is persisted for audit."""
        if self.output_path:
            return self.output_path
        if self.stage == "all":
            return f"{DEFAULT_PLAN_DIR}/kairos-init.yaml"
        return f"{DEFAULT_PLAN_DIR}/kairos-init-{self.stage}.yaml"
