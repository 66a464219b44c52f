"""
Domain models — Pydantic types for kairos-init.

All models are re-exported here for convenient access:

    from kairos_init.core.models import SystemDescriptor, Stage, StagePlan, InitConfig
"""

from kairos_init.core.models.config import (
    InitConfig,
    KubernetesProvider,
    Variant,
    VersionOverrides,
)
from kairos_init.core.models.packages import PackageMatrix, VersionMap
from kairos_init.core.models.stage import (
    ALL_PHASES,
    INIT_PHASES,
    INSTALL_PHASES,
    PIPELINES,
    Stage,
    StageDirectory,
    StageFile,
    StagePackages,
    StagePlan,
    StagePredicate,
    Systemctl,
    SystemctlOverride,
    UnpackImage,
    phases_for,
    pipelines_for,
)
from kairos_init.core.models.system import (
    COMMON,
    Architecture,
    Distro,
    Family,
    SystemDescriptor,
)

__all__ = [
    "ALL_PHASES",
    "Architecture",
    "COMMON",
    "Distro",
    "Family",
    "INIT_PHASES",
    "INSTALL_PHASES",
    # config.py
    "InitConfig",
    "KubernetesProvider",
    "PIPELINES",
    # packages.py
    "PackageMatrix",
    # stage.py
    "Stage",
    "StageDirectory",
    "StageFile",
    "StagePackages",
    "StagePlan",
    "StagePredicate",
    # system.py
    "SystemDescriptor",
    "Systemctl",
    "SystemctlOverride",
    "UnpackImage",
    "Variant",
    "VersionMap",
    "VersionOverrides",
    "phases_for",
    "pipelines_for",
]
