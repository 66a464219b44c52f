"""
Configuration loader — CLI flags + environment + overrides file → InitConfig.

This is the only place that reads the environment for configuration.
Everything downstream receives the frozen ``InitConfig`` explicitly.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from kairos_init.core.errors import ConfigError, VersionParseError
from kairos_init.core.models.config import (
    DEFAULT_EXPANSIONS_DIR,
    DEFAULT_STAGE_EXTENSIONS_DIR,
    KNOWN_MODELS,
    InitConfig,
    KubernetesProvider,
    Variant,
    VersionOverrides,
)
from kairos_init.core.packages.constraint import parse_version

logger = logging.getLogger(__name__)

# Default overrides file, read when --version-overrides is not given
DEFAULT_VERSION_OVERRIDES_PATH = Path("/etc/kairos/.init_versions.yaml")

EXPANSIONS_ENV = "KAIROS_INIT_EXPANSIONS_DIR"
STAGE_EXTENSIONS_ENV = "KAIROS_INIT_STAGE_EXTENSIONS_DIR"


def load_version_overrides(path: Path | None = None) -> VersionOverrides:
    """Load pinned component versions.

    Args:
        path: Overrides YAML (default: /etc/kairos/.init_versions.yaml).

    Returns:
        The overrides; all empty when the file does not exist.

    Raises:
        ConfigError: If the file exists but is not a valid overrides mapping.
    """
    path = path or DEFAULT_VERSION_OVERRIDES_PATH
    if not path.is_file():
        logger.debug("No version overrides at %s", path)
        return VersionOverrides()

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return VersionOverrides()
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # Accept kebab-case keys as written by hand
    data = {str(k).replace("-", "_"): "" if v is None else str(v) for k, v in data.items()}
    try:
        overrides = VersionOverrides.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid version overrides in {path}: {e}") from e

    pinned = {k: v for k, v in overrides.model_dump().items() if v}
    logger.info("Loaded version overrides from %s: %s", path, pinned)
    return overrides


def _choice(enum_type: type, value: str, label: str) -> Any:
    try:
        return enum_type(value.lower())
    except ValueError:
        valid = ", ".join(m.value for m in enum_type)
        raise ConfigError(f"invalid {label} '{value}'. Valid values are {valid}") from None


def build_config(
    *,
    level: str = "info",
    stage: str = "all",
    model: str = "generic",
    variant: str = "core",
    kubernetes_provider: str = "k3s",
    kubernetes_version: str = "",
    framework_version: str | None = None,
    kairos_version: str | None = None,
    registry: str | None = None,
    trusted_boot: bool = False,
    fips: bool = False,
    extensions: bool = False,
    skip_steps: tuple[str, ...] | list[str] = (),
    version_overrides: Path | None = None,
    os_release_path: str | None = None,
    output_path: str = "",
    environ: dict[str, str] | None = None,
) -> InitConfig:
    """Validate startup options and build the frozen configuration.

    Raises:
        ConfigError: Unknown variant, provider, model or stage, an
            unparseable kairos version, or an invalid overrides file.
    """
    env = os.environ if environ is None else environ

    variant_value = _choice(Variant, variant, "variant")
    provider_value = _choice(KubernetesProvider, kubernetes_provider, "Kubernetes provider")
    if model not in KNOWN_MODELS:
        raise ConfigError(f"invalid model '{model}'. Valid values are {', '.join(KNOWN_MODELS)}")

    if kairos_version:
        try:
            parse_version(kairos_version)
        except VersionParseError as e:
            raise ConfigError(f"invalid kairos version: {e}") from e

    options: dict[str, Any] = {
        "level": level,
        "stage": stage,
        "model": model,
        "variant": variant_value,
        "kubernetes_provider": provider_value,
        "kubernetes_version": kubernetes_version,
        "trusted_boot": trusted_boot,
        "fips": fips,
        "extensions": extensions,
        "skip_steps": tuple(skip_steps),
        "version_overrides": load_version_overrides(version_overrides),
        "expansions_dir": env.get(EXPANSIONS_ENV) or DEFAULT_EXPANSIONS_DIR,
        "stage_extensions_dir": env.get(STAGE_EXTENSIONS_ENV) or DEFAULT_STAGE_EXTENSIONS_DIR,
        "output_path": output_path,
    }
    # Unset flags keep the model defaults
    for key, value in (
        ("framework_version", framework_version),
        ("kairos_version", kairos_version),
        ("registry", registry),
        ("os_release_path", os_release_path),
    ):
        if value:
            options[key] = value

    try:
        config = InitConfig(**options)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    logger.debug("Configuration: %s", config.model_dump(mode="json"))
    return config
