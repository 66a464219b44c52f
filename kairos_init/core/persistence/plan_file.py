"""
Plan file persistence — atomic read/write for StagePlan.

The composed plan is written as YAML for audit next to the image
(``/etc/kairos/kairos-init.yaml`` by default).  Writes are atomic
(write to temp file, then rename) so a crash never leaves half a plan.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

import yaml

from kairos_init.core.models.stage import Stage, StagePlan

logger = logging.getLogger(__name__)


class _PlanDumper(yaml.SafeDumper):
    """SafeDumper that writes multi-line strings as literal blocks."""


def _str_representer(dumper: yaml.SafeDumper, value: str) -> yaml.ScalarNode:
    if "\n" in value:
        return dumper.represent_scalar("tag:yaml.org,2002:str", value, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", value)


_PlanDumper.add_representer(str, _str_representer)


def stage_to_dict(stage: Stage, exclude: set[str] | None = None) -> dict:
    """Serializable form of one stage: defaults and empty sections dropped."""
    data = stage.model_dump(mode="json", by_alias=True, exclude_defaults=True, exclude=exclude)
    return {k: v for k, v in data.items() if v not in ({}, [])}


def plan_to_dict(plan: StagePlan) -> dict:
    """Serializable form, aliases (``if``) used."""
    return {
        "stages": {
            phase: [stage_to_dict(s) for s in stages]
            for phase, stages in plan.stages.items()
        },
    }


def dump_yaml(data: dict) -> str:
    return yaml.dump(
        data, Dumper=_PlanDumper, sort_keys=False, default_flow_style=False, allow_unicode=True,
    )


def dump_plan(plan: StagePlan) -> str:
    """Render a plan as YAML, phases in pipeline order."""
    return dump_yaml(plan_to_dict(plan))


def load_plan(path: Path) -> StagePlan:
    """Load a previously saved plan.

    Raises:
        OSError: Unreadable file.
        yaml.YAMLError: Not YAML.
        pydantic.ValidationError: Not a plan.
    """
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    plan = StagePlan.model_validate(raw)
    logger.debug("Loaded plan from %s (%d stages)", path, plan.stage_count)
    return plan


def save_plan(plan: StagePlan, path: Path) -> None:
    """Save a plan to a YAML file (atomic write).

    Args:
        plan: The plan to save.
        path: Target path for the plan file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    content = dump_plan(plan)

    # Atomic write: temp file in same directory, then rename
    try:
        _fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".kairos-init_", suffix=".tmp")
        tmp = Path(tmp_path)
        try:
            with open(_fd, "w", encoding="utf-8") as f:
                f.write(content)
            tmp.replace(path)
            logger.debug("Plan saved to %s", path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise
    except OSError as e:
        logger.error("Failed to save plan to %s: %s", path, e)
        raise
