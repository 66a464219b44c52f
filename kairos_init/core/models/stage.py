"""
Stage and StagePlan models — the provisioning contract.

A Stage is one unit of provisioning work attached to a phase.  A
StagePlan is the ordered mapping of phase → stages that the execution
collaborator consumes.  Both are immutable once built: generators and
extension files produce Stages, the composer assembles them into a
StagePlan, and nobody touches either afterwards.

Phases belong to two pipelines whose order never changes:

    install:  before-install → install → after-install
    init:     before-init    → init    → after-init
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from kairos_init.core.models.system import Distro, Family

# ── Phases & pipelines ──────────────────────────────────────────

INSTALL_PHASES: tuple[str, ...] = ("before-install", "install", "after-install")
INIT_PHASES: tuple[str, ...] = ("before-init", "init", "after-init")

PIPELINES: dict[str, tuple[str, ...]] = {
    "install": INSTALL_PHASES,
    "init": INIT_PHASES,
}

# "all" runs install fully before init
PIPELINE_CHOICES: tuple[str, ...] = ("install", "init", "all")

ALL_PHASES: tuple[str, ...] = INSTALL_PHASES + INIT_PHASES


def pipelines_for(selection: str) -> tuple[str, ...]:
    """Expand a pipeline selection (install, init, all) into pipeline names."""
    if selection == "all":
        return ("install", "init")
    if selection in PIPELINES:
        return (selection,)
    raise ValueError(f"Unknown pipeline '{selection}'. Valid values: {', '.join(PIPELINE_CHOICES)}")


def phases_for(selection: str) -> tuple[str, ...]:
    """All phases covered by a pipeline selection, in execution order."""
    phases: tuple[str, ...] = ()
    for pipeline in pipelines_for(selection):
        phases += PIPELINES[pipeline]
    return phases


# ── Stage parts ─────────────────────────────────────────────────


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")


class _YipSection(_Frozen):
    """Part of yip's stage schema.

    Only the keys the built-in steps need are modelled.  Any other yip
    key (``users``, ``hostname``, ``sysctl``, ``only_arch`` …) is kept
    as-is and handed to yip untouched.
    """

    model_config = ConfigDict(extra="allow")


def _read_only(value: Mapping) -> Mapping:
    return MappingProxyType(dict(value))


class StagePredicate(_Frozen):
    """Gate evaluated by the execution collaborator, never by the composer.

    Empty fields match everything; a stage runs only when every
    populated field matches.
    """

    families: tuple[Family, ...] = ()
    distros: tuple[Distro, ...] = ()
    version: str = ""                   # constraint expression on the OS version
    service_manager: Literal["systemd", "openrc"] | None = None
    condition: str = Field(default="", alias="if")   # shell precondition

    @property
    def is_empty(self) -> bool:
        return not (
            self.families or self.distros or self.version
            or self.service_manager or self.condition
        )


class StagePackages(_YipSection):
    install: tuple[str, ...] = ()
    remove: tuple[str, ...] = ()
    refresh: bool = False
    upgrade: bool = False


class StageFile(_YipSection):
    """A file written by a stage."""

    path: str
    content: str = ""
    owner: int = 0
    group: int = 0
    permissions: int = 0o644


class StageDirectory(_YipSection):
    path: str
    owner: int = 0
    group: int = 0
    permissions: int = 0o755


class SystemctlOverride(_YipSection):
    """A drop-in written for a unit, e.g. to replace its ExecStart."""

    service: str
    content: str


class Systemctl(_YipSection):
    enable: tuple[str, ...] = ()
    disable: tuple[str, ...] = ()
    mask: tuple[str, ...] = ()
    overrides: tuple[SystemctlOverride, ...] = ()


class UnpackImage(_YipSection):
    """An OCI image whose rootfs is extracted into the target."""

    source: str
    target: str = "/"
    platform: str = ""                  # e.g. linux/arm64, empty = host


# ── Stage ───────────────────────────────────────────────────────


# yip gates that map onto a typed predicate field
_FOLDED_GATES: dict[str, str] = {
    "if": "if",
    "only_service_manager": "service_manager",
}


class Stage(_YipSection):
    """One unit of provisioning work.

    Extension files may write the shell precondition as a top-level
    ``if:`` key and the service manager gate as ``only_service_manager``
    (the yip convention); both are folded into ``predicate``.
    """

    name: str
    predicate: StagePredicate | None = None
    packages: StagePackages = Field(default_factory=StagePackages)
    files: tuple[StageFile, ...] = ()
    directories: tuple[StageDirectory, ...] = ()
    commands: tuple[str, ...] = ()
    systemctl: Systemctl = Field(default_factory=Systemctl)
    environment: Mapping[str, str] = Field(default_factory=dict, validate_default=True)
    environment_file: str = ""
    unpack_images: tuple[UnpackImage, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _fold_yip_gates(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not any(key in data for key in _FOLDED_GATES):
            return data
        data = dict(data)
        predicate = data.get("predicate") or {}
        if isinstance(predicate, StagePredicate):
            predicate = predicate.model_dump(by_alias=True)
        predicate = dict(predicate)
        for key, target in _FOLDED_GATES.items():
            if key in data:
                predicate[target] = data.pop(key)
        data["predicate"] = predicate
        return data

    @field_validator("predicate")
    @classmethod
    def _drop_empty_predicate(cls, value: StagePredicate | None) -> StagePredicate | None:
        if value is not None and value.is_empty:
            return None
        return value

    @field_validator("environment")
    @classmethod
    def _freeze_environment(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        return _read_only(value)

    @field_serializer("environment")
    def _dump_environment(self, value: Mapping[str, str]) -> dict[str, str]:
        return dict(value)

    @property
    def condition(self) -> str:
        """Shell precondition, or an empty string when unconditional."""
        return self.predicate.condition if self.predicate else ""


# ── Plan ────────────────────────────────────────────────────────


class StagePlan(BaseModel):
    """Ordered phase → stages mapping.

    Phases are always kept in their fixed pipeline order regardless of
    the order in which they were supplied.  The mapping is read-only.
    """

    model_config = ConfigDict(frozen=True)

    stages: Mapping[str, tuple[Stage, ...]] = Field(default_factory=dict, validate_default=True)

    @field_validator("stages")
    @classmethod
    def _canonical_phase_order(
        cls, value: Mapping[str, tuple[Stage, ...]],
    ) -> Mapping[str, tuple[Stage, ...]]:
        unknown = [p for p in value if p not in ALL_PHASES]
        if unknown:
            raise ValueError(f"Unknown phase(s): {', '.join(unknown)}")
        return _read_only({p: tuple(value[p]) for p in ALL_PHASES if p in value})

    @field_serializer("stages")
    def _dump_stages(self, value: Mapping[str, tuple[Stage, ...]]) -> dict[str, tuple[Stage, ...]]:
        return dict(value)

    @property
    def phases(self) -> list[str]:
        return list(self.stages)

    def stages_in(self, phase: str) -> tuple[Stage, ...]:
        return self.stages.get(phase, ())

    def ordered_stages(self) -> list[tuple[str, Stage]]:
        """Flatten to (phase, stage) pairs in execution order."""
        return [(phase, s) for phase, stages in self.stages.items() for s in stages]

    def subset(self, phases: tuple[str, ...] | list[str]) -> StagePlan:
        """A plan restricted to the given phases."""
        return StagePlan(stages={p: s for p, s in self.stages.items() if p in phases})

    @property
    def stage_count(self) -> int:
        return sum(len(s) for s in self.stages.values())
