"""
Stage generator building blocks.

A generator is a plain function ``(system, config, context) -> list[Stage]``.
Each one is registered under a step key (usable with ``--skip-step``)
in the static tables of ``install_steps`` and ``init_steps``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from kairos_init.core.data import ContentStore
from kairos_init.core.detection.kernel import KernelLocator, ModulesDirKernelLocator
from kairos_init.core.models.config import InitConfig
from kairos_init.core.models.stage import Stage, StagePredicate
from kairos_init.core.models.system import Distro, Family, SystemDescriptor


@dataclass
class StepContext:
    """Collaborators shared by every generator of one composition."""

    store: ContentStore = field(default_factory=ContentStore)
    kernel_locator: KernelLocator = field(default_factory=ModulesDirKernelLocator)


StageGenerator = Callable[[SystemDescriptor, InitConfig, StepContext], list[Stage]]


@dataclass(frozen=True)
class StepDefinition:
    key: str
    phase: str
    description: str
    generator: StageGenerator


# ── Predicate shorthands ────────────────────────────────────────


def on_families(*families: Family, **extra) -> StagePredicate:
    return StagePredicate(families=families, **extra)


def on_distros(*distros: Distro, **extra) -> StagePredicate:
    return StagePredicate(distros=distros, **extra)


def when(condition: str) -> StagePredicate:
    """Predicate holding only a shell precondition."""
    return StagePredicate(condition=condition)


SYSTEMD = StagePredicate(service_manager="systemd")
OPENRC = StagePredicate(service_manager="openrc")
