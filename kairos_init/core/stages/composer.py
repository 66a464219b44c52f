"""
Stage Plan Composer — descriptor + config → ordered StagePlan.

Ordering contract:

    phases       fixed pipeline order (before-install … after-init)
    in a phase   built-in steps in registration order, then expansion
                 fragments, then stage-extension fragments

For ``all`` with a runner, the install pipeline is composed and
executed before the init pipeline is composed: the init steps locate
the kernel the install steps just put on disk.

Predicates are carried on the stages untouched; evaluating them is the
runner's job.  Any generator failure aborts the whole composition with
a ``PlanCompositionError`` naming the phase.  Phases already executed
are not rolled back.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from kairos_init.core.engine.runner import PhaseRunner
from kairos_init.core.errors import KairosInitError, PlanCompositionError, ResolutionError
from kairos_init.core.models.config import InitConfig
from kairos_init.core.models.stage import ALL_PHASES, PIPELINES, Stage, StagePlan, phases_for, pipelines_for
from kairos_init.core.models.system import Distro, SystemDescriptor
from kairos_init.core.stages.base import StepContext
from kairos_init.core.stages.extensions import FragmentProvider, default_providers
from kairos_init.core.stages.steps import steps_for

logger = logging.getLogger(__name__)

FIPS_UBUNTU_MESSAGE = (
    "FIPS is not supported on Ubuntu without a PRO account and extra packages. "
    "See https://github.com/kairos-io/kairos/blob/master/examples/builds/ubuntu-fips/Dockerfile "
    "for an example on how to build it"
)


def _builtin_stages(
    phase: str,
    pipeline: str,
    system: SystemDescriptor,
    config: InitConfig,
    context: StepContext,
) -> list[Stage]:
    if config.skips(pipeline):
        logger.warning("Skipping all built-in %s steps", pipeline)
        return []

    stages: list[Stage] = []
    for step in steps_for(phase):
        if config.skips(step.key):
            logger.warning("Skipping step %s", step.key)
            continue
        try:
            generated = step.generator(system, config, context)
        except (KairosInitError, OSError) as e:
            logger.error("Step %s failed: %s", step.key, e)
            raise PlanCompositionError(phase, e) from e
        logger.debug("Step %s produced %d stage(s)", step.key, len(generated))
        stages.extend(generated)
    return stages


def compose_phase(
    phase: str,
    system: SystemDescriptor,
    config: InitConfig,
    context: StepContext,
    providers: Sequence[FragmentProvider] = (),
) -> list[Stage]:
    """Built-ins of one phase followed by every provider's fragments."""
    pipeline = next((name for name, phases in PIPELINES.items() if phase in phases), None)
    if pipeline is None:
        raise ValueError(f"Unknown phase '{phase}'. Valid values: {', '.join(ALL_PHASES)}")
    stages = _builtin_stages(phase, pipeline, system, config, context)
    for provider in providers:
        stages.extend(provider.stages_for(phase))
    return stages


def _compose_pipeline(
    pipeline: str,
    system: SystemDescriptor,
    config: InitConfig,
    context: StepContext,
    providers: Sequence[FragmentProvider],
) -> dict[str, list[Stage]]:
    return {
        phase: compose_phase(phase, system, config, context, providers)
        for phase in PIPELINES[pipeline]
    }


def compose_plan(
    system: SystemDescriptor,
    config: InitConfig,
    *,
    context: StepContext | None = None,
    providers: Sequence[FragmentProvider] | None = None,
    runner: PhaseRunner | None = None,
    root: Path = Path("/"),
) -> StagePlan:
    """Compose the plan for the configured pipeline selection.

    Args:
        system: Detected target.
        config: Startup configuration.
        context: Content store and kernel locator (defaults: on-disk).
        providers: Fragment providers; default per ``config.extensions``.
        runner: When set and the selection is ``all``, install phases
            are executed before init is composed.
        root: Filesystem root handed to the runner.

    Raises:
        PlanCompositionError: A step failed; no partial plan is returned.
        PhaseExecutionError: The runner failed on an install phase.
    """
    context = context or StepContext()
    if providers is None:
        providers = default_providers(config)

    pipelines = pipelines_for(config.stage)
    if config.fips and system.distro == Distro.UBUNTU:
        raise PlanCompositionError(PIPELINES[pipelines[0]][1], ResolutionError(FIPS_UBUNTU_MESSAGE))

    logger.info(
        "Composing %s plan for %s %s (%s)",
        config.stage, system.distro.value, system.version or "-", system.arch.value,
    )
    stages: dict[str, list[Stage]] = {}
    for pipeline in pipelines:
        stages.update(_compose_pipeline(pipeline, system, config, context, providers))

        if runner is not None and pipeline == "install" and "init" in pipelines:
            partial = StagePlan(stages=stages)
            for phase in PIPELINES["install"]:
                runner.run_phase(root, phase, partial)

    plan = StagePlan(stages=stages)
    logger.info("Plan has %d stage(s) across %s", plan.stage_count, ", ".join(plan.phases))
    return plan


def execute_plan(
    plan: StagePlan,
    runner: PhaseRunner,
    root: Path = Path("/"),
    phases: Sequence[str] | None = None,
) -> list[str]:
    """Run ``phases`` (default: every phase of the plan) in pipeline order.

    Returns:
        The phases that were run.
    """
    selected = [p for p in plan.phases if phases is None or p in phases]
    for phase in selected:
        runner.run_phase(root, phase, plan)
    return selected


def remaining_phases(config: InitConfig, runner_used_for_install: bool) -> tuple[str, ...]:
    """Phases still to execute after ``compose_plan`` returned."""
    phases = phases_for(config.stage)
    if runner_used_for_install and config.stage == "all":
        return tuple(p for p in phases if p not in PIPELINES["install"])
    return phases
