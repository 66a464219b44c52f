"""
Built-in step registry.

Every built-in generator has a step key.  Passing a key to
``--skip-step`` drops that generator; passing a pipeline key
(``install`` or ``init``) drops every built-in of that pipeline while
extension fragments still apply.  Keys match case-insensitively.
"""

from __future__ import annotations

from kairos_init.core.stages.base import StepDefinition
from kairos_init.core.stages.init_steps import INIT_STEPS
from kairos_init.core.stages.install_steps import INSTALL_STEPS

BUILTIN_STEPS: dict[str, list[StepDefinition]] = {
    "install": INSTALL_STEPS,
    "init": INIT_STEPS,
}

_PIPELINE_DESCRIPTIONS = {
    "install": "All built-in steps of the install pipeline",
    "init": "All built-in steps of the init pipeline",
}


def steps_for(phase: str) -> list[StepDefinition]:
    """Built-in steps of a phase, in registration order."""
    return [s for steps in BUILTIN_STEPS.values() for s in steps if s.phase == phase]


def steps_info() -> list[tuple[str, str]]:
    """(key, description) for every skippable step, sorted by key."""
    info = dict(_PIPELINE_DESCRIPTIONS)
    for steps in BUILTIN_STEPS.values():
        info.update({s.key: s.description for s in steps})
    return sorted(info.items())


def step_keys() -> list[str]:
    return [key for key, _ in steps_info()]
