"""
Error hierarchy — every failure the core raises.

Three classes of failure exist:

    ConfigError         invalid startup flags or override files; the CLI
                        exits before any resolution happens.
    ResolutionError     fatal for the current pipeline invocation
                        (version parse, template substitution, stage
                        generator failures).
    PlanCompositionError / PhaseExecutionError
                        a ResolutionError or runner failure bundled with
                        the phase it happened in.

Advisory conditions (a bad constraint key, an unreadable extension
file, a missing os-release field) are logged and never raised.
"""

from __future__ import annotations


class KairosInitError(Exception):
    """Base class for all kairos-init errors."""


class ConfigError(KairosInitError):
    """Raised when startup configuration is invalid."""


class ResolutionError(KairosInitError):
    """Raised when a plan cannot be resolved for the current target."""


class VersionParseError(ResolutionError):
    """The descriptor version cannot be parsed, so no constraint can be evaluated."""

    def __init__(self, version: str, reason: str = "") -> None:
        self.version = version
        msg = f"Cannot parse system version {version!r}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class ConstraintError(ResolutionError):
    """A version constraint expression is malformed."""

    def __init__(self, expression: str, reason: str = "") -> None:
        self.expression = expression
        msg = f"Invalid version constraint {expression!r}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class TemplateError(ResolutionError):
    """A package-name template is malformed or references an unknown parameter."""

    def __init__(self, template: str, reason: str) -> None:
        self.template = template
        super().__init__(f"Cannot render template {template!r}: {reason}")


class StageGeneratorError(ResolutionError):
    """A built-in stage generator failed."""


class KernelNotFound(StageGeneratorError):
    """No installed kernel could be found by the kernel locator."""


class PlanCompositionError(KairosInitError):
    """Composition of a plan failed inside a specific phase."""

    def __init__(self, phase: str, cause: Exception) -> None:
        self.phase = phase
        self.cause = cause
        super().__init__(f"{phase}: {cause}")


class PhaseExecutionError(KairosInitError):
    """The execution collaborator failed to run a phase."""

    def __init__(self, phase: str, message: str, return_code: int | None = None) -> None:
        self.phase = phase
        self.return_code = return_code
        super().__init__(f"{phase}: {message}")
