"""
Phase runner — the execution collaborator.

The composer never touches the target filesystem.  When a plan has to
be applied, each phase is handed to a ``PhaseRunner``.  The production
runner shells out to ``yip``; tests and dry runs use ``RecordingRunner``.

Typed predicates are evaluated here, not in the composer:

    families / distros / version   checked in Python against the descriptor
    service_manager / condition    handed to yip as only_service_manager / if
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from kairos_init.core.errors import ConstraintError, PhaseExecutionError, VersionParseError
from kairos_init.core.models.stage import Stage, StagePlan, StagePredicate
from kairos_init.core.models.system import SystemDescriptor
from kairos_init.core.packages.constraint import matches_constraint
from kairos_init.core.persistence.plan_file import dump_yaml, stage_to_dict

logger = logging.getLogger(__name__)


class PhaseRunner(Protocol):
    def run_phase(self, root: Path, phase: str, plan: StagePlan) -> None:
        """Apply every stage of ``phase`` to the filesystem at ``root``.

        Raises:
            PhaseExecutionError: The phase could not be applied.
        """
        ...


# ── Predicate evaluation ────────────────────────────────────────


def predicate_allows(predicate: StagePredicate | None, system: SystemDescriptor) -> bool:
    """Whether the descriptor-level parts of a predicate match.

    Shell conditions and the service manager are left to the executor.
    A version gate that cannot be evaluated does not match.
    """
    if predicate is None:
        return True
    if predicate.families and system.family not in predicate.families:
        return False
    if predicate.distros and system.distro not in predicate.distros:
        return False
    if predicate.version:
        try:
            return matches_constraint(predicate.version, system.version)
        except (ConstraintError, VersionParseError) as e:
            logger.warning("Version gate %r not evaluated: %s", predicate.version, e)
            return False
    return True


def to_yip_stage(stage: Stage) -> dict:
    """Translate a stage into yip's schema."""
    data = stage_to_dict(stage, exclude={"predicate"})
    if stage.predicate is not None:
        if stage.predicate.condition:
            data["if"] = stage.predicate.condition
        if stage.predicate.service_manager:
            data["only_service_manager"] = stage.predicate.service_manager
    return data


def yip_document(plan: StagePlan, phase: str, system: SystemDescriptor) -> dict:
    stages = []
    for stage in plan.stages_in(phase):
        if not predicate_allows(stage.predicate, system):
            logger.debug("Stage %r does not apply to %s, leaving it out", stage.name, system.distro.value)
            continue
        stages.append(to_yip_stage(stage))
    return {"stages": {phase: stages}}


# ── Runners ─────────────────────────────────────────────────────


class YipPhaseRunner:
    """Run phases with the external ``yip`` binary.

    The phase is written to a temporary yip file and executed with
    ``yip -s <phase> <file>``.  For a root other than ``/`` the call is
    wrapped in ``chroot``.
    """

    def __init__(self, system: SystemDescriptor, binary: str = "yip", timeout: int = 3600) -> None:
        self.system = system
        self.binary = binary
        self.timeout = timeout

    def is_available(self) -> bool:
        return shutil.which(self.binary) is not None

    def run_phase(self, root: Path, phase: str, plan: StagePlan) -> None:
        document = yip_document(plan, phase, self.system)
        if not document["stages"][phase]:
            logger.info("Phase %s has no applicable stages", phase)
            return

        root = root.resolve()
        chrooted = root != Path("/")
        tmp_dir = root / "tmp" if chrooted else None
        if tmp_dir is not None:
            tmp_dir.mkdir(parents=True, exist_ok=True)

        with tempfile.NamedTemporaryFile(
            "w", dir=tmp_dir, prefix="kairos-init-", suffix=".yaml", delete=False, encoding="utf-8",
        ) as f:
            config_path = Path(f.name)
            f.write(dump_yaml(document))

        try:
            self._run_yip(root, phase, config_path, chrooted, len(document["stages"][phase]))
        finally:
            config_path.unlink(missing_ok=True)

    def _run_yip(self, root: Path, phase: str, config_path: Path, chrooted: bool, count: int) -> None:
        target = f"/{config_path.relative_to(root)}" if chrooted else str(config_path)
        command = [self.binary, "-s", phase, target]
        if chrooted:
            command = ["chroot", str(root), *command]

        logger.info("Running phase %s (%d stages)", phase, count)
        logger.debug("Executing: %s", " ".join(command))
        start = time.monotonic()
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise PhaseExecutionError(phase, f"timed out after {self.timeout}s") from e
        except OSError as e:
            raise PhaseExecutionError(phase, f"cannot run {self.binary}: {e}") from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if result.returncode != 0:
            stderr = result.stderr.strip()
            raise PhaseExecutionError(
                phase,
                stderr or f"{self.binary} exited with code {result.returncode}",
                return_code=result.returncode,
            )
        logger.info("Phase %s done in %dms", phase, elapsed_ms)


@dataclass
class RecordingRunner:
    """Runner that only remembers what it was asked to run."""

    calls: list[tuple[Path, str, int]] = field(default_factory=list)

    def run_phase(self, root: Path, phase: str, plan: StagePlan) -> None:
        count = len(plan.stages_in(phase))
        logger.info("[dry-run] would run phase %s (%d stages) on %s", phase, count, root)
        self.calls.append((root, phase, count))

    @property
    def phases(self) -> list[str]:
        return [phase for _, phase, _ in self.calls]
