"""
Extension fragments — operator-supplied stages merged after built-ins.

A fragment is a yip-style YAML file::

    stages:
      after-install:
        - name: "Add my package"
          packages:
            install: [htop]
        - name: "Only on debian"
          if: test -f /etc/debian_version
          commands: [echo hi]

Files are read in lexicographic order (subdirectories included), so
``10-a.yaml`` always lands before ``20-b.yaml``.  Keys of yip's stage
schema that are not modelled here (``users``, ``hostname`` …) are kept
and passed on to yip.  A broken file is logged and dropped; it
never aborts composition.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import yaml
from pydantic import ValidationError

from kairos_init.core.models.config import InitConfig
from kairos_init.core.models.stage import ALL_PHASES, Stage

logger = logging.getLogger(__name__)

_SUFFIXES = (".yaml", ".yml")


class FragmentProvider(Protocol):
    def stages_for(self, phase: str) -> list[Stage]:
        """Extension stages for a phase, in merge order."""
        ...


def _load_fragment(path: Path) -> dict[str, list[Stage]]:
    """Parse one fragment file into phase → stages.

    Raises:
        ValueError: Not a mapping, unknown phase, or invalid stage.
        yaml.YAMLError: Not YAML.
        OSError: Unreadable.
    """
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("top level must be a mapping")

    raw_stages = data.get("stages") or {}
    if not isinstance(raw_stages, dict):
        raise ValueError("'stages' must map phase names to lists")

    result: dict[str, list[Stage]] = {}
    for phase, items in raw_stages.items():
        if phase not in ALL_PHASES:
            raise ValueError(f"unknown phase '{phase}'")
        if not isinstance(items, list):
            raise ValueError(f"phase '{phase}' must hold a list of stages")
        result[phase] = [Stage.model_validate(item) for item in items]
    return result


class ExtensionDirectory:
    """Fragments from one directory tree.

    The tree is walked recursively, entries in lexicographic order, and
    every file is parsed again on each call: fragments dropped in by an
    earlier phase (the install pipeline of an ``all`` run) are seen when
    later phases are composed.
    """

    def __init__(self, path: str | Path, label: str = "extensions") -> None:
        self.path = Path(path)
        self.label = label

    def _files(self) -> list[Path]:
        if not self.path.is_dir():
            logger.debug("%s dir %s does not exist, nothing to load", self.label, self.path)
            return []
        files = []
        for entry in sorted(self.path.rglob("*"), key=lambda p: p.relative_to(self.path).parts):
            if not entry.is_file():
                continue
            if entry.suffix not in _SUFFIXES:
                logger.debug("Skipping %s: not a yaml file", entry)
                continue
            files.append(entry)
        return files

    def load(self) -> list[tuple[Path, dict[str, list[Stage]]]]:
        """Parse every fragment file, dropping (and logging) broken ones."""
        loaded = []
        for path in self._files():
            try:
                loaded.append((path, _load_fragment(path)))
            except (OSError, yaml.YAMLError, ValidationError, ValueError) as e:
                logger.error("Ignoring %s file %s: %s", self.label, path, e)
                continue
            logger.debug("Loaded %s file %s", self.label, path)
        return loaded

    def stages_for(self, phase: str) -> list[Stage]:
        stages: list[Stage] = []
        for path, by_phase in self.load():
            found = by_phase.get(phase, [])
            if found:
                logger.debug("%s: %d stage(s) for %s from %s", self.label, len(found), phase, path.name)
            stages.extend(found)
        return stages


def default_providers(config: InitConfig) -> list[FragmentProvider]:
    """Expansions, then stage extensions; none unless extensions are enabled."""
    if not config.extensions:
        return []
    return [
        ExtensionDirectory(config.expansions_dir, label="expansions"),
        ExtensionDirectory(config.stage_extensions_dir, label="stage-extensions"),
    ]
