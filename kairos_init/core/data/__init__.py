"""
Content store for opaque named assets.

Large literal bodies that end up in generated stages (systemd units,
grub snippets, branding texts, helper scripts) live as plain files
under ``kairos_init/core/data/assets/`` instead of inline strings.
Generators reference them by name, e.g. ``services/kairos.service``.

Usage::

    from kairos_init.core.data import ContentStore

    store = ContentStore()
    unit = store.get("services/kairos-agent.service")

    # Tests swap the files for an in-memory table:
    store = ContentStore.from_mapping({"misc/motd": "hello"})
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from kairos_init.core.errors import StageGeneratorError

logger = logging.getLogger(__name__)

_ASSETS_DIR = Path(__file__).parent / "assets"


class ContentStore:
    """Read-only lookup of named assets.

    Each asset is read on first access and cached for the lifetime of
    the instance.  Create one per composition.
    """

    def __init__(self, root: Path | None = _ASSETS_DIR, contents: Mapping[str, str] | None = None) -> None:
        self._root = root                  # None = memory only
        self._cache: dict[str, str] = dict(contents or {})

    @classmethod
    def from_mapping(cls, contents: Mapping[str, str]) -> ContentStore:
        """A store that never touches disk; unknown names still fail."""
        return cls(root=None, contents=contents)

    def get(self, name: str) -> str:
        """Return the asset body.

        Raises:
            StageGeneratorError: No asset with that name exists.
        """
        if name in self._cache:
            return self._cache[name]
        if self._root is None:
            raise StageGeneratorError(f"Content asset not found: {name}")

        path = self._root / name
        if not path.is_file():
            raise StageGeneratorError(f"Content asset not found: {name}")
        content = path.read_text(encoding="utf-8")
        self._cache[name] = content
        logger.debug("Loaded content asset %s (%d bytes)", name, len(content))
        return content

    def render(self, name: str, **params: str) -> str:
        """Return an asset with ``{param}`` fields filled in."""
        return self.get(name).format(**params)

    def names(self) -> list[str]:
        """All asset names known to this store, sorted."""
        found = set(self._cache)
        if self._root is not None and self._root.is_dir():
            found.update(
                p.relative_to(self._root).as_posix()
                for p in self._root.rglob("*") if p.is_file()
            )
        return sorted(found)
