"""
Package-name templates — ``{{param}}`` substitution.

Package names may carry placeholders so one rule covers every release
of a distro, e.g. ``linux-image-generic-hwe-{{version}}``.  The legacy
dotted form ``{{.version}}`` is accepted too.

Substitution is all-or-nothing: an unknown parameter or any brace that
is not part of a well-formed placeholder raises ``TemplateError`` rather
than leaving a half-rendered name behind.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

from kairos_init.core.errors import TemplateError

_PLACEHOLDER_RE = re.compile(r"\{\{\s*\.?([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def render_package(template: str, params: Mapping[str, str]) -> str:
    """Substitute every placeholder in a single package name.

    Raises:
        TemplateError: Unknown parameter or malformed braces.
    """
    if "{" not in template and "}" not in template:
        return template

    def _replace(m: re.Match) -> str:
        key = m.group(1)
        if key not in params:
            raise TemplateError(template, f"unknown parameter '{key}'")
        return str(params[key])

    rendered = _PLACEHOLDER_RE.sub(_replace, template)

    # Any brace left over was not part of a valid placeholder
    leftover = _PLACEHOLDER_RE.sub("", template)
    if "{" in leftover or "}" in leftover:
        raise TemplateError(template, "malformed placeholder")
    return rendered


def render_packages(templates: Iterable[str], params: Mapping[str, str]) -> list[str]:
    """Render a list of package names, failing on the first bad template."""
    return [render_package(t, params) for t in templates]
