"""
L1 Domain — Version constraint evaluation (pure).

Matches an OS version against the constraint keys of a version map.
No I/O.

Constraint grammar::

    common                  always matches
    >=20.04                 comparison (>=, <=, >, <, ==, !=, ~=)
    24.10                   bare version, exact match
    >=20.04, != 24.10       comma = AND
    >=20.04 || <=18.04      || = OR between AND-groups

AND-groups are evaluated with ``packaging.specifiers.SpecifierSet``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from kairos_init.core.errors import ConstraintError, VersionParseError
from kairos_init.core.models.system import COMMON

_BARE_VERSION_RE = re.compile(r"^v?\d")


def parse_version(text: str) -> Version:
    """Parse an OS version string (``22.04``, ``3.19``, ``v38``).

    Raises:
        VersionParseError: If the string is empty or not a version.
    """
    candidate = text.strip()
    if candidate[:1] in ("v", "V"):
        candidate = candidate[1:]
    try:
        return Version(candidate)
    except InvalidVersion as e:
        raise VersionParseError(text, str(e)) from e


def _normalize_clause(clause: str) -> str:
    clause = re.sub(r"\s+", "", clause)
    if not clause:
        raise ValueError("empty clause")
    if _BARE_VERSION_RE.match(clause):
        return f"=={clause.lstrip('vV')}"
    if clause.startswith("~>"):
        return f"~={clause[2:].strip()}"
    if clause.startswith("=") and not clause.startswith("=="):
        return f"=={clause[1:].strip()}"
    return clause


@dataclass(frozen=True)
class VersionConstraint:
    """A parsed constraint: any alternative (OR) whose clauses all hold (AND)."""

    expression: str
    alternatives: tuple[SpecifierSet, ...]
    always: bool = False

    def allows(self, version: Version) -> bool:
        if self.always:
            return True
        return any(spec.contains(version, prereleases=True) for spec in self.alternatives)


def parse_constraint(expression: str) -> VersionConstraint:
    """Parse a version-map key.

    Raises:
        ConstraintError: If any alternative or clause is malformed.
    """
    if expression.strip() == COMMON:
        return VersionConstraint(expression=expression, alternatives=(), always=True)

    alternatives: list[SpecifierSet] = []
    for alt in expression.split("||"):
        try:
            clauses = [_normalize_clause(c) for c in alt.split(",")]
            alternatives.append(SpecifierSet(",".join(clauses)))
        except (InvalidSpecifier, ValueError) as e:
            raise ConstraintError(expression, str(e) or "malformed clause") from e
    return VersionConstraint(expression=expression, alternatives=tuple(alternatives))


def matches_constraint(expression: str, version: str | Version) -> bool:
    """Convenience: does ``version`` satisfy ``expression``?

    Raises:
        ConstraintError: Malformed expression.
        VersionParseError: Unparseable version (only when it is needed).
    """
    constraint = parse_constraint(expression)
    if constraint.always:
        return True
    parsed = version if isinstance(version, Version) else parse_version(version)
    return constraint.allows(parsed)
