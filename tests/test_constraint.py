"""
Tests for version constraints — parsing and matching.
"""

import pytest
from packaging.version import Version

from kairos_init.core.errors import ConstraintError, VersionParseError
from kairos_init.core.packages.constraint import matches_constraint, parse_constraint, parse_version


class TestParseVersion:
    def test_plain(self):
        assert parse_version("22.04") == Version("22.04")

    def test_v_prefix(self):
        assert parse_version("v3.2.1") == Version("3.2.1")

    def test_empty_raises(self):
        with pytest.raises(VersionParseError):
            parse_version("")

    def test_garbage_raises(self):
        with pytest.raises(VersionParseError) as exc:
            parse_version("rolling")
        assert exc.value.version == "rolling"


class TestMatchesConstraint:
    @pytest.mark.parametrize("expression,version,expected", [
        ("common", "anything-goes", True),
        (">=20.04", "22.04", True),
        (">=20.04", "18.04", False),
        ("24.10", "24.10", True),
        ("24.10", "24.04", False),
        (">=20.04, != 24.10", "24.10", False),
        (">=20.04, != 24.10", "24.04", True),
        ("<=18.04 || >=24.04", "24.04", True),
        ("<=18.04 || >=24.04", "22.04", False),
        (">=20.04||<=18.04", "16.04", True),
        (">=20.04||<=18.04", "19.10", False),
        ("<9.0", "8.10", True),
        ("<10", "9.4", True),
        ("<25", "25.04", False),
    ])
    def test_matrix(self, expression, version, expected):
        assert matches_constraint(expression, version) is expected

    def test_common_never_parses_version(self):
        # unknown systems have no version at all
        assert matches_constraint("common", "") is True

    def test_non_common_needs_version(self):
        with pytest.raises(VersionParseError):
            matches_constraint(">=20.04", "")


class TestParseConstraint:
    def test_common(self):
        assert parse_constraint("common").always

    def test_alternatives(self):
        constraint = parse_constraint(">=1 || <0.5")
        assert len(constraint.alternatives) == 2

    def test_malformed(self):
        with pytest.raises(ConstraintError) as exc:
            parse_constraint(">=abc!!")
        assert exc.value.expression == ">=abc!!"

    def test_empty_clause(self):
        with pytest.raises(ConstraintError):
            parse_constraint(">=1,")
