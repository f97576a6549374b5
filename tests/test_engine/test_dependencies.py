"""Tests for dependency constraint parsing and checks."""

from unittest.mock import MagicMock

import pytest

from genoring.engine.dependencies import (
    check_module_dependencies,
    clause_satisfied,
    expand_profiles,
    parse_dependencies,
    parse_dependency,
)
from genoring.errors import DependencyError
from genoring.models.dependency import ConstraintClause
from genoring.models.module import ModuleInfo


def make_registry(enabled, versions=None, services=None):
    """Registry mock with the given enabled modules and installed versions."""
    registry = MagicMock()
    registry.list_enabled.return_value = list(enabled)
    registry.installed_version.side_effect = lambda module: (versions or {}).get(module, "1.0")
    registry.module_services.side_effect = lambda module, include="enabled": (services or {}).get(module, [])
    registry.module_info.side_effect = lambda module: ModuleInfo(name=module)
    registry.module_volumes.return_value = []
    return registry


class TestParseDependency:
    """Test the constraint grammar."""

    def test_simple_requires(self):
        """Test a bare REQUIRES constraint."""
        constraint = parse_dependency("REQUIRES genoring")
        assert constraint.kind == "REQUIRES"
        assert constraint.service is None
        assert constraint.profiles == []
        assert [c.module for c in constraint.clauses] == ["genoring"]
        assert constraint.clauses[0].version is None

    def test_full_line(self):
        """Test profiles, subject service, version and element."""
        constraint = parse_dependency("dev,prod: genoring-gigwa AFTER genoring >= 1.2 genoring-db")
        assert constraint.kind == "AFTER"
        assert constraint.profiles == ["dev", "prod"]
        assert constraint.service == "genoring-gigwa"
        clause = constraint.clauses[0]
        assert clause.module == "genoring"
        assert clause.comparator == ">="
        assert clause.version == "1.2"
        assert clause.element == "genoring-db"

    def test_default_comparator(self):
        """Test that a version without comparator means equality."""
        clause = parse_dependency("REQUIRES genoring 2").clauses[0]
        assert clause.comparator == "="
        assert clause.major == 2
        assert clause.minor is None

    def test_or_clauses(self):
        """Test alternatives separated by OR."""
        constraint = parse_dependency("REQUIRES cas_server OR ldap >= 1.0")
        assert [c.module for c in constraint.clauses] == ["cas_server", "ldap"]

    def test_non_constraint_is_empty(self):
        """Test that text without a keyword is not a constraint."""
        assert parse_dependency("this module likes genoring") is None
        assert parse_dependency("") is None

    def test_malformed_clause_raises(self):
        """Test that a keyword followed by an invalid clause is an error."""
        with pytest.raises(DependencyError):
            parse_dependency("REQUIRES Genoring >= one")
        with pytest.raises(DependencyError):
            parse_dependency("REQUIRES")

    def test_parse_dependencies_drops_non_constraints(self):
        """Test that a list keeps only real constraints."""
        constraints = parse_dependencies(["REQUIRES genoring", "just a note"], "gigwa")
        assert len(constraints) == 1

    def test_expand_online_profile(self):
        """Test that online expands to its concrete profiles."""
        assert expand_profiles(["online", "backend"]) == ["dev", "staging", "prod", "backend"]
        assert expand_profiles(["dev", "online"]) == ["dev", "staging", "prod"]


class TestClauseSatisfied:
    """Test clause checks against the registry."""

    def test_disabled_module(self):
        """Test that a disabled module never satisfies a clause."""
        registry = make_registry([])
        assert not clause_satisfied(ConstraintClause(module="genoring"), registry)

    def test_version_check(self):
        """Test comparator checks on the installed version."""
        registry = make_registry(["genoring"], {"genoring": "1.2"})
        assert clause_satisfied(ConstraintClause(module="genoring", comparator=">=", major=1, minor=0), registry)
        assert not clause_satisfied(ConstraintClause(module="genoring", comparator=">", major=1, minor=2), registry)

    def test_major_only_equality(self):
        """Test that "= 1" accepts any 1.x version."""
        registry = make_registry(["genoring"], {"genoring": "1.7"})
        assert clause_satisfied(ConstraintClause(module="genoring", major=1), registry)
        assert not clause_satisfied(ConstraintClause(module="genoring", major=2), registry)

    def test_element(self):
        """Test that the element must be provided by the module."""
        registry = make_registry(["genoring"], services={"genoring": ["genoring-proxy"]})
        assert clause_satisfied(ConstraintClause(module="genoring", element="genoring-proxy"), registry)
        assert not clause_satisfied(ConstraintClause(module="genoring", element="genoring-db"), registry)


class TestCheckModuleDependencies:
    """Test REQUIRES and CONFLICTS gating."""

    def _info(self, *lines):
        return ModuleInfo(name="gigwa", dependencies={"services": list(lines)})

    def test_or_requires_any(self):
        """Test that REQUIRES A or B holds when only A is enabled."""
        registry = make_registry(["alpha"])
        check_module_dependencies(self._info("REQUIRES alpha OR beta"), registry)

    def test_or_requires_none(self):
        """Test that REQUIRES A or B fails when neither is enabled."""
        registry = make_registry(["gamma"])
        with pytest.raises(DependencyError, match="alpha"):
            check_module_dependencies(self._info("REQUIRES alpha OR beta"), registry)

    def test_conflicts(self):
        """Test that an enabled conflicting module blocks the module."""
        registry = make_registry(["mongo"])
        with pytest.raises(DependencyError, match="conflicts"):
            check_module_dependencies(self._info("CONFLICTS mongo"), registry)

    def test_ordering_constraints_ignored(self):
        """Test that BEFORE/AFTER do not gate enabling."""
        registry = make_registry([])
        check_module_dependencies(self._info("genoring-gigwa AFTER genoring"), registry)
