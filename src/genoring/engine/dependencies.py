"""Dependency constraint parsing and evaluation.

Constraint lines follow the grammar::

    [PROFILE[,PROFILE...]:][SERVICE] REQUIRES|CONFLICTS|BEFORE|AFTER CLAUSE [or CLAUSE]...

where a clause is ``module [cmp MAJOR[.MINOR]] [element]``.
"""

import logging
import re
from typing import TYPE_CHECKING, List, Optional

from genoring.errors import DependencyError
from genoring.engine.versions import version_satisfies
from genoring.models.dependency import Constraint, ConstraintClause
from genoring.models.module import ModuleInfo

if TYPE_CHECKING:
    from genoring.engine.registry import ModuleRegistry


logger = logging.getLogger(__name__)

PROFILES = ("dev", "staging", "prod", "backend", "offline", "online")
ONLINE_PROFILES = ("dev", "staging", "prod")
CONSTRAINT_KINDS = ("REQUIRES", "CONFLICTS", "BEFORE", "AFTER")

_PROFILE = "(?:" + "|".join(PROFILES) + ")"
HEAD_REGEX = re.compile(
    rf"^\s*(?:({_PROFILE}(?:\s*,\s*{_PROFILE})*)\s*:)?"
    r"\s*(?:([a-z0-9\-_]+)\s+)?"
    r"(REQUIRES|CONFLICTS|BEFORE|AFTER)(?:\s+|$)"
)
CLAUSE_REGEX = re.compile(
    r"^([a-z][a-z0-9_]*)"
    r"(?:\s+(<=|>=|<|>|=)?\s*(\d+)(?:\.(\d+))?(?:-?(alpha|beta|dev|RC))?)?"
    r"(?:\s+([a-z0-9\-_]+))?$"
)
OR_REGEX = re.compile(r"\s+[oO][rR]\s+")


def parse_dependency(line: str) -> Optional[Constraint]:
    """Parse a constraint line.

    Lines without a constraint keyword are not constraints and yield None.
    A line that has a keyword but whose clauses do not parse is malformed and
    raises DependencyError.
    """
    match = HEAD_REGEX.match(line)
    if not match:
        return None
    profiles, service, kind = match.groups()
    rest = line[match.end():].strip()
    if not rest:
        raise DependencyError(f"Failed to parse module dependency line (no target):\n  {line}")

    clauses = []
    for part in OR_REGEX.split(rest):
        clause_match = CLAUSE_REGEX.match(part.strip())
        if not clause_match:
            raise DependencyError(f"Failed to parse module dependency line:\n  {line}")
        module, comparator, major, minor, stability, element = clause_match.groups()
        clauses.append(ConstraintClause(
            module=module,
            comparator=comparator or "=",
            major=int(major) if major is not None else None,
            minor=int(minor) if minor is not None else None,
            stability=stability,
            element=element,
        ))

    return Constraint(
        kind=kind,
        profiles=[p for p in re.split(r"\s*,\s*", profiles or "") if p],
        service=service,
        clauses=clauses,
        source=line,
    )


def parse_dependencies(lines: List[str], module: str = "") -> List[Constraint]:
    """Parse a list of lines, dropping (with a warning) the non-constraints."""
    constraints = []
    for line in lines:
        constraint = parse_dependency(str(line))
        if constraint is None:
            logger.warning(f"Ignoring {module} dependency line without constraint: '{line}'")
            continue
        constraints.append(constraint)
    return constraints


def expand_profiles(profiles: List[str]) -> List[str]:
    """Replace ``online`` by its concrete sub-profiles, keeping order."""
    expanded = []
    for profile in profiles:
        for concrete in (ONLINE_PROFILES if profile == "online" else (profile,)):
            if concrete not in expanded:
                expanded.append(concrete)
    return expanded


def clause_satisfied(clause: ConstraintClause, registry: "ModuleRegistry") -> bool:
    """Check one clause against the currently enabled modules."""
    if clause.module not in registry.list_enabled():
        return False

    if clause.version is not None:
        installed = registry.installed_version(clause.module)
        if clause.minor is None and clause.comparator == "=":
            # "module = 2" accepts any 2.x
            if not installed or installed.split(".")[0] != str(clause.major):
                return False
        elif not version_satisfies(installed, clause.comparator, clause.version):
            return False

    if clause.element:
        provided = set(registry.module_services(clause.module, "enabled"))
        provided.update(registry.module_info(clause.module).volumes)
        provided.update(registry.module_volumes(clause.module, "defined"))
        if clause.element not in provided:
            return False

    return True


def check_module_dependencies(module_info: ModuleInfo, registry: "ModuleRegistry"):
    """Gate a module on its REQUIRES and CONFLICTS service constraints.

    Raises DependencyError listing what is missing or conflicting.
    """
    problems = []
    for constraint in parse_dependencies(module_info.dependencies.services, module_info.name):
        if constraint.kind == "REQUIRES":
            if not any(clause_satisfied(clause, registry) for clause in constraint.clauses):
                problems.append(
                    "requires one of: " + ", ".join(str(c) for c in constraint.clauses)
                )
        elif constraint.kind == "CONFLICTS":
            conflicting = [c for c in constraint.clauses if clause_satisfied(c, registry)]
            if conflicting:
                problems.append(
                    "conflicts with: " + ", ".join(str(c) for c in conflicting)
                )
    if problems:
        raise DependencyError(
            f"Could not enable module '{module_info.name}':\n- " + "\n- ".join(problems)
        )
