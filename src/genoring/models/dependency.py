"""Dependency constraint models."""

from typing import List, Literal, Optional
from pydantic import BaseModel, Field


ConstraintKind = Literal["REQUIRES", "CONFLICTS", "BEFORE", "AFTER"]
Comparator = Literal["=", "<", "<=", ">", ">="]


class ConstraintClause(BaseModel):
    """One alternative target of a constraint: ``module [cmp version] [element]``."""
    module: str
    comparator: Comparator = Field(default="=")
    major: Optional[int] = None
    minor: Optional[int] = None
    stability: Optional[str] = None
    element: Optional[str] = None

    @property
    def version(self) -> Optional[str]:
        """The constrained version as a comparable string, if any."""
        if self.major is None:
            return None
        version = f"{self.major}.{self.minor or 0}"
        if self.stability:
            version += f"-{self.stability}"
        return version

    def __str__(self) -> str:
        parts = [self.module]
        if self.version:
            parts.append(f"{self.comparator} {self.version}")
        if self.element:
            parts.append(self.element)
        return " ".join(parts)


class Constraint(BaseModel):
    """A parsed dependency line.

    The constraint holds if any of its clauses holds.
    """
    kind: ConstraintKind
    profiles: List[str] = Field(default_factory=list)
    service: Optional[str] = None
    clauses: List[ConstraintClause] = Field(default_factory=list)
    source: str = Field(default="", description="Original constraint line")
