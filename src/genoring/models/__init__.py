"""Pydantic models for configuration and validation."""

from genoring.models.config import ModuleConf, PlatformConfig, Settings
from genoring.models.module import (
    AlternativeInfo,
    ModuleDependencies,
    ModuleInfo,
    ServiceInfo,
    VolumeInfo,
)
from genoring.models.dependency import Constraint, ConstraintClause
from genoring.models.operation import HookEntry

__all__ = [
    "ModuleConf",
    "PlatformConfig",
    "Settings",
    "AlternativeInfo",
    "ModuleDependencies",
    "ModuleInfo",
    "ServiceInfo",
    "VolumeInfo",
    "Constraint",
    "ConstraintClause",
    "HookEntry",
]
