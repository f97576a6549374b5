"""
GenoRing - modular multi-container platform orchestration.

Assembles independently authored modules into a single compose document and
drives their lifecycle (install, enable, disable, uninstall, update, upgrade,
backup, restore) with rollback on failure.
"""

__version__ = "1.0.0"
__author__ = "GenoRing Development Team"

# Engine version that module descriptors are checked against
GENORING_VERSION = "1.0"

# Re-export key components for easier access
from genoring.models.config import PlatformConfig, Settings
from genoring.models.module import ModuleInfo
from genoring.engine.registry import ModuleRegistry
from genoring.engine.compose import ComposeAssembler

__all__ = [
    "GENORING_VERSION",
    "PlatformConfig",
    "Settings",
    "ModuleInfo",
    "ModuleRegistry",
    "ComposeAssembler",
]
