"""Exception hierarchy."""

from typing import Dict, Optional


class GenoringError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(GenoringError):
    """Invalid descriptor, setting or user input."""


class DependencyError(GenoringError):
    """Malformed, unmet or conflicting module dependency."""


class AssemblyError(GenoringError):
    """Fatal error while assembling the compose document."""


class RuntimeUnavailableError(GenoringError):
    """Container runtime missing or too old."""


class ReadinessTimeout(GenoringError):
    """A module did not reach the running state in time."""


class HookError(GenoringError):
    """One or more hooks failed.

    ``errors`` maps a module name (local hooks) or a hook file name
    (container hooks) to the failure output.
    """

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        self.errors = errors or {}
        details = "\n".join(f"- {key}: {value}" for key, value in self.errors.items())
        super().__init__(f"{message}\n{details}" if details else message)


class OperationError(GenoringError):
    """A lifecycle operation failed and has been rolled back."""
