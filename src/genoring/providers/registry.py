"""Runtime registry for resolving container runtimes by name."""

import logging
from typing import Dict, Type

from genoring.errors import ConfigurationError
from genoring.providers.base import BaseRuntime
from genoring.providers.docker import DockerRuntime, PodmanRuntime


logger = logging.getLogger(__name__)


class RuntimeRegistry:
    """Registry of available container runtimes."""

    def __init__(self):
        """Initialize runtime registry."""
        self._runtime_classes: Dict[str, Type[BaseRuntime]] = {
            "docker": DockerRuntime,
            "podman": PodmanRuntime,
        }

    def get_runtime(self, name: str) -> BaseRuntime:
        """Instantiate a runtime by name."""
        runtime_class = self._runtime_classes.get(name)
        if runtime_class is None:
            raise ConfigurationError(
                f"Unknown container runtime '{name}' (available: {', '.join(self.list_runtimes())})"
            )
        logger.debug(f"Using container runtime: {name}")
        return runtime_class()

    def list_runtimes(self) -> list[str]:
        """List available runtime names."""
        return sorted(self._runtime_classes)


def get_runtime(name: str = "docker") -> BaseRuntime:
    """Resolve a runtime from the default registry."""
    return RuntimeRegistry().get_runtime(name)
