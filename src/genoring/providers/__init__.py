"""Container runtime providers."""

from genoring.providers.base import BaseRuntime, ContainerInfo, ContainerState
from genoring.providers.registry import RuntimeRegistry, get_runtime

__all__ = [
    "BaseRuntime",
    "ContainerInfo",
    "ContainerState",
    "RuntimeRegistry",
    "get_runtime",
]
