"""Base container runtime interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from genoring.utils.process import CommandResult, ExecutionContext


class ContainerState(Enum):
    """Container state as reported by the runtime."""
    CREATED = "created"
    RUNNING = "running"
    RESTARTING = "restarting"
    PAUSED = "paused"
    DEAD = "dead"
    EXITED = "exited"
    NONE = ""

    @classmethod
    def parse(cls, value: Optional[str]) -> "ContainerState":
        """Map a runtime state string, unknown values meaning no state."""
        value = (value or "").strip().lower()
        for state in cls:
            if state.value == value:
                return state
        return cls.NONE


@dataclass
class ContainerInfo:
    """One container as listed by the runtime."""
    name: str
    state: ContainerState
    id: str = ""
    image: str = ""


class BaseRuntime(ABC):
    """Interface every container runtime must implement."""

    @abstractmethod
    def check(self, context: ExecutionContext) -> None:
        """Raise RuntimeUnavailableError if the runtime cannot be used."""
        pass

    @abstractmethod
    def up(self, compose_file: Path, context: ExecutionContext) -> None:
        """Start the services of the active profiles; safe when already up."""
        pass

    @abstractmethod
    def down(self, compose_file: Path, context: ExecutionContext) -> None:
        """Stop and remove the containers of every profile."""
        pass

    @abstractmethod
    def ps(self, compose_file: Path, context: ExecutionContext) -> List[ContainerInfo]:
        """List the containers of the compose project."""
        pass

    @abstractmethod
    def container(self, name: str, context: ExecutionContext) -> Optional[ContainerInfo]:
        """Inspect one container by exact name."""
        pass

    @abstractmethod
    def exec(
        self,
        container: str,
        command: str,
        context: ExecutionContext,
        env_files: Optional[List[Path]] = None,
        env: Optional[Dict[str, str]] = None,
        check: bool = True,
    ) -> CommandResult:
        """Run a shell command in a container, non-interactively."""
        pass

    @abstractmethod
    def copy_to(self, source: Path, container: str, target: str, context: ExecutionContext) -> None:
        """Copy a host path into a container."""
        pass

    @abstractmethod
    def logs(self, container: str, context: ExecutionContext, tail: Optional[int] = None) -> str:
        """Logs of a container."""
        pass

    @abstractmethod
    def build(
        self,
        tag: str,
        path: Path,
        context: ExecutionContext,
        build_args: Optional[Dict[str, str]] = None,
    ) -> None:
        """Build an image from a directory holding a Dockerfile."""
        pass

    @abstractmethod
    def image_exists(self, tag: str, context: ExecutionContext) -> bool:
        pass

    @abstractmethod
    def remove_image(self, tag: str, context: ExecutionContext) -> None:
        pass

    @abstractmethod
    def create_volume(self, name: str, context: ExecutionContext) -> None:
        pass

    @abstractmethod
    def remove_volume(self, name: str, context: ExecutionContext) -> None:
        pass
