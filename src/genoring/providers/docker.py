"""Docker (compose v2 plugin) runtime provider."""

import logging
import re
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from genoring.errors import RuntimeUnavailableError
from genoring.providers.base import BaseRuntime, ContainerInfo, ContainerState
from genoring.utils.process import CommandResult, ExecutionContext, run_command


logger = logging.getLogger(__name__)

MIN_COMPOSE_MAJOR = 2


class DockerRuntime(BaseRuntime):
    """Runtime driving the ``docker`` CLI and its compose plugin."""

    command = "docker"

    def _compose(self, compose_file: Path, *args: str) -> List[str]:
        return [self.command, "compose", "-f", str(compose_file), *args]

    def check(self, context: ExecutionContext) -> None:
        """Check the runtime binary and the compose plugin version."""
        if not shutil.which(self.command):
            raise RuntimeUnavailableError(f"'{self.command}' is not installed or not in PATH")
        try:
            result = run_command([self.command, "compose", "version", "--short"], context=context)
        except subprocess.CalledProcessError as e:
            raise RuntimeUnavailableError(
                f"'{self.command} compose' is not available: {e.stderr.strip()}"
            ) from e
        match = re.search(r"(\d+)\.\d+", result.stdout)
        if not match or int(match.group(1)) < MIN_COMPOSE_MAJOR:
            raise RuntimeUnavailableError(
                f"Compose version {result.stdout.strip() or 'unknown'} is too old "
                f"(version {MIN_COMPOSE_MAJOR} or newer required)"
            )

    def up(self, compose_file: Path, context: ExecutionContext) -> None:
        run_command(self._compose(compose_file, "up", "-d", "-y"), context=context)

    def down(self, compose_file: Path, context: ExecutionContext) -> None:
        run_command(
            self._compose(compose_file, "--profile", "*", "down", "--remove-orphans"),
            context=context,
        )

    def ps(self, compose_file: Path, context: ExecutionContext) -> List[ContainerInfo]:
        result = run_command(
            self._compose(compose_file, "ps", "--all", "--format", "{{.Names}} {{.State}}"),
            context=context,
        )
        containers = []
        for line in result.stdout.splitlines():
            parts = line.split()
            if parts:
                containers.append(ContainerInfo(
                    name=parts[0],
                    state=ContainerState.parse(parts[1] if len(parts) > 1 else ""),
                ))
        return containers

    def container(self, name: str, context: ExecutionContext) -> Optional[ContainerInfo]:
        result = run_command(
            [
                self.command, "ps", "--all",
                "--filter", f"name={name}",
                "--format", "{{.ID}} {{.State}} {{.Names}} {{.Image}}",
            ],
            check=False,
            context=context,
        )
        for line in result.stdout.splitlines():
            parts = line.split()
            # The name filter matches substrings
            if len(parts) >= 3 and parts[2] == name:
                return ContainerInfo(
                    name=parts[2],
                    state=ContainerState.parse(parts[1]),
                    id=parts[0],
                    image=parts[3] if len(parts) > 3 else "",
                )
        return None

    def exec(
        self,
        container: str,
        command: str,
        context: ExecutionContext,
        env_files: Optional[List[Path]] = None,
        env: Optional[Dict[str, str]] = None,
        check: bool = True,
    ) -> CommandResult:
        cmd = [self.command, "exec"]
        for env_file in env_files or []:
            cmd.extend(["--env-file", str(env_file)])
        for name, value in (env or {}).items():
            cmd.extend(["-e", f"{name}={value}"])
        cmd.extend(["-u", context.user, container, "sh", "-c", command])
        return run_command(cmd, check=check, context=context)

    def copy_to(self, source: Path, container: str, target: str, context: ExecutionContext) -> None:
        run_command([self.command, "cp", f"{source}/", f"{container}:{target}"], context=context)

    def logs(self, container: str, context: ExecutionContext, tail: Optional[int] = None) -> str:
        cmd = [self.command, "logs"]
        if tail:
            cmd.extend(["--tail", str(tail)])
        cmd.append(container)
        result = run_command(cmd, check=False, context=context)
        return result.output

    def build(
        self,
        tag: str,
        path: Path,
        context: ExecutionContext,
        build_args: Optional[Dict[str, str]] = None,
    ) -> None:
        cmd = [self.command, "build"]
        if context.platform:
            cmd.extend(["--platform", context.platform])
        for name, value in (build_args or {}).items():
            cmd.extend(["--build-arg", f"{name}={value}"])
        cmd.extend(["-t", tag, str(path)])
        run_command(cmd, capture_output=not context.verbose, context=context)

    def image_exists(self, tag: str, context: ExecutionContext) -> bool:
        result = run_command(
            [self.command, "image", "inspect", tag],
            check=False,
            context=context,
        )
        return result.returncode == 0

    def remove_image(self, tag: str, context: ExecutionContext) -> None:
        run_command([self.command, "image", "rm", "-f", tag], check=False, context=context)

    def create_volume(self, name: str, context: ExecutionContext) -> None:
        run_command([self.command, "volume", "create", name], context=context)

    def remove_volume(self, name: str, context: ExecutionContext) -> None:
        result = run_command([self.command, "volume", "rm", "-f", name], check=False, context=context)
        if result.returncode != 0:
            logger.warning(f"Failed to remove volume '{name}': {result.stderr.strip()}")


class PodmanRuntime(DockerRuntime):
    """Runtime driving ``podman`` and its docker-compatible compose command."""

    command = "podman"
