"""Subprocess execution helpers."""

import logging
import os
import subprocess
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional


logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result from running a command."""
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def output(self) -> str:
        """Combined output, stdout first."""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


@dataclass(frozen=True)
class ExecutionContext:
    """Explicit execution environment threaded into every subprocess call.

    Carries the working directory, the extra environment variables injected
    into the child process, the user commands run as inside containers and
    platform flags. Nothing is read from or written to the ambient
    ``os.environ`` except as the base the extra variables are layered on.
    """
    cwd: Path = field(default_factory=Path.cwd)
    env: Dict[str, str] = field(default_factory=dict)
    user: str = "0"
    platform: Optional[str] = None
    verbose: bool = False

    def with_env(self, extra: Dict[str, str]) -> "ExecutionContext":
        """Return a copy with additional environment variables."""
        env = dict(self.env)
        env.update(extra)
        return replace(self, env=env)

    def process_env(self) -> Dict[str, str]:
        """Full environment for a child process."""
        env = dict(os.environ)
        env.update(self.env)
        return env


def run_command(
    cmd: List[str],
    check: bool = True,
    capture_output: bool = True,
    timeout: Optional[int] = None,
    context: Optional[ExecutionContext] = None,
    input: Optional[str] = None,
) -> CommandResult:
    """Run a command and wait for it to complete."""
    logger.debug(f"Running command: {' '.join(cmd)}")

    kwargs = {}
    if context is not None:
        kwargs["cwd"] = str(context.cwd)
        kwargs["env"] = context.process_env()

    try:
        process = subprocess.run(
            cmd,
            stdout=subprocess.PIPE if capture_output else None,
            stderr=subprocess.PIPE if capture_output else None,
            input=input,
            text=True,
            timeout=timeout,
            **kwargs
        )
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout}s: {' '.join(cmd)}")
        raise

    result = CommandResult(
        returncode=process.returncode,
        stdout=process.stdout or "",
        stderr=process.stderr or "",
    )

    if check and process.returncode != 0:
        error = subprocess.CalledProcessError(
            process.returncode, cmd
        )
        error.stdout = result.stdout
        error.stderr = result.stderr
        raise error

    return result
