"""Hook discovery and execution.

Local hooks are ``modules/<module>/hooks/<event>.py`` scripts run on the
host with the module's environment. Container hooks are
``modules/<module>/hooks/<event>_<service>.sh`` scripts run as root inside
the running container of ``<service>``.
"""

import logging
import re
import shlex
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from genoring.errors import HookError
from genoring.engine.environment import EnvironmentManager
from genoring.engine.registry import ModuleRegistry
from genoring.models.config import Settings
from genoring.providers.base import BaseRuntime, ContainerState
from genoring.utils.process import ExecutionContext, run_command


logger = logging.getLogger(__name__)

LOCAL_HOOK_REGEX = re.compile(r"^([a-z][a-z0-9]*)\.py$")
CONTAINER_HOOK_REGEX = re.compile(r"^([a-z][a-z0-9]*)_(.+)\.sh$")
CONTAINER_ROOT = "/genoring"
CONTAINER_MODULES_DIR = f"{CONTAINER_ROOT}/modules"


@dataclass(frozen=True)
class HookHandle:
    """A hook script found on disk."""
    module: str
    event: str
    path: Path
    service: Optional[str] = None

    @property
    def is_local(self) -> bool:
        return self.service is None

    @property
    def key(self) -> str:
        return f"{self.module}/{self.path.name}"


def container_hook_eligible(
    handle: HookHandle,
    scope: Optional[str],
    related: bool,
    owner: Optional[str],
) -> bool:
    """Whether a container hook runs for a call scoped to ``scope``.

    A hook of module A targeting service S runs when no scope is given, when
    the scope is A, or when related hooks are requested and S belongs to the
    scoped module.
    """
    if not scope:
        return True
    if handle.module == scope:
        return True
    return related and owner == scope


class HookIndex:
    """Hooks of a set of modules indexed by ``(event, module)``."""

    def __init__(self):
        """Initialize an empty hook index."""
        self._local: Dict[Tuple[str, str], HookHandle] = {}
        self._container: Dict[Tuple[str, str], List[HookHandle]] = {}

    @classmethod
    def build(cls, registry: ModuleRegistry, modules: List[str]) -> "HookIndex":
        """Scan the hook directories of the given modules."""
        index = cls()
        for module in modules:
            hooks_dir = registry.module_path(module) / "hooks"
            if not hooks_dir.is_dir():
                continue
            for path in sorted(hooks_dir.iterdir()):
                if not path.is_file():
                    continue
                match = LOCAL_HOOK_REGEX.match(path.name)
                if match:
                    index.add(HookHandle(module=module, event=match.group(1), path=path))
                    continue
                match = CONTAINER_HOOK_REGEX.match(path.name)
                if match:
                    index.add(HookHandle(
                        module=module,
                        event=match.group(1),
                        path=path,
                        service=match.group(2),
                    ))
        return index

    def add(self, handle: HookHandle):
        key = (handle.event, handle.module)
        if handle.is_local:
            self._local[key] = handle
        else:
            self._container.setdefault(key, []).append(handle)

    def local(self, event: str, module: str) -> Optional[HookHandle]:
        """Local hook of a module for an event."""
        return self._local.get((event, module))

    def container(self, event: str, module: str) -> List[HookHandle]:
        """Container hooks of a module for an event."""
        return list(self._container.get((event, module), []))


class HookOrchestrator:
    """Runs local and container hooks and collects their failures."""

    def __init__(
        self,
        registry: ModuleRegistry,
        environment: EnvironmentManager,
        runtime: BaseRuntime,
        settings: Settings,
        context: ExecutionContext,
    ):
        """Initialize hook orchestrator."""
        self.registry = registry
        self.environment = environment
        self.runtime = runtime
        self.settings = settings
        self.context = context

    def _index(self, modules: List[str]) -> HookIndex:
        return HookIndex.build(self.registry, modules)

    def run_local(self, event: str, module: Optional[str] = None, args: str = "") -> Dict[str, str]:
        """Run a local hook for one module or every enabled module.

        Returns a map of module name to error output; a failing module does
        not prevent the others from running.
        """
        modules = [module] if module else self.registry.list_enabled()
        index = self._index(modules)
        errors = {}
        for name in modules:
            handle = index.local(event, name)
            if handle is None:
                continue
            logger.info(f"Processing {name} module hook {event}")
            context = self.context.with_env(self.environment.module_environment(name))
            try:
                run_command(
                    [sys.executable, str(handle.path), *shlex.split(args)],
                    context=context,
                )
            except subprocess.CalledProcessError as e:
                output = "\n".join(part for part in ((e.stdout or "").strip(), (e.stderr or "").strip()) if part)
                errors[name] = output or f"exit status {e.returncode}"
                logger.error(f"Failed to process {name} module hook {event}: {errors[name]}")
        return errors

    def run_container(
        self,
        event: str,
        module: Optional[str] = None,
        related: bool = False,
        args: str = "",
    ) -> Dict[str, str]:
        """Run container hooks in running containers.

        Returns a map of ``<module>/<hook file>`` to error output. Hooks whose
        container is not running are skipped with a warning.
        """
        if not module or related:
            modules = self.registry.list_enabled()
            if module and module not in modules:
                modules.append(module)
        else:
            modules = [module]

        owners = self.registry.services()
        index = self._index(modules)
        initialized: Set[str] = set()
        errors = {}

        for name in modules:
            for handle in index.container(event, name):
                owner = owners.get(handle.service)
                if owner is None:
                    logger.debug(f"Skipping {handle.key}: service {handle.service} not enabled")
                    continue
                if not container_hook_eligible(handle, module, related, owner):
                    continue
                container = self.registry.container_name(handle.service)
                info = self.runtime.container(container, self.context)
                if info is None or info.state != ContainerState.RUNNING:
                    state = info.state.value if info and info.state.value else "not running"
                    logger.warning(
                        f"Failed to run {name} module hook {handle.path.name}: {container} is {state}"
                    )
                    continue
                logger.info(f"Processing {name} module hook {event} in '{handle.service}' container")
                try:
                    if container not in initialized:
                        self._initialize_container(container)
                        initialized.add(container)
                    self._exec_hook(handle, owner, container, args)
                except subprocess.CalledProcessError as e:
                    output = "\n".join(part for part in ((e.stdout or "").strip(), (e.stderr or "").strip()) if part)
                    errors[handle.key] = output or f"exit status {e.returncode}"
                    logger.error(f"Hook {handle.key} failed in {container}: {errors[handle.key]}")
        return errors

    def _initialize_container(self, container: str):
        """Refresh the module tree inside a container."""
        self.runtime.exec(
            container,
            f"mkdir -p {CONTAINER_ROOT} && rm -rf {CONTAINER_MODULES_DIR}",
            self.context,
        )
        self.runtime.copy_to(self.settings.modules_path, container, CONTAINER_MODULES_DIR, self.context)

    def _exec_hook(self, handle: HookHandle, owner: str, container: str, args: str):
        script = f"{CONTAINER_MODULES_DIR}/{handle.module}/hooks/{handle.path.name}"
        env_files = self.environment.module_files(owner)
        if handle.module != owner:
            env_files += self.environment.module_files(handle.module)
        command = f"chmod uog+x {script} && {script}"
        if args:
            command += f" {args}"
        self.runtime.exec(
            container,
            command,
            self.context,
            env_files=env_files,
            env={"GENORING_HOST": self.settings.host, "GENORING_PORT": self.settings.port},
        )

    def has_state_hook(self, module: str) -> bool:
        return self._index([module]).local("state", module) is not None

    def probe_state(self, module: str) -> Optional[str]:
        """Output of a module's ``state`` hook, None if it has none.

        Raises HookError when the hook exits with a non-zero status.
        """
        handle = self._index([module]).local("state", module)
        if handle is None:
            return None
        context = self.context.with_env(self.environment.module_environment(module))
        result = run_command([sys.executable, str(handle.path)], check=False, context=context)
        if result.returncode != 0:
            raise HookError(
                f"Failed to get {module} module state",
                {module: result.output or f"exit status {result.returncode}"},
            )
        return result.stdout.strip()
