"""Runtime state classification and readiness polling."""

import logging
import time
from enum import Enum
from typing import Callable, List, Optional

from genoring.errors import ReadinessTimeout
from genoring.engine.hooks import HookOrchestrator
from genoring.engine.registry import ModuleRegistry
from genoring.models.config import Settings
from genoring.providers.base import BaseRuntime, ContainerState
from genoring.utils.process import ExecutionContext


logger = logging.getLogger(__name__)

POLL_INTERVAL = 1


class SystemMode(Enum):
    """Modes of a running platform, derived from the active profiles."""
    ONLINE = "online"
    BACKEND = "backend"
    OFFLINE = "offline"


class RuntimeStateMachine:
    """Classifies the platform or a module into a runtime state."""

    def __init__(
        self,
        registry: ModuleRegistry,
        runtime: BaseRuntime,
        hooks: HookOrchestrator,
        settings: Settings,
        context: ExecutionContext,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        confirm: Optional[Callable[[str], bool]] = None,
    ):
        """Initialize runtime state machine."""
        self.registry = registry
        self.runtime = runtime
        self.hooks = hooks
        self.settings = settings
        self.context = context
        self.active_profiles = settings.profiles
        self._sleep = sleep
        self._clock = clock
        self._confirm = confirm

    def get_state(self) -> ContainerState:
        """Aggregate state of every container of the project.

        RUNNING only if all containers run; otherwise the first other state.
        """
        if not self.settings.compose_file.is_file():
            return ContainerState.NONE
        containers = self.runtime.ps(self.settings.compose_file, self.context)
        if not containers:
            return ContainerState.NONE
        for container in containers:
            if container.state != ContainerState.RUNNING:
                return container.state
        return ContainerState.RUNNING

    def mode(self) -> Optional[SystemMode]:
        """Mode of a running platform, None when it is not running."""
        if self.get_state() != ContainerState.RUNNING:
            return None
        profiles = {p.strip() for p in self.active_profiles.split(",") if p.strip()}
        if "offline" in profiles:
            return SystemMode.OFFLINE
        if "backend" in profiles:
            return SystemMode.BACKEND
        return SystemMode.ONLINE

    def get_status(self) -> str:
        """Platform status: a mode name when running, else the container state."""
        state = self.get_state()
        if state != ContainerState.RUNNING:
            return state.value
        return self.mode().value

    def service_state(self, service: str) -> ContainerState:
        info = self.runtime.container(self.registry.container_name(service), self.context)
        return info.state if info else ContainerState.NONE

    def module_state(self, module: str) -> str:
        """Current state of a module.

        A module's ``state`` hook is trusted over container states when it
        exists. Otherwise the first non-running service state is returned.
        """
        probed = self.hooks.probe_state(module)
        if probed is not None:
            return "running" if "running" in probed.lower() else probed
        for service in self.registry.module_services(module, "enabled"):
            state = self.service_state(service)
            if state != ContainerState.RUNNING:
                return state.value
        return "running" if self.registry.module_services(module, "enabled") else ""

    @staticmethod
    def _is_ready(state: str, has_probe: bool) -> bool:
        if has_probe:
            return state == "running"
        # Containers that do not exist in the active profiles are not waited on
        return state in ("running", "")

    def wait_ready(self, module: str, budget: Optional[int] = None, interactive: Optional[bool] = None):
        """Poll a module until it is running.

        Raises ReadinessTimeout once the budget (seconds) is exhausted. In
        interactive mode the user may extend the budget once.
        """
        budget = budget if budget is not None else self.settings.wait_ready
        interactive = self.settings.interactive if interactive is None else interactive
        has_probe = self.hooks.has_state_hook(module)
        deadline = self._clock() + budget
        extended = False
        while True:
            state = self.module_state(module)
            if self._is_ready(state, has_probe):
                logger.debug(f"Module {module} is ready")
                return
            if self._clock() >= deadline:
                if (
                    interactive
                    and not extended
                    and self._confirm is not None
                    and self._confirm(f"Module {module} takes longer than expected to start. Continue waiting?")
                ):
                    extended = True
                    deadline = self._clock() + budget
                    continue
                raise ReadinessTimeout(
                    f"Module {module} was not ready after {budget}s "
                    f"(state: {state or 'unknown'})\n{self._logs(module)}"
                )
            self._sleep(POLL_INTERVAL)

    def wait_modules_ready(self, modules: Optional[List[str]] = None, budget: Optional[int] = None):
        """Wait for each (default: enabled) module in turn."""
        for module in modules or self.registry.list_enabled():
            self.wait_ready(module, budget)

    def _logs(self, module: str) -> str:
        logs = []
        for service in self.registry.module_services(module, "enabled"):
            state = self.service_state(service)
            if state not in (ContainerState.RUNNING, ContainerState.NONE):
                container = self.registry.container_name(service)
                logs.append(f"==> {service}:\n{self.runtime.logs(container, self.context, tail=10)}")
        return "\n".join(logs)
