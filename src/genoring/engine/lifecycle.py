"""Lifecycle operations of a GenoRing platform.

``Platform`` wires the registry, environment, compose assembler, hook
orchestrator and runtime state machine together and exposes the user-facing
verbs. Every verb that changes modules runs inside an ``OperationContext``.
"""

import logging
import re
import shutil
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from genoring import GENORING_VERSION
from genoring.errors import (
    ConfigurationError,
    HookError,
    OperationError,
    ReadinessTimeout,
)
from genoring.engine.alternatives import AlternativeManager, ServiceRedirector
from genoring.engine.builder import ImageBuilder
from genoring.engine.compose import AssemblyResult, ComposeAssembler
from genoring.engine.dependencies import check_module_dependencies
from genoring.engine.environment import EnvironmentManager
from genoring.engine.hooks import HookOrchestrator
from genoring.engine.operations import OPERATION_ERRORS, OperationContext
from genoring.engine.registry import ModuleRegistry
from genoring.engine.state import RuntimeStateMachine
from genoring.engine.versions import compare_versions, parse_version, sort_versions
from genoring.models.config import ModuleConf, Settings
from genoring.models.module import AlternativeInfo, ModuleInfo
from genoring.providers import BaseRuntime, get_runtime
from genoring.utils.process import ExecutionContext, run_command


logger = logging.getLogger(__name__)

MODES = ("online", "backend", "offline")
BACKUP_NAME_REGEX = re.compile(r"^[a-z][\w.\-]*$", re.IGNORECASE)
BACKUP_CONFIG_DIR = "config"

# Tag stabilities accepted for each minimum stability
STABILITY_FILTERS = {
    "": ("",),
    "RC": ("", "RC"),
    "beta": ("", "RC", "beta"),
    "alpha": ("", "RC", "beta", "alpha"),
    "dev": ("", "RC", "beta", "alpha", "dev"),
}


class Platform:
    """A GenoRing installation and its lifecycle verbs."""

    def __init__(
        self,
        settings: Settings,
        runtime: Optional[BaseRuntime] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize platform."""
        self.settings = settings
        self.confirm = confirm
        self.registry = ModuleRegistry(settings)
        self.environment = EnvironmentManager(settings)
        self.runtime = runtime or get_runtime(settings.runtime)
        self.context = ExecutionContext(
            cwd=settings.project_dir,
            env={
                "COMPOSE_PROJECT_NAME": self.registry.load_config().project or settings.project_name,
                "COMPOSE_PROFILES": settings.profiles,
                "GENORING_HOST": settings.host,
                "GENORING_PORT": settings.port,
                "GENORING_VOLUMES_DIR": str(settings.volumes_path),
                "PWD": str(settings.project_dir),
            },
            platform=settings.platform,
            verbose=settings.verbose,
        )
        self.hooks = HookOrchestrator(self.registry, self.environment, self.runtime, settings, self.context)
        self.state = RuntimeStateMachine(
            self.registry,
            self.runtime,
            self.hooks,
            settings,
            self.context,
            sleep=sleep,
            clock=clock,
            confirm=confirm,
        )
        self.assembler = ComposeAssembler(self.registry, self.environment, settings)
        self.alternatives = AlternativeManager(self.registry)
        self.redirector = ServiceRedirector(self.registry, settings.extra_hosts_file)
        self.builder = ImageBuilder(self.registry, self.environment, self.runtime, settings)

    def _confirm(self, message: str) -> bool:
        if not self.settings.interactive or self.confirm is None:
            return True
        return self.confirm(message)

    def _set_profiles(self, profiles: str):
        self.context = self.context.with_env({"COMPOSE_PROFILES": profiles})
        self.hooks.context = self.context
        self.state.context = self.context
        self.state.active_profiles = profiles

    def _check_hooks(self, errors: Dict[str, str], message: str):
        if errors:
            raise HookError(message, errors)

    def _finish(self, ctx: OperationContext, label: str, on_failure: Optional[Callable[[], None]] = None):
        """Clean up and end an operation, raising OperationError if it failed."""
        ctx.cleanup()
        if ctx.failed and on_failure is not None:
            try:
                on_failure()
            except OPERATION_ERRORS as e:
                logger.warning(f"Failed to revert {label.lower()}: {e}")
        ctx.end()
        if ctx.failed:
            raise OperationError(f"{label} failed: {ctx.error}")

    def _operation(self, module: Optional[str] = None, backup: Optional[bool] = None) -> OperationContext:
        if backup is None:
            backup = not self.settings.no_backup
        return OperationContext(self, module, backup=backup)

    # Runtime

    def check_runtime(self):
        """Fail early when the container runtime is unusable."""
        self.runtime.check(self.context)

    def status(self) -> str:
        """Platform status: ``online``, ``backend``, ``offline`` or a container state."""
        return self.state.get_status()

    def module_states(self) -> Dict[str, str]:
        """Real state of each enabled module."""
        return {module: self.state.module_state(module) for module in self.registry.list_enabled()}

    def start(self, mode: str = "online"):
        """Start the platform in a mode and run the matching container hooks."""
        mode = mode or "online"
        if mode not in MODES:
            raise ConfigurationError(f"Invalid starting mode '{mode}'. Valid modes: {', '.join(MODES)}")
        self._set_profiles(self.environment.profile() if mode == "online" else mode)
        if not self.settings.compose_file.is_file():
            self.generate()
        if self.state.get_state().value != "running":
            self._check_hooks(self.hooks.run_local("start"), "Start hooks failed")
            logger.info(f"Starting GenoRing ({mode} mode)")
            self.runtime.up(self.settings.compose_file, self.context)
        try:
            self.state.wait_modules_ready()
        except ReadinessTimeout as e:
            logger.warning(f"{e}\nGenoRing does not seem ready; container hooks may fail")
        errors = self.hooks.run_container(mode)
        if errors:
            logger.warning(f"Some {mode} container hooks failed: {', '.join(errors)}")

    def stop(self):
        """Stop every container of every profile."""
        if self.settings.compose_file.is_file():
            logger.info("Stopping GenoRing")
            self.runtime.down(self.settings.compose_file, self.context)
        self._check_hooks(self.hooks.run_local("stop"), "Stop hooks failed")

    def generate(self) -> AssemblyResult:
        """Regenerate the compose document."""
        return self.assembler.generate(self.runtime, self.context)

    def logs(self, service: str, tail: Optional[int] = None) -> str:
        if self.registry.service_owner(service) is None:
            raise ConfigurationError(f"Service '{service}' does not exist or is not enabled")
        return self.runtime.logs(self.registry.container_name(service), self.context, tail=tail)

    # Backups

    def _save_config_files(self, target: Path):
        target.mkdir(parents=True, exist_ok=True)
        for path in (self.settings.compose_file, self.settings.config_file, self.settings.extra_hosts_file):
            if path.is_file():
                shutil.copy2(path, target / path.name)
        if self.settings.env_path.is_dir():
            shutil.copytree(self.settings.env_path, target / self.settings.env_dir, dirs_exist_ok=True)

    def _load_config_files(self, source: Path):
        if not source.is_dir():
            raise ConfigurationError(f"No configuration saved in {source}")
        for path in (self.settings.compose_file, self.settings.config_file, self.settings.extra_hosts_file):
            saved = source / path.name
            if saved.is_file():
                shutil.copy2(saved, path)
            elif path.is_file():
                path.unlink()
        saved_env = source / self.settings.env_dir
        if saved_env.is_dir():
            shutil.copytree(saved_env, self.settings.env_path, dirs_exist_ok=True)
        self.registry.invalidate()

    def backup_path(self, name: str) -> Path:
        if not BACKUP_NAME_REGEX.match(name or ""):
            raise ConfigurationError(
                f"Invalid backup name '{name}'. Only letters, numbers, dots, underscores and "
                "dashes are allowed and the name must begin with a letter."
            )
        return self.settings.backups_path / name

    def snapshot(self, name: str):
        """Save configuration files and run local backup hooks (platform stopped)."""
        target = self.backup_path(name)
        logger.info(f"Saving '{name}' backup")
        self._save_config_files(target / BACKUP_CONFIG_DIR)
        self._check_hooks(self.hooks.run_local("backup", args=name), f"Backup '{name}' failed")

    def restore_snapshot(self, name: str):
        """Restore configuration files and run local restore hooks (platform stopped)."""
        source = self.backup_path(name)
        logger.info(f"Restoring '{name}' backup")
        self._load_config_files(source / BACKUP_CONFIG_DIR)
        self._check_hooks(self.hooks.run_local("restore", args=name), f"Restore '{name}' failed")

    def backup(self, name: Optional[str] = None, module: Optional[str] = None) -> Path:
        """Back up the whole platform or a single module's data."""
        name = name or datetime.now().strftime("backup_%Y%d%mT%H%M")
        target = self.backup_path(name)
        if target.is_dir() and any(target.iterdir()):
            if not self._confirm(f"The backup directory '{target}' is not empty. Overwrite existing backups?"):
                raise OperationError(f"Backup directory '{target}' is not empty")
        target.mkdir(parents=True, exist_ok=True)
        if not module:
            self._save_config_files(target / BACKUP_CONFIG_DIR)

        ctx = self._operation(module, backup=False)
        ctx.add_local_hook("backup", args=name)
        ctx.add_container_hook("backup", related=True, args=name)
        ctx.prepare()
        ctx.perform_local()
        ctx.perform_container()
        self._finish(ctx, f"Backup '{name}'")
        logger.info(f"Backup created in {target}")
        return target

    def restore(self, name: str, module: Optional[str] = None):
        """Restore a named backup, for the whole platform or one module."""
        source = self.backup_path(name)
        if not source.is_dir():
            raise ConfigurationError(f"Backup '{name}' not found")
        ctx = self._operation(module)
        ctx.add_local_hook("restore", args=name)
        ctx.add_container_hook("restore", related=True, args=name)
        ctx.prepare()
        if not module:
            ctx.run(self._load_config_files, source / BACKUP_CONFIG_DIR)
            ctx.run(self.generate)
        ctx.perform_local()
        ctx.perform_container()
        self._finish(ctx, f"Restore '{name}'")

    # Modules

    def _module_info(self, module: str) -> ModuleInfo:
        if module not in self.registry.list_available():
            raise ConfigurationError(f"Module '{module}' not found")
        return self.registry.module_info(module)

    def _check_engine_version(self, info: ModuleInfo):
        required = info.genoring_script_version
        if not required or parse_version(required) is None or compare_versions(required, GENORING_VERSION) > 0:
            raise ConfigurationError(
                f"Module '{info.name}' not supported by current GenoRing version. "
                f"Required version: {required or 'n/a'}, current version: {GENORING_VERSION}."
            )

    def _restore_conf(self, module: str, previous: Optional[ModuleConf]):
        if previous is None:
            self.registry.remove(module)
        else:
            self.registry.set_status(module, previous.status, previous.version)
        self.generate()

    def install(self, module: str):
        """Install and enable a module that was never installed."""
        info = self._module_info(module)
        self._check_engine_version(info)
        if self.registry.is_enabled(module):
            logger.warning(f"Module '{module}' already installed")
            return
        check_module_dependencies(info, self.registry)
        self._check_hooks(
            self.hooks.run_local("requirements", module),
            f"Could not install module '{module}': some requirements were not met",
        )

        previous = self.registry.get_module_conf(module)
        ctx = self._operation(module)
        ctx.add_local_hook("init", revert="uninstall")
        ctx.add_container_hook("enable", revert="disable", related=True)
        ctx.prepare()
        ctx.run(self.registry.set_status, module, "enabled", info.version)
        ctx.run(self.environment.setup_module, module)
        if not self.settings.hide_compile:
            ctx.run(self.compile_missing)
        ctx.perform_local()
        ctx.run(self.generate)
        ctx.perform_container()
        self._finish(ctx, f"Installing module '{module}'", lambda: self._restore_conf(module, previous))
        logger.info(f"Module {module} installed")

    def enable(self, module: str):
        """Enable a module, installing it first if needed."""
        info = self._module_info(module)
        previous = self.registry.get_module_conf(module)
        if previous is None:
            self.install(module)
            return
        if previous.status == "enabled":
            logger.warning(f"Module '{module}' already enabled")
            return
        self._check_engine_version(info)
        check_module_dependencies(info, self.registry)

        ctx = self._operation(module)
        ctx.add_local_hook("enable", revert="disable")
        ctx.add_container_hook("enable", revert="disable", related=True)
        ctx.prepare()
        ctx.run(self.registry.set_status, module, "enabled")
        ctx.perform_local()
        ctx.run(self.generate)
        ctx.perform_container()
        self._finish(ctx, f"Enabling module '{module}'", lambda: self._restore_conf(module, previous))
        logger.info(f"Module {module} enabled")

    def disable(self, module: str, uninstall: bool = False, keep_env: bool = False):
        """Disable (or uninstall) a module."""
        self._module_info(module)
        previous = self.registry.get_module_conf(module)
        if previous is None:
            raise ConfigurationError(f"Module '{module}' is not installed")
        if previous.status != "enabled":
            logger.warning(f"Module '{module}' already disabled")

        ctx = self._operation(module)
        ctx.add_local_hook("disable", revert="enable", order=1)
        ctx.add_container_hook("disable", revert="enable", related=True, order=1)
        if uninstall:
            ctx.add_local_hook("uninstall", order=2)
            ctx.add_container_hook("uninstall", related=True, order=2)
        ctx.prepare()
        if uninstall:
            ctx.run(self.registry.remove, module)
        else:
            ctx.run(self.registry.set_status, module, "disabled")
        ctx.run(self.generate)
        ctx.perform_container()
        ctx.perform_local()
        if uninstall and not keep_env:
            ctx.run(self.environment.remove_module_files, module)
        label = "Uninstalling" if uninstall else "Disabling"
        self._finish(ctx, f"{label} module '{module}'", lambda: self._restore_conf(module, previous))
        logger.info(f"Module {module} {'uninstalled' if uninstall else 'disabled'}")

    def uninstall(self, module: str, keep_env: bool = False):
        self.disable(module, uninstall=True, keep_env=keep_env)

    def update(self, module: Optional[str] = None):
        """Run the update hooks of one or every enabled module."""
        if module and not self.registry.is_enabled(module):
            raise ConfigurationError(f"Module '{module}' is not enabled")
        ctx = self._operation(module)
        ctx.add_local_hook("update")
        ctx.add_container_hook("update")
        ctx.prepare()
        ctx.perform_local()
        ctx.run(self.generate)
        ctx.perform_container()
        self._finish(ctx, f"Updating {module or 'GenoRing'}")

    # Upgrades

    def engine_version(self) -> str:
        return self.registry.load_config().version or GENORING_VERSION

    def git_available(self) -> bool:
        return (self.settings.project_dir / ".git").is_dir() and shutil.which("git") is not None

    def available_versions(self, stability: str = "") -> List[str]:
        """Release tags of the installation, most recent first."""
        if stability not in STABILITY_FILTERS:
            raise ConfigurationError(f"Invalid stability '{stability}'")
        if not self.git_available():
            raise ConfigurationError("Version information requires a git checkout of GenoRing")
        run_command(["git", "fetch", "--tags"], check=False, context=self.context)
        result = run_command(["git", "tag", "-l"], context=self.context)
        allowed = STABILITY_FILTERS[stability]
        versions = []
        for tag in result.stdout.split():
            version = parse_version(tag)
            if version is not None and version.stability in allowed:
                versions.append(tag)
        return sort_versions(versions)

    def _git_head(self) -> str:
        return run_command(["git", "rev-parse", "HEAD"], context=self.context).stdout.strip()

    def _checkout(self, ref: str):
        run_command(["git", "checkout", ref], context=self.context)
        self.registry.invalidate()

    def _set_engine_version(self, version: str):
        config = self.registry.load_config().model_copy(deep=True)
        config.version = version
        self.registry.save_config(config)

    def upgrade(self, version: Optional[str] = None, stability: str = "") -> bool:
        """Check out another GenoRing release and run the upgrade hooks.

        Returns False when nothing was done.
        """
        current = self.engine_version()
        if version is None:
            versions = self.available_versions(stability)
            if not versions:
                raise OperationError("Unable to fetch version information")
            version = versions[0]
        elif parse_version(version) is None:
            raise ConfigurationError(f"Invalid version '{version}'")
        elif not self.git_available():
            raise ConfigurationError("Upgrading requires a git checkout of GenoRing")

        comparison = compare_versions(version, current)
        if comparison == 0:
            logger.info("GenoRing is already up-to-date")
            return False
        if comparison > 0:
            question = f"Upgrade to version {version}?"
        else:
            question = f"Are you sure you want to DOWNGRADE your current version ({current}) to version {version}?"
        if not self._confirm(question):
            logger.info("Upgrade aborted")
            return False

        head = self._git_head()
        ctx = self._operation()
        if comparison > 0:
            ctx.add_local_hook("upgrade", args=f"{current} {version}")
            ctx.add_container_hook("upgrade", args=f"{current} {version}")
        ctx.prepare()
        ctx.run(self._checkout, version)
        ctx.perform_local()
        ctx.run(self.generate)
        ctx.perform_container()
        ctx.run(self._set_engine_version, version)
        self._finish(ctx, f"Upgrading GenoRing to {version}", lambda: self._checkout(head))
        logger.info(f"GenoRing upgraded from {current} to {version}")
        return True

    def upgrade_module(self, module: str) -> bool:
        """Run a module's upgrade hooks up to its declared version."""
        info = self._module_info(module)
        if not self.registry.is_enabled(module):
            raise ConfigurationError(f"Module '{module}' is not enabled")
        installed = self.registry.installed_version(module)
        if compare_versions(info.version, installed) <= 0:
            logger.info(f"Module {module} is already up-to-date ({installed})")
            return False
        self._check_engine_version(info)

        previous = self.registry.get_module_conf(module)
        ctx = self._operation(module)
        ctx.add_local_hook("upgrade", args=f"{installed} {info.version}")
        ctx.add_container_hook("upgrade", related=True, args=f"{installed} {info.version}")
        ctx.prepare()
        ctx.perform_local()
        ctx.run(self.generate)
        ctx.perform_container()
        ctx.run(self.registry.set_status, module, "enabled", info.version)
        self._finish(ctx, f"Upgrading module '{module}'", lambda: self._restore_conf(module, previous))
        logger.info(f"Module {module} upgraded from {installed} to {info.version}")
        return True

    # Alternatives and services

    def list_alternatives(self, module: str) -> Dict[str, AlternativeInfo]:
        self._module_info(module)
        return self.alternatives.list(module)

    def enable_alternative(self, module: str, name: str):
        self._module_info(module)
        self.alternatives.enable(module, name)

    def disable_alternative(self, module: str, name: str):
        self._module_info(module)
        self.alternatives.disable(module, name)

    def to_local_service(self, service: str, ip: str):
        """Replace a container service by a host reachable at ``ip``."""
        self.redirector.to_local(service, ip)
        self.generate()

    def to_docker_service(self, service: str):
        """Turn a redirected service back into a container service."""
        self.redirector.to_docker(service)
        self.generate()

    def compile(self, module: str, service: Optional[str] = None) -> str:
        return self.builder.compile(module, service, self.context)

    def compile_missing(self) -> List[str]:
        return self.builder.compile_missing(self.context)

    # Installation

    def setup(self, module: Optional[str] = None):
        """First initialization of the platform (or of one module)."""
        if not module and not self.registry.list_enabled():
            self.registry.set_status("genoring", "enabled")
        if not self.settings.hide_compile:
            self.compile_missing()
        for name in [module] if module else self.registry.list_enabled():
            self.environment.setup_module(name)
        self.generate()
        self._check_hooks(self.hooks.run_local("init", module), "Initialization hooks failed")
        self.start("offline")
        self._check_hooks(
            self.hooks.run_container("enable", module, related=True),
            "Container initialization hooks failed",
        )
        self.stop()
        logger.info("GenoRing setup done")

    def reset(self, delete_images: bool = False, keep_env: bool = False):
        """Remove containers, volumes, generated files and configuration."""
        try:
            self.stop()
        except OPERATION_ERRORS as e:
            logger.warning(f"Failed to stop GenoRing: {e}")
        modules = self.registry.list_installed()
        for module in modules:
            volumes = self.registry.module_volumes(module, "defined")
            if self.assembler.no_exposed_volumes:
                volumes += self.registry.module_volumes(module, "exposed")
            for volume in sorted(set(volumes)):
                self.runtime.remove_volume(self.registry.volume_name(volume), self.context)
            if delete_images:
                for service in self.registry.module_services(module, "all"):
                    if self.builder.sources_path(module, service).is_dir():
                        self.runtime.remove_image(service, self.context)
        for module in modules:
            errors = self.hooks.run_local("uninstall", module)
            if errors:
                logger.warning(f"Uninstall hook of module {module} failed")
        for path in (self.settings.config_file, self.settings.compose_file, self.settings.extra_hosts_file):
            path.unlink(missing_ok=True)
        if self.settings.dependencies_path.is_dir():
            shutil.rmtree(self.settings.dependencies_path)
        if not keep_env:
            for module in self.registry.list_available():
                self.environment.remove_module_files(module)
        self.registry.invalidate()
        logger.info("GenoRing reinitialized")
