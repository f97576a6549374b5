"""Module registry: discovery, persisted status and derived indexes."""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from genoring.errors import ConfigurationError
from genoring.engine.dependencies import parse_dependencies
from genoring.models.config import ModuleConf, PlatformConfig, Settings
from genoring.models.module import ModuleInfo
from genoring.utils.data import read_yaml, write_yaml


logger = logging.getLogger(__name__)

MODULE_NAME_REGEX = re.compile(r"^[a-z][a-z0-9_]*$")
SERVICE_FILE_REGEX = re.compile(r"^([^.]+)\.yml$")
DISABLED_SERVICE_FILE_REGEX = re.compile(r"^([^.]+)\.yml\.dis$")
VOLUME_FILE_REGEX = re.compile(r"^([^.][^/]*)\.yml$")

SERVICE_INCLUDES = ("enabled", "disabled", "alt", "all")
VOLUME_TYPES = ("defined", "shared", "exposed", "used", "all")


@dataclass
class RegistryCache:
    """Lookups derived from the disk layout and the persisted configuration."""
    available: Optional[List[str]] = None
    config: Optional[PlatformConfig] = None
    enabled: Optional[List[str]] = None
    module_infos: Dict[str, ModuleInfo] = field(default_factory=dict)
    services: Optional[Dict[str, str]] = None


class ModuleRegistry:
    """Tracks available modules and their enabled/disabled status.

    Every mutation rewrites ``config.yml`` and then invalidates the cache, so
    no read can observe data derived from the previous configuration.
    """

    def __init__(self, settings: Settings):
        """Initialize module registry."""
        self.settings = settings
        self._cache = RegistryCache()

    def invalidate(self):
        """Drop every cached lookup."""
        self._cache = RegistryCache()

    # Persisted configuration

    def load_config(self) -> PlatformConfig:
        """Load the persisted configuration document."""
        if self._cache.config is None:
            config_file = self.settings.config_file
            if config_file.exists():
                data = read_yaml(config_file, typ="base") or {}
                try:
                    self._cache.config = PlatformConfig(**data)
                except ValidationError as e:
                    raise ConfigurationError(f"Invalid configuration file {config_file}: {e}") from e
            else:
                self._cache.config = PlatformConfig(
                    project=self.settings.project_name,
                    no_exposed_volumes=self.settings.no_exposed_volumes,
                )
        return self._cache.config

    def save_config(self, config: PlatformConfig):
        """Rewrite the configuration document wholesale."""
        data = config.model_dump(by_alias=True)
        write_yaml(self.settings.config_file, data)
        self.invalidate()
        logger.debug(f"Saved {self.settings.config_file}")

    def get_module_conf(self, module: str) -> Optional[ModuleConf]:
        """Persisted status and version of a module, None if never installed."""
        return self.load_config().modules.get(module)

    def set_status(self, module: str, status: str, version: Optional[str] = None):
        """Record a module's status (and version when given)."""
        config = self.load_config().model_copy(deep=True)
        current = config.modules.get(module)
        if version is None:
            version = current.version if current else self.module_info(module).version
        config.modules[module] = ModuleConf(status=status, version=version)
        self.save_config(config)
        logger.info(f"Module {module} set {status} (version {version or 'n/a'})")

    def remove(self, module: str):
        """Forget a module entirely."""
        config = self.load_config().model_copy(deep=True)
        if config.modules.pop(module, None) is not None:
            self.save_config(config)
            logger.info(f"Module {module} removed from configuration")

    # Discovery

    def list_available(self) -> List[str]:
        """Modules present on disk, sorted by name."""
        if self._cache.available is None:
            modules_dir = self.settings.modules_path
            if not modules_dir.is_dir():
                self._cache.available = []
            else:
                self._cache.available = sorted(
                    entry.name for entry in modules_dir.iterdir()
                    if entry.is_dir() and MODULE_NAME_REGEX.match(entry.name)
                )
        return list(self._cache.available)

    def list_enabled(self) -> List[str]:
        """Available modules whose persisted status is ``enabled``."""
        if self._cache.enabled is None:
            modules = self.load_config().modules
            self._cache.enabled = [
                module for module in self.list_available()
                if module in modules and modules[module].status == "enabled"
            ]
        return list(self._cache.enabled)

    def list_disabled(self) -> List[str]:
        """Available modules that are not enabled (installed or not)."""
        enabled = set(self.list_enabled())
        return [module for module in self.list_available() if module not in enabled]

    def list_installed(self) -> List[str]:
        """Available modules recorded in the configuration, whatever their status."""
        modules = self.load_config().modules
        return [module for module in self.list_available() if module in modules]

    def is_enabled(self, module: str) -> bool:
        return module in self.list_enabled()

    def module_path(self, module: str) -> Path:
        return self.settings.modules_path / module

    def module_info(self, module: str) -> ModuleInfo:
        """Parsed descriptor of a module."""
        if module not in self._cache.module_infos:
            descriptor = self.module_path(module) / f"{module}.yml"
            if not descriptor.is_file():
                raise ConfigurationError(f"Module '{module}' not found (missing {descriptor})")
            try:
                info = ModuleInfo.from_descriptor(module, read_yaml(descriptor, typ="base"))
            except ValidationError as e:
                raise ConfigurationError(f"Invalid descriptor for module '{module}': {e}") from e
            self._cache.module_infos[module] = info
        return self._cache.module_infos[module]

    def installed_version(self, module: str) -> str:
        """Version recorded at install time, falling back to the descriptor."""
        conf = self.get_module_conf(module)
        if conf and conf.version:
            return conf.version
        return self.module_info(module).version

    # Services and volumes

    def module_services(self, module: str, include: str = "enabled") -> List[str]:
        """Service names of a module.

        ``enabled`` lists active fragments, ``disabled`` the ones renamed
        ``.yml.dis``, ``alt`` the alternative fragments, ``all`` everything.
        """
        if include not in SERVICE_INCLUDES:
            raise ValueError(f"Invalid service selection: {include}")
        services_dir = self.module_path(module) / "services"
        services = set()
        if services_dir.is_dir():
            for entry in services_dir.iterdir():
                if not entry.is_file():
                    continue
                if include in ("enabled", "all"):
                    match = SERVICE_FILE_REGEX.match(entry.name)
                    if match:
                        services.add(match.group(1))
                if include in ("disabled", "all"):
                    match = DISABLED_SERVICE_FILE_REGEX.match(entry.name)
                    if match:
                        services.add(match.group(1))
        alt_dir = services_dir / "alt"
        if include in ("alt", "all") and alt_dir.is_dir():
            for entry in alt_dir.iterdir():
                match = SERVICE_FILE_REGEX.match(entry.name)
                if entry.is_file() and match:
                    services.add(match.group(1))
        return sorted(services)

    def module_volumes(self, module: str, volume_type: str = "defined") -> List[str]:
        """Volume names of a module.

        ``defined`` lists fragments in ``volumes/``; ``shared``/``exposed``
        filter the descriptor by type; ``used`` resolves the volumes the
        module requires from other modules; ``all`` combines the last three.
        """
        if volume_type not in VOLUME_TYPES:
            raise ValueError(f"Invalid volume type: {volume_type}")
        if volume_type == "defined":
            volumes_dir = self.module_path(module) / "volumes"
            if not volumes_dir.is_dir():
                return []
            return sorted(
                match.group(1) for match in (
                    VOLUME_FILE_REGEX.match(entry.name) for entry in volumes_dir.iterdir()
                    if entry.is_file()
                ) if match
            )

        info = self.module_info(module)
        volumes = []
        if volume_type in ("used", "all"):
            for constraint in parse_dependencies(info.dependencies.volumes, module):
                for clause in constraint.clauses:
                    if clause.element:
                        volumes.append(clause.element)
                    elif clause.module in self.list_available():
                        volumes.extend(self.module_info(clause.module).volumes_of_type("shared"))
        if volume_type in ("shared", "all"):
            volumes.extend(info.volumes_of_type("shared"))
        if volume_type in ("exposed", "all"):
            volumes.extend(info.volumes_of_type("exposed"))
        return sorted(set(volumes))

    def services(self) -> Dict[str, str]:
        """Enabled service name to owning module."""
        if self._cache.services is None:
            index = {}
            for module in self.list_enabled():
                for service in self.module_services(module, "enabled"):
                    index.setdefault(service, module)
            self._cache.services = index
        return dict(self._cache.services)

    def service_owner(self, service: str) -> Optional[str]:
        """Module owning an enabled service."""
        return self.services().get(service)

    def find_service_module(self, service: str) -> Optional[str]:
        """Module declaring a service fragment, enabled or disabled."""
        for module in self.list_available():
            if service in self.module_services(module, "all"):
                return module
        return None

    # Naming

    def container_name(self, service: str) -> str:
        """Runtime container name of a service."""
        return re.sub(r"^genoring", self.load_config().project or self.settings.project_name, service)

    def volume_name(self, volume: str) -> str:
        """Runtime name of a volume."""
        project = self.load_config().project or self.settings.project_name
        return re.sub(r"^genoring-", f"{project}-", volume)
