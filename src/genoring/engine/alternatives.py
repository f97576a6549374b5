"""Service alternatives and service redirection.

An alternative swaps service fragments of a disabled module:
``substitue`` entries rename ``services/<svc>.yml`` to ``<svc>.yml.dis`` and
copy the replacement from ``services/alt/``, ``add`` entries copy new
fragments from ``services/alt/`` and ``remove`` entries only rename. Any
partial change is undone when a step fails.
"""

import ipaddress
import logging
import shutil
from pathlib import Path
from typing import Dict, List, Tuple

from genoring.errors import ConfigurationError
from genoring.engine.registry import ModuleRegistry
from genoring.models.module import AlternativeInfo
from genoring.utils.data import read_yaml, write_yaml


logger = logging.getLogger(__name__)


class AlternativeManager:
    """Applies and reverts module alternatives on disk."""

    def __init__(self, registry: ModuleRegistry):
        """Initialize alternative manager."""
        self.registry = registry

    def list(self, module: str) -> Dict[str, AlternativeInfo]:
        """Alternatives declared by a module."""
        return dict(self.registry.module_info(module).alternatives)

    def _get(self, module: str, name: str) -> AlternativeInfo:
        alternatives = self.list(module)
        if name not in alternatives:
            raise ConfigurationError(f"Alternative '{name}' not found for module '{module}'")
        if self.registry.is_enabled(module):
            raise ConfigurationError(
                f"Cannot change alternative '{name}' of enabled module '{module}'. "
                "You must disable or uninstall the module first."
            )
        return alternatives[name]

    def _services_dir(self, module: str) -> Path:
        return self.registry.module_path(module) / "services"

    def enable(self, module: str, name: str):
        """Apply an alternative to a disabled module."""
        alternative = self._get(module, name)
        services_dir = self._services_dir(module)
        alt_dir = services_dir / "alt"
        replaced = list(alternative.substitute) + list(alternative.remove)

        already = [s for s in replaced if (services_dir / f"{s}.yml.dis").exists()]
        if already:
            raise ConfigurationError(
                f"Cannot enable alternative '{name}' on module '{module}': services already "
                f"changed by another alternative ({', '.join(already)})"
            )
        added = [s for s in alternative.add if (services_dir / f"{s}.yml").exists()]
        if added:
            raise ConfigurationError(
                f"Cannot enable alternative '{name}' on module '{module}': services already "
                f"added by another alternative ({', '.join(added)})"
            )
        sources = [(s, alt_dir / f"{r}.yml") for s, r in alternative.substitute.items()]
        sources += [(s, alt_dir / f"{s}.yml") for s in alternative.add]
        missing = [source.stem for _, source in sources if not source.is_file()]
        missing += [s for s in replaced if not (services_dir / f"{s}.yml").is_file()]
        if missing:
            raise ConfigurationError(
                f"Cannot enable alternative '{name}' on module '{module}': missing service "
                f"definitions ({', '.join(missing)})"
            )

        renamed: List[str] = []
        copied: List[str] = []
        try:
            for service in replaced:
                (services_dir / f"{service}.yml").rename(services_dir / f"{service}.yml.dis")
                renamed.append(service)
            for service, source in sources:
                shutil.copyfile(source, services_dir / f"{service}.yml")
                copied.append(service)
        except OSError as e:
            for service in copied:
                (services_dir / f"{service}.yml").unlink(missing_ok=True)
            for service in renamed:
                (services_dir / f"{service}.yml.dis").rename(services_dir / f"{service}.yml")
            raise ConfigurationError(f"Cannot enable alternative '{name}' on module '{module}': {e}") from e
        self.registry.invalidate()
        logger.info(f"Alternative {name} enabled on module {module}")

    def disable(self, module: str, name: str):
        """Revert an alternative of a disabled module."""
        alternative = self._get(module, name)
        services_dir = self._services_dir(module)
        restored = list(alternative.substitute) + list(alternative.remove)

        missing = [s for s in restored if not (services_dir / f"{s}.yml.dis").is_file()]
        if missing:
            raise ConfigurationError(
                f"Cannot disable alternative '{name}' on module '{module}': previous service "
                f"definitions are missing ({', '.join(missing)})"
            )

        renamed: List[str] = []
        try:
            for service in list(alternative.substitute) + list(alternative.add):
                (services_dir / f"{service}.yml").unlink(missing_ok=True)
            for service in restored:
                (services_dir / f"{service}.yml.dis").rename(services_dir / f"{service}.yml")
                renamed.append(service)
        except OSError as e:
            for service in renamed:
                (services_dir / f"{service}.yml").rename(services_dir / f"{service}.yml.dis")
            raise ConfigurationError(f"Cannot disable alternative '{name}' on module '{module}': {e}") from e
        self.registry.invalidate()
        logger.info(f"Alternative {name} disabled on module {module}")


def validate_ip(ip: str) -> str:
    """Return ``ip`` if it is a valid IPv4 or IPv6 address (zone index allowed)."""
    try:
        ipaddress.ip_address((ip or "").split("%", 1)[0])
    except ValueError as e:
        raise ConfigurationError(f"Invalid IP address: {ip!r}") from e
    return ip


class ServiceRedirector:
    """Replaces enabled services by hosts reachable outside the runtime."""

    def __init__(self, registry: ModuleRegistry, extra_hosts_file: Path):
        """Initialize service redirector."""
        self.registry = registry
        self.extra_hosts_file = extra_hosts_file

    def _read_hosts(self) -> List[Tuple[str, str]]:
        if not self.extra_hosts_file.is_file():
            return []
        data = read_yaml(self.extra_hosts_file) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Invalid extra hosts file {self.extra_hosts_file}")
        return [(str(name), str(address)) for name, address in data.items()]

    def _write_hosts(self, hosts: List[Tuple[str, str]]):
        if hosts:
            write_yaml(self.extra_hosts_file, dict(hosts))
        else:
            self.extra_hosts_file.unlink(missing_ok=True)

    def to_local(self, service: str, ip: str):
        """Disable a service fragment and point its name to ``ip``."""
        validate_ip(ip)
        module = self.registry.service_owner(service)
        if module is None:
            raise ConfigurationError(f"Service '{service}' does not exist or is not enabled")
        services_dir = self.registry.module_path(module) / "services"
        fragment = services_dir / f"{service}.yml"
        disabled = services_dir / f"{service}.yml.dis"
        if disabled.exists():
            # Fragment installed by an alternative
            fragment.unlink()
        else:
            fragment.rename(disabled)
        hosts = [entry for entry in self._read_hosts() if entry[0] != service]
        hosts.append((service, ip))
        self._write_hosts(hosts)
        self.registry.invalidate()
        logger.info(f"Service {service} of module {module} redirected to {ip}")

    def to_docker(self, service: str):
        """Turn a redirected service back into a container."""
        if self.registry.service_owner(service) is not None:
            raise ConfigurationError(f"Service '{service}' is already a container service")
        hosts = self._read_hosts()
        if service not in dict(hosts):
            raise ConfigurationError(f"Service '{service}' is not redirected to a local host")
        module = self.registry.find_service_module(service)
        if module is None:
            raise ConfigurationError(f"No module provides service '{service}'")
        services_dir = self.registry.module_path(module) / "services"
        (services_dir / f"{service}.yml.dis").rename(services_dir / f"{service}.yml")
        self._write_hosts([entry for entry in hosts if entry[0] != service])
        self.registry.invalidate()
        logger.info(f"Service {service} of module {module} restored as a container")
