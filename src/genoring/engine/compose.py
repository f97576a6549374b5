"""Compose document assembly.

Every enabled module contributes service and volume fragments. They are
merged, in module name order, into a single compose document:

- ``services/<name>.yml`` defines a service owned by the module,
- ``services/<name>.override.yml`` replaces fields of a service owned by any
  module,
- ``services/<name>.merge.yml`` merges into it (maps combine, lists append),
- ``volumes/<name>.yml`` defines a volume; modules may share a volume name as
  long as they agree on its major version.

Start order comes from BEFORE/AFTER constraints. Profile-scoped edges are
written as one overlay per profile in ``dependencies/`` and pulled in through
``extends`` so the runtime selects them with ``COMPOSE_PROFILES``.
"""

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from genoring.errors import AssemblyError
from genoring.engine.dependencies import expand_profiles, parse_dependencies
from genoring.engine.environment import EnvironmentManager
from genoring.engine.registry import SERVICE_FILE_REGEX, VOLUME_FILE_REGEX, ModuleRegistry
from genoring.engine.versions import parse_version, version_satisfies
from genoring.models.config import Settings
from genoring.providers.base import BaseRuntime
from genoring.utils.data import (
    dump_yaml,
    merge_data,
    override_data,
    read_version_comment,
    read_yaml,
    write_yaml,
)
from genoring.utils.process import ExecutionContext


logger = logging.getLogger(__name__)

OVERLAY_PROFILES = ("dev", "staging", "prod", "backend", "offline")
OVERRIDE_FILE_REGEX = re.compile(r"^([^.]+)\.override\.yml$")
MERGE_FILE_REGEX = re.compile(r"^([^.]+)\.merge\.yml$")
NAMED_VOLUME_REGEX = re.compile(r"^([\w\-]+):")
EXPOSED_PREFIX = "${GENORING_VOLUMES_DIR}/"


@dataclass
class Fragment:
    """A service or volume definition and where it came from."""
    module: str
    version: str
    definition: Dict[str, Any]


@dataclass
class AssemblyResult:
    """Output of an assembly run."""
    document: Dict[str, Any]
    overlays: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    external_volumes: List[str] = field(default_factory=list)


class ComposeAssembler:
    """Builds the compose document from the enabled modules."""

    def __init__(self, registry: ModuleRegistry, environment: EnvironmentManager, settings: Settings):
        """Initialize compose assembler."""
        self.registry = registry
        self.environment = environment
        self.settings = settings

    @property
    def no_exposed_volumes(self) -> bool:
        return self.settings.no_exposed_volumes or self.registry.load_config().no_exposed_volumes

    def assemble(self, modules: Optional[List[str]] = None) -> AssemblyResult:
        """Merge the fragments of the given (default: enabled) modules.

        Raises AssemblyError on duplicate service ownership or when two
        modules declare incompatible major versions of a volume.
        """
        if modules is None:
            modules = self.registry.list_enabled()
        modules = sorted(modules)

        services: Dict[str, Fragment] = {}
        volumes: Dict[str, Fragment] = {}
        overrides: Dict[str, List[Dict]] = defaultdict(list)
        merges: Dict[str, List[Dict]] = defaultdict(list)
        edges: Dict[str, Dict[str, List[str]]] = defaultdict(lambda: defaultdict(list))
        module_services: Dict[str, List[str]] = {}
        warnings: List[str] = []

        for module in modules:
            logger.debug(f"Processing {module} module")
            info = self.registry.module_info(module)
            env = self.environment.module_environment(module)
            module_services[module] = self._load_services(module, info.version, env, services, volumes)
            self._load_layers(module, env, overrides, merges)
            self._load_volumes(module, info.version, env, volumes)

        for module in modules:
            self._collect_edges(module, modules, module_services, edges)

        for service, layers in overrides.items():
            if service not in services:
                logger.debug(f"Ignoring overrides of unknown service {service}")
                continue
            for layer in layers:
                services[service].definition = override_data(services[service].definition, layer) or {}

        for service, layers in merges.items():
            if service not in services:
                logger.debug(f"Ignoring merges of unknown service {service}")
                continue
            for layer in layers:
                services[service].definition = merge_data(services[service].definition, layer) or {}

        for module in modules:
            warnings.extend(self._check_volume_dependencies(module, modules, volumes))

        self._add_internal_volumes(services, volumes)

        return self._build(services, volumes, edges, warnings)

    def _load_services(self, module, module_version, env, services, volumes) -> List[str]:
        services_dir = self.registry.module_path(module) / "services"
        if not services_dir.is_dir():
            return []
        loaded = []
        for path in sorted(services_dir.iterdir()):
            match = SERVICE_FILE_REGEX.match(path.name)
            if not match or not path.is_file():
                continue
            service = match.group(1)
            if service in services:
                raise AssemblyError(
                    f"Service '{service}' is provided by both '{services[service].module}' "
                    f"and '{module}' modules"
                )
            definition = read_yaml(path, env) or {}
            if not isinstance(definition, dict):
                raise AssemblyError(f"Invalid service file '{path}': not a mapping")
            # Start order is computed from module constraints only
            definition.pop("depends_on", None)
            if self.no_exposed_volumes:
                self._unexpose_volumes(module, definition, volumes)
            services[service] = Fragment(
                module=module,
                version=read_version_comment(path) or module_version,
                definition=definition,
            )
            loaded.append(service)
        return loaded

    def _unexpose_volumes(self, module: str, definition: Dict, volumes: Dict[str, Fragment]):
        """Turn bind mounts under the volumes directory into named volumes."""
        mounts = []
        for mount in definition.get("volumes") or []:
            if isinstance(mount, str) and mount.startswith(EXPOSED_PREFIX):
                host_path, _, target = mount[len(EXPOSED_PREFIX):].partition(":")
                name = "genoring-volume-" + host_path.replace("/", "-")
                mount = f"{name}:{target}"
                volumes.setdefault(name, Fragment(module=module, version="", definition={"external": True}))
            mounts.append(mount)
        if "volumes" in definition:
            definition["volumes"] = mounts

    def _load_layers(self, module, env, overrides, merges):
        services_dir = self.registry.module_path(module) / "services"
        if not services_dir.is_dir():
            return
        for path in sorted(services_dir.iterdir()):
            if not path.is_file():
                continue
            for regex, layers in ((OVERRIDE_FILE_REGEX, overrides), (MERGE_FILE_REGEX, merges)):
                match = regex.match(path.name)
                if match:
                    layers[match.group(1)].append(read_yaml(path, env) or {})

    def _load_volumes(self, module, module_version, env, volumes: Dict[str, Fragment]):
        volumes_dir = self.registry.module_path(module) / "volumes"
        if not volumes_dir.is_dir():
            return
        for path in sorted(volumes_dir.iterdir()):
            match = VOLUME_FILE_REGEX.match(path.name)
            if not match or not path.is_file():
                continue
            volume = match.group(1)
            definition = read_yaml(path, env) or {}
            if self.no_exposed_volumes and "driver" in definition:
                definition = {"external": True}
            fragment = Fragment(
                module=module,
                version=read_version_comment(path) or module_version,
                definition=definition,
            )
            existing = volumes.get(volume)
            if existing is None or not existing.version:
                volumes[volume] = fragment
                continue
            if self._keep_volume(volume, existing, fragment):
                continue
            volumes[volume] = fragment

    def _keep_volume(self, volume: str, existing: Fragment, candidate: Fragment) -> bool:
        """Decide between two definitions of a shared volume."""
        current = parse_version(existing.version)
        new = parse_version(candidate.version)
        if current is None or new is None:
            logger.warning(
                f"Volume '{volume}' has no comparable version in '{existing.module}' "
                f"or '{candidate.module}'; keeping the '{existing.module}' definition"
            )
            return True
        if current.major != new.major:
            raise AssemblyError(
                f"Incompatible '{volume}' volume definitions: '{candidate.module}' declares "
                f"version {candidate.version} while '{existing.module}' declares {existing.version}"
            )
        return new.minor <= current.minor

    def _collect_edges(self, module, modules, module_services, edges):
        info = self.registry.module_info(module)
        for constraint in parse_dependencies(info.dependencies.services, module):
            if constraint.kind not in ("BEFORE", "AFTER"):
                continue
            if constraint.service:
                subjects = [constraint.service]
            else:
                subjects = module_services.get(module, [])
            targets = []
            for clause in constraint.clauses:
                if clause.element:
                    targets.append(clause.element)
                elif clause.module in modules:
                    targets.extend(module_services.get(clause.module, []))
            if not subjects or not targets:
                continue
            profiles = expand_profiles(constraint.profiles) or [""]
            for profile in profiles:
                if constraint.kind == "BEFORE":
                    # Targets start after the subjects
                    for target in targets:
                        edges[target][profile].extend(subjects)
                else:
                    for subject in subjects:
                        edges[subject][profile].extend(targets)

    def _check_volume_dependencies(self, module, modules, volumes: Dict[str, Fragment]) -> List[str]:
        warnings = []
        info = self.registry.module_info(module)
        for constraint in parse_dependencies(info.dependencies.volumes, module):
            if constraint.kind == "REQUIRES":
                if not any(self._volume_clause_met(clause, modules, volumes) for clause in constraint.clauses):
                    warnings.append(
                        f"module '{module}' has unmet volume dependencies "
                        f"({constraint.source.strip()}); the platform may fail to start"
                    )
            elif constraint.kind == "CONFLICTS":
                for clause in constraint.clauses:
                    if self._volume_clause_met(clause, modules, volumes):
                        warnings.append(
                            f"module '{module}' conflicts with volume '{clause.element or clause.module}'"
                        )
        for warning in warnings:
            logger.warning(warning)
        return warnings

    def _volume_clause_met(self, clause, modules, volumes: Dict[str, Fragment]) -> bool:
        if not clause.element:
            return clause.module in modules
        if clause.element not in volumes:
            return False
        if clause.version is None:
            return True
        provider = volumes[clause.element].module
        return version_satisfies(self.registry.installed_version(provider), clause.comparator, clause.version)

    def _add_internal_volumes(self, services: Dict[str, Fragment], volumes: Dict[str, Fragment]):
        for service in services.values():
            for mount in service.definition.get("volumes") or []:
                if not isinstance(mount, str):
                    continue
                match = NAMED_VOLUME_REGEX.match(mount)
                if match and match.group(1) not in volumes:
                    volumes[match.group(1)] = Fragment(module=service.module, version="", definition={})

    def _extra_hosts(self) -> List[str]:
        """Host entries recorded by service redirections."""
        path = self.settings.extra_hosts_file
        if not path.is_file():
            return []
        hosts = []

        def _collect(entry):
            if isinstance(entry, dict):
                hosts.extend(f"{name}:{address}" for name, address in entry.items())
            elif isinstance(entry, list):
                for item in entry:
                    _collect(item)
            elif entry:
                hosts.append(str(entry))

        _collect(read_yaml(path) or [])
        return hosts

    def _build(self, services, volumes, edges, warnings) -> AssemblyResult:
        extra_hosts = self._extra_hosts()
        document = {"services": {}, "volumes": {}}
        overlays = {}
        external = []

        for service in sorted(services):
            definition = dict(services[service].definition)
            definition["container_name"] = self.registry.container_name(service)
            service_edges = edges.get(service)
            if service_edges:
                if set(service_edges) == {""}:
                    depends_on = self._depends_on(service, service_edges[""], services)
                    if depends_on:
                        definition["depends_on"] = depends_on
                else:
                    for profile in OVERLAY_PROFILES:
                        depends_on = self._depends_on(
                            service,
                            service_edges.get(profile, []) + service_edges.get("", []),
                            services,
                        )
                        overlay = {"services": {service: {"depends_on": depends_on} if depends_on else {}}}
                        overlays[f"{service}.{profile}.yml"] = overlay
                    definition["extends"] = {
                        "file": f"${{PWD}}/dependencies/{service}.${{COMPOSE_PROFILES}}.yml",
                        "service": service,
                    }
            if extra_hosts:
                definition["extra_hosts"] = list(extra_hosts)
            document["services"][service] = definition

        for volume in sorted(volumes):
            definition = dict(volumes[volume].definition or {})
            definition["name"] = self.registry.volume_name(volume)
            if definition.get("external"):
                external.append(definition["name"])
            document["volumes"][volume] = definition

        return AssemblyResult(
            document=document,
            overlays=overlays,
            warnings=warnings,
            external_volumes=external,
        )

    @staticmethod
    def _depends_on(service: str, targets: List[str], services: Dict[str, Fragment]) -> Dict[str, Dict]:
        names: Set[str] = {target for target in targets if target in services and target != service}
        return {name: {"condition": "service_started"} for name in sorted(names)}

    def header(self) -> str:
        project = self.registry.load_config().project or self.settings.project_name
        return (
            "# GenoRing docker compose file\n"
            f"# COMPOSE_PROJECT_NAME={project}\n"
            "# WARNING: This file is auto-generated. Any direct modification may be\n"
            "# lost when it is regenerated.\n"
        )

    def render(self, result: AssemblyResult) -> str:
        """Serialized compose document."""
        return dump_yaml(result.document, self.header())

    def generate(
        self,
        runtime: Optional[BaseRuntime] = None,
        context: Optional[ExecutionContext] = None,
    ) -> AssemblyResult:
        """Assemble and write the compose document and its overlays.

        With a runtime, volumes dropped since the previous document are
        removed and external volumes are created.
        """
        self.registry.invalidate()
        result = self.assemble()
        compose_file = self.settings.compose_file

        if runtime is not None and compose_file.is_file():
            previous = read_yaml(compose_file) or {}
            for volume in (previous.get("volumes") or {}):
                if volume not in result.document["volumes"]:
                    logger.info(f"Removing unused volume {volume}")
                    runtime.remove_volume(self.registry.volume_name(volume), context)

        self._write_overlays(result.overlays)
        compose_file.write_text(self.render(result), encoding="utf-8")
        logger.info(f"Generated {compose_file.name}")

        if runtime is not None:
            for name in result.external_volumes:
                runtime.create_volume(name, context)
        return result

    def _write_overlays(self, overlays: Dict[str, Dict]):
        overlay_dir = self.settings.dependencies_path
        if overlay_dir.is_dir():
            for path in overlay_dir.glob("*.yml"):
                if path.name not in overlays:
                    path.unlink()
        for name, overlay in sorted(overlays.items()):
            write_yaml(overlay_dir / name, overlay)
