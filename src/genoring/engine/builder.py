"""Local image builds from module sources (``modules/<m>/src/<service>/``)."""

import logging
import re
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from genoring.errors import ConfigurationError
from genoring.engine.environment import EnvironmentManager
from genoring.engine.registry import ModuleRegistry
from genoring.models.config import Settings
from genoring.providers.base import BaseRuntime
from genoring.utils.process import ExecutionContext


logger = logging.getLogger(__name__)

FROM_REGEX = re.compile(
    r"^FROM\s+(?:--platform=\S+\s+)?([a-z0-9][a-z0-9._\-/]*(?:[:@][a-z0-9][a-z0-9._\-]*)?)(\s|$)",
    re.MULTILINE,
)


class ImageBuilder:
    """Builds service images from module sources."""

    def __init__(
        self,
        registry: ModuleRegistry,
        environment: EnvironmentManager,
        runtime: BaseRuntime,
        settings: Settings,
    ):
        """Initialize image builder."""
        self.registry = registry
        self.environment = environment
        self.runtime = runtime
        self.settings = settings

    def sources_path(self, module: str, service: str) -> Path:
        return self.registry.module_path(module) / "src" / service

    def _resolve_service(self, module: str, service: Optional[str]) -> str:
        src_dir = self.registry.module_path(module) / "src"
        if not self.registry.module_path(module).is_dir():
            raise ConfigurationError(f"Module '{module}' not found")
        if not src_dir.is_dir():
            raise ConfigurationError(f"Module '{module}' does not have sources")
        if service:
            return service
        candidates = sorted(entry.name for entry in src_dir.iterdir() if entry.is_dir())
        if len(candidates) != 1:
            raise ConfigurationError(f"Missing service name for module '{module}' ({', '.join(candidates)})")
        return candidates[0]

    def _prepare_dockerfile(self, source: Path):
        """Write the Dockerfile to build, pinned to the target platform if any."""
        dockerfile = source / "Dockerfile"
        default = source / "Dockerfile.default"
        if not dockerfile.is_file() and not default.is_file():
            raise ConfigurationError(f"No Dockerfile found in {source}")
        if self.settings.platform:
            if not default.is_file():
                dockerfile.rename(default)
            content = default.read_text(encoding="utf-8")
            content = FROM_REGEX.sub(rf"FROM --platform={self.settings.platform} \1\2", content)
            dockerfile.write_text(content, encoding="utf-8")
        elif default.is_file():
            shutil.copyfile(default, dockerfile)

    def build_args(self) -> Dict[str, str]:
        core = self.environment.module_environment("genoring")
        args = {}
        uid = self.settings.uid if self.settings.uid is not None else core.get("GENORING_UID")
        gid = self.settings.gid if self.settings.gid is not None else core.get("GENORING_GID")
        if uid not in (None, ""):
            args["GENORING_UID"] = str(uid)
        if gid not in (None, ""):
            args["GENORING_GID"] = str(gid)
        return args

    def compile(self, module: str, service: Optional[str], context: ExecutionContext) -> str:
        """Rebuild the image of a module service; returns the image tag."""
        service = self._resolve_service(module, service)
        source = self.sources_path(module, service)
        if not source.is_dir():
            raise ConfigurationError(f"Service {module}[{service}] does not have sources")
        self._prepare_dockerfile(source)
        logger.info(f"Compiling service {module}[{service}]")
        self.runtime.remove_image(service, context)
        self.runtime.build(service, source, context, build_args=self.build_args())
        return service

    def compile_missing(self, context: ExecutionContext) -> List[str]:
        """Build every enabled service that has sources but no image."""
        built = []
        for service, module in sorted(self.registry.services().items()):
            if not self.sources_path(module, service).is_dir():
                continue
            if self.runtime.image_exists(service, context):
                continue
            logger.info(f"Compiling missing service {module}:{service}")
            built.append(self.compile(module, service, context))
        return built
