"""Shared fixtures: an on-disk project tree and a fake container runtime."""

import subprocess
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from genoring.engine.lifecycle import Platform
from genoring.models.config import Settings
from genoring.providers.base import BaseRuntime, ContainerInfo, ContainerState
from genoring.utils.data import read_yaml
from genoring.utils.process import CommandResult, ExecutionContext


class FakeRuntime(BaseRuntime):
    """In-memory runtime recording every call."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.running = False
        self.states: Dict[str, ContainerState] = {}
        self.images = set()
        self.volumes = set()
        self.exec_failures: Dict[str, str] = {}
        self.profiles: List[str] = []

    def _containers(self, compose_file: Path) -> List[str]:
        if not compose_file.is_file():
            return []
        services = (read_yaml(compose_file) or {}).get("services") or {}
        return [definition["container_name"] for definition in services.values()]

    def check(self, context: ExecutionContext) -> None:
        self.calls.append(("check",))

    def up(self, compose_file: Path, context: ExecutionContext) -> None:
        self.calls.append(("up", context.env.get("COMPOSE_PROFILES")))
        self.profiles.append(context.env.get("COMPOSE_PROFILES"))
        self.running = True
        self._compose_file = compose_file

    def down(self, compose_file: Path, context: ExecutionContext) -> None:
        self.calls.append(("down",))
        self.running = False

    def ps(self, compose_file: Path, context: ExecutionContext) -> List[ContainerInfo]:
        if not self.running:
            return []
        return [
            ContainerInfo(name=name, state=self.states.get(name, ContainerState.RUNNING))
            for name in self._containers(compose_file)
        ]

    def container(self, name: str, context: ExecutionContext) -> Optional[ContainerInfo]:
        if not self.running or name not in self._containers(self._compose_file):
            return None
        return ContainerInfo(name=name, state=self.states.get(name, ContainerState.RUNNING))

    def exec(self, container, command, context, env_files=None, env=None, check=True) -> CommandResult:
        self.calls.append(("exec", container, command))
        for marker, error in self.exec_failures.items():
            if marker in command:
                failure = subprocess.CalledProcessError(1, ["exec", container, command])
                failure.stdout = ""
                failure.stderr = error
                if check:
                    raise failure
                return CommandResult(returncode=1, stderr=error)
        return CommandResult(returncode=0)

    def copy_to(self, source, container, target, context) -> None:
        self.calls.append(("cp", container, target))

    def logs(self, container, context, tail=None) -> str:
        return f"logs of {container}"

    def build(self, tag, path, context, build_args=None) -> None:
        self.calls.append(("build", tag, dict(build_args or {})))
        self.images.add(tag)

    def image_exists(self, tag, context) -> bool:
        return tag in self.images

    def remove_image(self, tag, context) -> None:
        self.calls.append(("rmi", tag))
        self.images.discard(tag)

    def create_volume(self, name, context) -> None:
        self.calls.append(("volume create", name))
        self.volumes.add(name)

    def remove_volume(self, name, context) -> None:
        self.calls.append(("volume rm", name))
        self.volumes.discard(name)


GENORING_DESCRIPTOR = """\
name: "GenoRing"
description: "GenoRing core module"
version: 1.2
genoring_script_version: 1.0
services:
  genoring:
    name: "GenoRing CMS"
    version: 1.2
  genoring-proxy:
    name: "GenoRing proxy"
    version: 1.0
alternatives:
  httpd:
    description: "Replaces NGINX server with Apache 2 HTTPd."
    substitue:
      genoring-proxy: genoring-proxy-httpd
volumes:
  genoring-data-volume:
    name: "Biological datasets"
    type: "shared"
    mapping: "volumes/data"
dependencies:
  services:
    - "genoring-proxy BEFORE gigwa genoring-gigwa"
"""

GIGWA_DESCRIPTOR = """\
name: "Gigwa"
description: "Genotype investigator"
version: 1.0
genoring_script_version: 1.0
services:
  genoring-gigwa:
    name: "Gigwa"
    version: 1.0
dependencies:
  services:
    - "REQUIRES genoring >= 1.0"
  volumes:
    - "REQUIRES genoring genoring-data-volume"
"""


def write_module(modules_dir: Path, name: str, descriptor: str, files: Dict[str, str]) -> Path:
    """Write a module directory with its descriptor and extra files."""
    module_dir = modules_dir / name
    module_dir.mkdir(parents=True, exist_ok=True)
    (module_dir / f"{name}.yml").write_text(descriptor)
    for relative, content in files.items():
        path = module_dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return module_dir


@pytest.fixture
def project(tmp_path):
    """A project with an enabled ``genoring`` module and an uninstalled ``gigwa``."""
    modules_dir = tmp_path / "modules"
    write_module(modules_dir, "genoring", GENORING_DESCRIPTOR, {
        "services/genoring.yml": (
            "# v1.2\n"
            "image: genoring:latest\n"
            "environment:\n"
            "  - DRUPAL_SITE_NAME=${SITE_NAME}\n"
            "volumes:\n"
            "  - genoring-data-volume:/data\n"
            "depends_on:\n"
            "  - something-else\n"
        ),
        "services/genoring-proxy.yml": "# v1.0\nimage: nginx:latest\nports:\n  - ${GENORING_PORT}:80\n",
        "services/alt/genoring-proxy-httpd.yml": "image: httpd:latest\n",
        "volumes/genoring-data-volume.yml": "# v2.0\ndriver: local\n",
        "env/genoring.env": (
            "# Site name\n"
            "# The name displayed in the site header.\n"
            "# @tags SET\n"
            "# @default GenoRing\n"
            "SITE_NAME=GenoRing\n"
            "\n"
            "GENORING_HOST=\n"
            "GENORING_PORT=\n"
        ),
    })
    write_module(modules_dir, "gigwa", GIGWA_DESCRIPTOR, {
        "services/genoring-gigwa.yml": "# v1.0\nimage: guilhemsempere/gigwa:2.8\n",
    })
    # Template directories are not modules
    write_module(modules_dir, "TEMPLATE", "name: template\n", {})
    (tmp_path / "config.yml").write_text(
        "project: genoring\n"
        "version: '1.0'\n"
        "modules:\n"
        "  genoring:\n"
        "    status: enabled\n"
        "    version: '1.2'\n"
    )
    return tmp_path


@pytest.fixture
def settings(project):
    return Settings(project_dir=project, interactive=False, hide_compile=True, wait_ready=5)


@pytest.fixture
def fake_runtime():
    return FakeRuntime()


@pytest.fixture
def platform(settings, fake_runtime):
    """A platform on the project tree, with an instant clock."""
    clock = {"now": 0.0}

    def _sleep(seconds):
        clock["now"] += seconds

    return Platform(settings, runtime=fake_runtime, sleep=_sleep, clock=lambda: clock["now"])


@pytest.fixture
def add_module(project):
    """Factory writing extra modules into the project tree."""
    def _add(name: str, descriptor: str, files: Optional[Dict[str, str]] = None) -> Path:
        return write_module(project / "modules", name, descriptor, files or {})
    return _add
