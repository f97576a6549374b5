"""Module environment files.

Module templates live in ``modules/<module>/env/<file>.env`` and are
installed as ``env/<module>_<file>.env``. Only ``KEY=value`` lines are read
or rewritten; comments and blank lines are kept verbatim.

Variables can be documented with a comment block right above them::

    # Site name
    # The name displayed in the site header.
    # @tags SET
    # @default GenoRing
    SITE_NAME=GenoRing

``SET`` marks a variable that should be customized, ``OPT`` one that can
be. Prompting for values is left to the caller.
"""

import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from genoring.errors import ConfigurationError
from genoring.models.config import Settings


logger = logging.getLogger(__name__)

ENV_TEMPLATE_REGEX = re.compile(r"^[^.].*\.env$")
ASSIGNMENT_REGEX = re.compile(r"^\s*(\w+)\s*[=:]\s*(.*)$")


@dataclass
class EnvVariable:
    """A documented variable of an environment file template."""
    var: str
    value: str = ""
    label: str = ""
    description: str = ""
    default: Optional[str] = None
    is_setting: bool = False
    is_optional: bool = False
    tags: List[str] = field(default_factory=list)


class EnvFile:
    """An environment file edited in place."""

    def __init__(self, path: Path):
        """Initialize environment file."""
        self.path = Path(path)
        if not self.path.is_file():
            raise ConfigurationError(f"Cannot access environment file '{self.path}'")
        self.lines = self.path.read_text(encoding="utf-8").splitlines(keepends=True)

    def get(self, variable: str) -> Optional[str]:
        """Last assigned value of a variable, None if unset."""
        value = None
        for line in self.lines:
            match = ASSIGNMENT_REGEX.match(line)
            if match and match.group(1) == variable:
                value = match.group(2).strip()
        return value

    def set(self, variable: str, value: str):
        """Assign a variable, dropping duplicate assignments."""
        new_lines = []
        assigned = False
        for line in self.lines:
            match = ASSIGNMENT_REGEX.match(line)
            if match and match.group(1) == variable:
                if assigned:
                    continue
                line = f"{variable}={value}\n"
                assigned = True
            new_lines.append(line)
        if not assigned:
            if new_lines and not new_lines[-1].endswith("\n"):
                new_lines[-1] += "\n"
            new_lines.append(f"\n{variable}={value}\n")
        self.lines = new_lines

    def values(self) -> Dict[str, str]:
        """All assignments, later ones winning."""
        values = {}
        for line in self.lines:
            if line.lstrip().startswith("#"):
                continue
            match = ASSIGNMENT_REGEX.match(line)
            if match:
                values[match.group(1)] = match.group(2).strip()
        return values

    def save(self):
        self.path.write_text("".join(self.lines), encoding="utf-8")


def get_env_variable(path: Path, variable: str) -> Optional[str]:
    return EnvFile(path).get(variable)


def set_env_variable(path: Path, variable: str, value: Optional[str]):
    env_file = EnvFile(path)
    env_file.set(variable, value or "")
    env_file.save()


def parse_env_documentation(path: Path) -> List[EnvVariable]:
    """Documented (SET or OPT tagged) variables of an environment file."""
    variables = []
    label, description, default, tags = "", "", None, []

    def _reset():
        return "", "", None, []

    for line in Path(path).read_text(encoding="utf-8").splitlines():
        if not line.strip():
            label, description, default, tags = _reset()
        elif re.match(r"^#\s+@default\s+", line):
            default = re.sub(r"^#\s+@default\s+", "", line)
        elif re.match(r"^#\s+@tags\s+", line):
            tags = re.sub(r"^#\s+@tags\s+", "", line).split()
        elif not label and re.match(r"^#\s+\w", line):
            label = re.sub(r"^#\s+", "", line)
        elif label and line.startswith("#"):
            text = line[2:]
            if description or text.strip():
                description += text + "\n"
        else:
            match = ASSIGNMENT_REGEX.match(line)
            if match and ("SET" in tags or "OPT" in tags):
                variables.append(EnvVariable(
                    var=match.group(1),
                    value=match.group(2).strip(),
                    label=label,
                    description=description.strip(),
                    default=default,
                    is_setting="SET" in tags,
                    is_optional="OPT" in tags,
                    tags=tags,
                ))
            label, description, default, tags = _reset()
    return variables


class EnvironmentManager:
    """Installs and reads the per-module environment files of a project."""

    def __init__(self, settings: Settings):
        """Initialize environment manager."""
        self.settings = settings

    def module_templates(self, module: str) -> List[Path]:
        """Environment file templates shipped by a module."""
        env_dir = self.settings.modules_path / module / "env"
        if not env_dir.is_dir():
            return []
        return sorted(
            entry for entry in env_dir.iterdir()
            if entry.is_file() and ENV_TEMPLATE_REGEX.match(entry.name)
        )

    def installed_path(self, module: str, template: Path) -> Path:
        return self.settings.env_path / f"{module}_{template.name}"

    def module_files(self, module: str) -> List[Path]:
        """Installed environment files of a module."""
        return [
            path for path in (
                self.installed_path(module, template)
                for template in self.module_templates(module)
            )
            if path.is_file()
        ]

    def module_environment(self, module: str) -> Dict[str, str]:
        """Resolved variables of a module, from its installed files only."""
        values = {}
        for path in self.module_files(module):
            values.update(EnvFile(path).values())
        return values

    def setup_module(self, module: str, reset: bool = False) -> List[Path]:
        """Install a module's environment files, keeping existing ones.

        Returns the newly installed files.
        """
        self.settings.env_path.mkdir(parents=True, exist_ok=True)
        installed = []
        for template in self.module_templates(module):
            target = self.installed_path(module, template)
            if not reset and target.is_file() and target.stat().st_size:
                continue
            shutil.copyfile(template, target)
            if module == "genoring" and template.name == "genoring.env":
                self._fill_platform_defaults(target)
            installed.append(target)
            logger.info(f"Installed environment file {target.name}")
        return installed

    def _fill_platform_defaults(self, path: Path):
        """Fill empty core variables with the engine settings."""
        env_file = EnvFile(path)
        defaults = {
            "GENORING_HOST": self.settings.host,
            "GENORING_PORT": self.settings.port,
            "GENORING_UID": str(self.settings.uid) if self.settings.uid is not None else "",
            "GENORING_GID": str(self.settings.gid) if self.settings.gid is not None else "",
        }
        changed = False
        for variable, value in defaults.items():
            current = env_file.get(variable)
            if current is not None and not current and value:
                env_file.set(variable, value)
                changed = True
        if changed:
            env_file.save()

    def remove_module_files(self, module: str):
        """Delete a module's installed environment files."""
        for path in self.module_files(module):
            path.unlink()
            logger.debug(f"Removed environment file {path}")

    def profile(self) -> str:
        """Online sub-profile (dev, staging or prod) of the installation."""
        if self.settings.environment in ("dev", "staging", "prod"):
            return self.settings.environment
        core = self.settings.env_path / "genoring_genoring.env"
        if core.is_file():
            value = EnvFile(core).get("GENORING_ENVIRONMENT")
            if value in ("dev", "staging", "prod"):
                return value
        return "dev"
