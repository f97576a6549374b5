"""Configuration models."""

import os
from pathlib import Path
from typing import Dict, Literal, Mapping, Optional
from pydantic import BaseModel, Field, field_validator


class ModuleConf(BaseModel):
    """Persisted state of one installed module."""
    status: Literal["enabled", "disabled"] = Field(default="enabled")
    version: str = Field(default="")


class PlatformConfig(BaseModel):
    """The persisted configuration document (``config.yml``)."""
    project: str = Field(default="genoring")
    version: str = Field(default="1.0")
    no_exposed_volumes: bool = Field(default=False, alias="no-exposed-volumes")
    modules: Dict[str, ModuleConf] = Field(default_factory=dict)

    class Config:
        """Pydantic config."""
        extra = "ignore"
        populate_by_name = True

    @field_validator("modules", mode="before")
    @classmethod
    def default_modules(cls, v):
        """An empty ``modules:`` key loads as None."""
        return v or {}


class Settings(BaseModel):
    """Engine settings resolved from the environment and CLI flags."""
    project_dir: Path = Field(default_factory=Path.cwd)
    modules_dir: str = Field(default="modules")
    volumes_dir: str = Field(default="volumes")
    env_dir: str = Field(default="env")
    project_name: str = Field(default="genoring")
    runtime: str = Field(default="docker")
    profiles: str = Field(default="")
    host: str = Field(default="localhost")
    port: str = Field(default="8080")
    environment: Optional[str] = None
    wait_ready: int = Field(default=300, ge=1)
    verbose: bool = Field(default=False)
    interactive: bool = Field(default=True)
    no_backup: bool = Field(default=False)
    no_exposed_volumes: bool = Field(default=False)
    hide_compile: bool = Field(default=False)
    platform: Optional[str] = None
    uid: Optional[int] = None
    gid: Optional[int] = None
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @field_validator("project_name")
    @classmethod
    def validate_project_name(cls, v):
        """Project names are used as container name prefixes."""
        if not v or not v.replace("-", "").replace("_", "").isalnum():
            raise ValueError(f"Invalid project name: {v!r}")
        return v.lower()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "Settings":
        """Build settings from environment variables, then apply overrides."""
        environ = os.environ if environ is None else environ
        values = {}
        mapping = {
            "GENORING_DIR": "project_dir",
            "GENORING_VOLUMES_DIR": "volumes_dir",
            "COMPOSE_PROJECT_NAME": "project_name",
            "GENORING_RUNTIME": "runtime",
            "COMPOSE_PROFILES": "profiles",
            "GENORING_HOST": "host",
            "GENORING_PORT": "port",
            "GENORING_ENVIRONMENT": "environment",
            "GENORING_PLATFORM": "platform",
            "GENORING_UID": "uid",
            "GENORING_GID": "gid",
        }
        for variable, name in mapping.items():
            if environ.get(variable):
                values[name] = environ[variable]
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    @property
    def modules_path(self) -> Path:
        return self.project_dir / self.modules_dir

    @property
    def volumes_path(self) -> Path:
        return self.project_dir / self.volumes_dir

    @property
    def env_path(self) -> Path:
        return self.project_dir / self.env_dir

    @property
    def config_file(self) -> Path:
        return self.project_dir / "config.yml"

    @property
    def compose_file(self) -> Path:
        return self.project_dir / "docker-compose.yml"

    @property
    def extra_hosts_file(self) -> Path:
        return self.project_dir / "extra_hosts.yml"

    @property
    def dependencies_path(self) -> Path:
        return self.project_dir / "dependencies"

    @property
    def backups_path(self) -> Path:
        return self.volumes_path / "backups"
