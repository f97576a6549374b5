"""Module descriptor models."""

from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator


class ServiceInfo(BaseModel):
    """A service declared by a module descriptor."""
    name: str = Field(default="")
    description: str = Field(default="")
    version: str = Field(default="")

    class Config:
        """Pydantic config."""
        extra = "ignore"


class VolumeInfo(BaseModel):
    """A volume declared by a module descriptor."""
    name: str = Field(default="")
    description: str = Field(default="")
    type: Literal["shared", "exposed"] = Field(default="shared")
    mapping: Optional[str] = None

    class Config:
        """Pydantic config."""
        extra = "ignore"


class AlternativeInfo(BaseModel):
    """A swappable substitute for some of a module's services."""
    name: str = Field(default="")
    description: str = Field(default="")
    # Descriptors spell the key "substitue"
    substitute: Dict[str, str] = Field(default_factory=dict, alias="substitue")
    add: List[str] = Field(default_factory=list)
    remove: List[str] = Field(default_factory=list)

    class Config:
        """Pydantic config."""
        extra = "ignore"
        populate_by_name = True

    @field_validator("substitute", "add", "remove", mode="before")
    @classmethod
    def empty_to_default(cls, v, info):
        """Empty YAML keys load as None; ``add``/``remove`` may be mappings."""
        if v is None:
            return {} if info.field_name == "substitute" else []
        if info.field_name != "substitute" and isinstance(v, dict):
            return list(v)
        return v


class ModuleDependencies(BaseModel):
    """Raw dependency constraint strings."""
    services: List[str] = Field(default_factory=list)
    volumes: List[str] = Field(default_factory=list)

    @field_validator("services", "volumes", mode="before")
    @classmethod
    def empty_to_list(cls, v):
        """Empty YAML keys load as None."""
        return v or []


class ModuleInfo(BaseModel):
    """Module descriptor (``modules/<name>/<name>.yml``)."""
    name: str = Field(..., description="Module machine name")
    label: str = Field(default="", description="Human readable name")
    description: str = Field(default="")
    version: str = Field(default="")
    genoring_script_version: Optional[str] = None
    services: Dict[str, ServiceInfo] = Field(default_factory=dict)
    volumes: Dict[str, VolumeInfo] = Field(default_factory=dict)
    alternatives: Dict[str, AlternativeInfo] = Field(default_factory=dict)
    dependencies: ModuleDependencies = Field(default_factory=ModuleDependencies)

    class Config:
        """Pydantic config."""
        extra = "ignore"

    @field_validator("services", "volumes", "alternatives", mode="before")
    @classmethod
    def empty_to_dict(cls, v):
        """Empty sections and entries load as None."""
        return {key: value or {} for key, value in (v or {}).items()}

    @field_validator("dependencies", mode="before")
    @classmethod
    def empty_dependencies(cls, v):
        """An empty ``dependencies:`` key loads as None."""
        return v or {}

    @classmethod
    def from_descriptor(cls, name: str, data: Optional[dict]) -> "ModuleInfo":
        """Build from a parsed descriptor; its ``name`` key is the label."""
        data = dict(data or {})
        label = data.pop("name", "") or ""
        return cls(name=name, label=label, **data)

    def volumes_of_type(self, volume_type: str) -> List[str]:
        """Declared volumes of the given type."""
        return sorted(
            name for name, volume in self.volumes.items()
            if volume.type == volume_type
        )
