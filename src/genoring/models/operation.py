"""Operation context models."""

from typing import Literal, Optional
from pydantic import BaseModel, Field, model_validator


LOCAL_HOOK_EVENTS = frozenset({
    "requirements", "init", "enable", "disable", "uninstall", "update",
    "upgrade", "backup", "restore", "start", "stop", "state",
})

CONTAINER_HOOK_EVENTS = frozenset({
    "init", "enable", "disable", "uninstall", "update", "upgrade",
    "backup", "restore", "online", "offline", "backend",
})


class HookEntry(BaseModel):
    """A hook scheduled by an operation, with the hook that undoes it."""
    name: str
    venue: Literal["local", "container"]
    revert: Optional[str] = None
    order: int = Field(default=0)
    related: bool = Field(default=False)
    args: str = Field(default="")
    ok: bool = Field(default=False)

    @model_validator(mode="after")
    def check_events(self):
        """Both the hook and its revert hook must be known events."""
        events = LOCAL_HOOK_EVENTS if self.venue == "local" else CONTAINER_HOOK_EVENTS
        if self.name not in events:
            raise ValueError(f"Unknown {self.venue} hook '{self.name}'")
        if self.revert is not None and self.revert not in events:
            raise ValueError(
                f"Revert hook '{self.revert}' of {self.venue} hook '{self.name}' does not exist"
            )
        return self
