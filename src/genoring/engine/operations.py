"""Transactional envelope around lifecycle operations.

An operation runs in four phases:

1. prepare: record the current mode, stop the platform and take an implicit
   backup named ``operation``;
2. local: run the scheduled local hooks (platform stopped);
3. container: start the platform in ``backend`` (or ``offline``) mode and
   run the scheduled container hooks;
4. cleanup (failure only): revert the container hooks that succeeded, stop,
   revert the local hooks that succeeded and restore the implicit backup.

``end()`` always brings the platform back to its previous mode.
"""

import logging
import subprocess
from typing import TYPE_CHECKING, List, Optional, Union

from pydantic import ValidationError

from genoring.errors import ConfigurationError, GenoringError, HookError
from genoring.models.operation import HookEntry

if TYPE_CHECKING:
    from genoring.engine.lifecycle import Platform


logger = logging.getLogger(__name__)

OPERATION_BACKUP = "operation"

# Errors that abort an operation and trigger its rollback
OPERATION_ERRORS = (GenoringError, subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError)


class OperationContext:
    """State of one lifecycle operation."""

    def __init__(self, platform: "Platform", module: Optional[str] = None, backup: bool = True):
        """Initialize operation context."""
        self.platform = platform
        self.module = module
        self.backup = backup
        self.current_mode = ""
        self.operation_mode = "offline"
        self.local_hooks: List[HookEntry] = []
        self.container_hooks: List[HookEntry] = []
        self.failed = False
        self.error: Optional[str] = None
        self.backup_taken = False
        self.reverted: List[str] = []

    def add_local_hook(self, name: str, revert: Optional[str] = None, order: int = 0, args: str = "") -> HookEntry:
        """Schedule a local hook; its revert hook must be a known event."""
        return self._add(self.local_hooks, name=name, venue="local", revert=revert, order=order, args=args)

    def add_container_hook(
        self,
        name: str,
        revert: Optional[str] = None,
        related: bool = False,
        order: int = 0,
        args: str = "",
    ) -> HookEntry:
        """Schedule a container hook; its revert hook must be a known event."""
        return self._add(
            self.container_hooks,
            name=name,
            venue="container",
            revert=revert,
            related=related,
            order=order,
            args=args,
        )

    def _add(self, hooks: List[HookEntry], **fields) -> HookEntry:
        try:
            entry = HookEntry(**fields)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid hook registration: {e}") from e
        hooks.append(entry)
        return entry

    def fail(self, error: Union[Exception, str]):
        """Flag the operation as failed; later phases become no-ops."""
        self.failed = True
        self.error = str(error)
        logger.error(f"Operation failed: {self.error}")

    def run(self, action, *args):
        """Run an operation step unless the operation already failed."""
        if self.failed:
            return None
        try:
            return action(*args)
        except OPERATION_ERRORS as e:
            self.fail(e)
            return None

    def prepare(self):
        """Phase 1: snapshot mode, stop and back up."""
        self.platform.registry.invalidate()
        self.current_mode = self.platform.status()
        if self.current_mode in ("online", "backend"):
            self.operation_mode = "backend"
        else:
            self.operation_mode = "offline"
        logger.debug(f"Preparing operation (current mode: {self.current_mode or 'stopped'})")
        try:
            self.platform.stop()
            if self.backup:
                self.platform.snapshot(OPERATION_BACKUP)
                self.backup_taken = True
        except OPERATION_ERRORS as e:
            self.fail(e)

    def perform_local(self):
        """Phase 2: run local hooks in ascending order."""
        if self.failed:
            return
        try:
            self.platform.stop()
            for hook in sorted(self.local_hooks, key=lambda h: h.order):
                errors = self.platform.hooks.run_local(hook.name, self.module, hook.args)
                if errors:
                    raise HookError(f"Local hook '{hook.name}' failed", errors)
                hook.ok = True
        except OPERATION_ERRORS as e:
            self.fail(e)

    def perform_container(self):
        """Phase 3: start in operation mode and run container hooks in order."""
        if self.failed:
            return
        try:
            self.platform.start(self.operation_mode)
            for hook in sorted(self.container_hooks, key=lambda h: h.order):
                errors = self.platform.hooks.run_container(hook.name, self.module, hook.related, hook.args)
                if errors:
                    raise HookError(f"Container hook '{hook.name}' failed", errors)
                hook.ok = True
        except OPERATION_ERRORS as e:
            self.fail(e)

    def cleanup(self):
        """Phase 4: undo what succeeded, only after a failure.

        Revert failures are logged and never raised.
        """
        if not self.failed:
            return
        logger.warning("Reverting operation")
        for hook in sorted(self.container_hooks, key=lambda h: h.order, reverse=True):
            if hook.ok and hook.revert:
                self._revert(
                    f"container:{hook.revert}",
                    self.platform.hooks.run_container,
                    hook.revert, self.module, hook.related, hook.args,
                )
        try:
            self.platform.stop()
        except OPERATION_ERRORS as e:
            logger.error(f"Failed to stop the platform during revert: {e}")
        for hook in sorted(self.local_hooks, key=lambda h: h.order, reverse=True):
            if hook.ok and hook.revert:
                self._revert(
                    f"local:{hook.revert}",
                    self.platform.hooks.run_local,
                    hook.revert, self.module, hook.args,
                )
        if self.backup_taken:
            try:
                self.platform.restore_snapshot(OPERATION_BACKUP)
            except OPERATION_ERRORS as e:
                logger.error(f"Failed to restore the '{OPERATION_BACKUP}' backup: {e}")

    def _revert(self, label: str, runner, *args):
        self.reverted.append(label)
        try:
            errors = runner(*args)
        except OPERATION_ERRORS as e:
            logger.error(f"Revert hook {label} failed: {e}")
            return
        if errors:
            logger.error(f"Revert hook {label} failed: {errors}")

    def end(self):
        """Return the platform to its pre-operation mode."""
        try:
            if self.current_mode in ("online", "backend", "offline"):
                # A running platform only switches profiles through a restart
                if self.current_mode != self.operation_mode:
                    self.platform.stop()
                self.platform.start(self.current_mode)
            else:
                self.platform.stop()
        except OPERATION_ERRORS as e:
            logger.error(f"Failed to restore the platform mode '{self.current_mode}': {e}")
            if not self.failed:
                self.fail(e)
