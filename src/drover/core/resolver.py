"""Command resolution.

``resolve`` maps a name to an outcome: a registered command, a proxy for a
remote target, or a not-found result classified by how far bootstrap got.
Unknown names on a local target trigger one escalation of the bootstrap and a
single retry, because many commands only appear once the site is up.
``find`` is the raising front end used by the runtime.
"""

from __future__ import annotations

import dataclasses
import difflib
import logging
from enum import Enum
from typing import Callable, Optional, Sequence, Tuple, Union

from .bootstrap import BootLevel, BootstrapTracker
from .commands.descriptor import CommandDescriptor
from .commands.registry import CommandRegistry
from .exceptions import PermanentError
from .logging_utils import log_event
from .remote import Redispatcher, RemoteProxyCommand
from .targets import ExecutionTarget, TargetResolver

ResolvedCommand = Union[CommandDescriptor, RemoteProxyCommand]
RedispatcherFactory = Callable[[ExecutionTarget], Redispatcher]

NEEDS_ROOT_MESSAGE = (
    "Command {name} was not found. Pass --root or a @siteAlias in order to run "
    "site-specific commands."
)
NEEDS_DATABASE_MESSAGE = (
    "Command {name} was not found. Drover was unable to query the database. As a "
    "result, many commands are unavailable. Re-run your command with --debug to "
    "see relevant log messages."
)
NEEDS_FULL_BOOT_MESSAGE = (
    "Command {name} was not found. Drover successfully connected to the database "
    "but was unable to fully bootstrap your site. As a result, many commands are "
    "unavailable. Re-run your command with --debug to see relevant log messages."
)
NOT_DEFINED_MESSAGE = 'Command "{name}" is not defined.'


class ResolutionKind(str, Enum):
    FOUND = "found"
    REMOTE = "remote"
    OBSOLETE = "obsolete"
    NOT_FOUND = "not_found"
    NOT_FOUND_NEEDS_ROOT = "not_found_needs_root"
    NOT_FOUND_NEEDS_DATABASE = "not_found_needs_database"
    NOT_FOUND_NEEDS_FULL_BOOT = "not_found_needs_full_boot"


class CommandNotFoundError(PermanentError):
    kind = ResolutionKind.NOT_FOUND

    def __init__(
        self, name: str, message: str, suggestions: Sequence[str] = ()
    ) -> None:
        super().__init__(message)
        self.name = name
        self.suggestions = tuple(suggestions)


class CommandNeedsRootError(CommandNotFoundError):
    kind = ResolutionKind.NOT_FOUND_NEEDS_ROOT


class CommandNeedsDatabaseError(CommandNotFoundError):
    kind = ResolutionKind.NOT_FOUND_NEEDS_DATABASE


class CommandNeedsFullBootError(CommandNotFoundError):
    kind = ResolutionKind.NOT_FOUND_NEEDS_FULL_BOOT


class ObsoleteCommandError(PermanentError):
    def __init__(self, name: str, message: str) -> None:
        super().__init__(message)
        self.name = name


_ERRORS = {
    ResolutionKind.NOT_FOUND: CommandNotFoundError,
    ResolutionKind.NOT_FOUND_NEEDS_ROOT: CommandNeedsRootError,
    ResolutionKind.NOT_FOUND_NEEDS_DATABASE: CommandNeedsDatabaseError,
    ResolutionKind.NOT_FOUND_NEEDS_FULL_BOOT: CommandNeedsFullBootError,
}


@dataclasses.dataclass(frozen=True)
class Resolution:
    kind: ResolutionKind
    name: str
    command: Optional[ResolvedCommand] = None
    message: str = ""
    suggestions: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.kind in (ResolutionKind.FOUND, ResolutionKind.REMOTE)

    def error(self) -> PermanentError:
        if self.kind == ResolutionKind.OBSOLETE:
            return ObsoleteCommandError(self.name, self.message)
        error_cls = _ERRORS.get(self.kind)
        if error_cls is None:
            raise ValueError(f"{self.kind.value} resolution is not a failure")
        return error_cls(self.name, self.message, self.suggestions)


def check_obsolete(command: ResolvedCommand) -> None:
    """Raise :class:`ObsoleteCommandError` for a retired command."""
    if getattr(command, "is_remote", False):
        return
    if command.obsolete:
        raise ObsoleteCommandError(command.name, command.obsolete_message)


class CommandResolver:
    def __init__(
        self,
        registry: CommandRegistry,
        *,
        targets: Optional[TargetResolver] = None,
        tracker: Optional[BootstrapTracker] = None,
        redispatcher_factory: Optional[RedispatcherFactory] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.registry = registry
        self.targets = targets
        self.tracker = tracker
        self._redispatcher_factory = redispatcher_factory
        self._logger = logger or logging.getLogger("drover.core.resolver")

    def resolve(self, name: str, *, help_request: bool = False) -> Resolution:
        if not name:
            return Resolution(ResolutionKind.NOT_FOUND, name)

        command = self.registry.get(name)
        if command is not None:
            return self._found(command, help_request)

        if self.targets is not None and not self.targets.is_local():
            target = self.targets.get_self()
            redispatcher = (
                self._redispatcher_factory(target)
                if self._redispatcher_factory is not None
                else None
            )
            log_event(
                self._logger,
                logging.DEBUG,
                "commands.resolve.remote",
                name=name,
                target=target.name,
            )
            return Resolution(
                ResolutionKind.REMOTE,
                name,
                command=RemoteProxyCommand(name, target, redispatcher),
            )

        if self.tracker is None:
            return self._not_defined(name)

        log_event(
            self._logger,
            logging.DEBUG,
            "commands.resolve.escalate",
            name=name,
            reached=self.tracker.current,
        )
        reached = self.tracker.escalate_to_maximum()
        log_event(
            self._logger,
            logging.DEBUG,
            "commands.resolve.escalated",
            name=name,
            reached=reached,
        )

        command = self.registry.get(name)
        if command is not None:
            return self._found(command, help_request)
        return self._classify_miss(name)

    def find(
        self, name: str, *, help_request: bool = False
    ) -> Optional[ResolvedCommand]:
        """Return the command for ``name`` or raise the matching error.

        An empty name returns ``None``.
        """
        if not name:
            return None
        resolution = self.resolve(name, help_request=help_request)
        if not resolution.ok:
            raise resolution.error()
        return resolution.command

    def _found(self, command: CommandDescriptor, help_request: bool) -> Resolution:
        if not help_request:
            try:
                check_obsolete(command)
            except ObsoleteCommandError as exc:
                return Resolution(
                    ResolutionKind.OBSOLETE,
                    command.name,
                    command=command,
                    message=exc.user_message,
                )
        return Resolution(ResolutionKind.FOUND, command.name, command=command)

    def _classify_miss(self, name: str) -> Resolution:
        tracker = self.tracker
        assert tracker is not None
        if not tracker.has_reached(BootLevel.ROOT):
            return Resolution(
                ResolutionKind.NOT_FOUND_NEEDS_ROOT,
                name,
                message=NEEDS_ROOT_MESSAGE.format(name=name),
            )
        if not tracker.has_reached(BootLevel.DATABASE):
            return Resolution(
                ResolutionKind.NOT_FOUND_NEEDS_DATABASE,
                name,
                message=NEEDS_DATABASE_MESSAGE.format(name=name),
            )
        if not tracker.has_reached(BootLevel.FULL):
            return Resolution(
                ResolutionKind.NOT_FOUND_NEEDS_FULL_BOOT,
                name,
                message=NEEDS_FULL_BOOT_MESSAGE.format(name=name),
            )
        return self._not_defined(name)

    def _not_defined(self, name: str) -> Resolution:
        suggestions = tuple(self.suggest(name))
        message = NOT_DEFINED_MESSAGE.format(name=name)
        if suggestions:
            lines = "\n".join(f"    {item}" for item in suggestions)
            message = f"{message}\n\nDid you mean one of these?\n{lines}"
        return Resolution(
            ResolutionKind.NOT_FOUND, name, message=message, suggestions=suggestions
        )

    def suggest(self, name: str, limit: int = 5) -> list[str]:
        visible = []
        for key in self.registry.names():
            command = self.registry.get(key)
            if command is not None and not (command.hidden or command.obsolete):
                visible.append(key)
        return difflib.get_close_matches(name, visible, n=limit, cutoff=0.6)


__all__ = [
    "CommandNeedsDatabaseError",
    "CommandNeedsFullBootError",
    "CommandNeedsRootError",
    "CommandNotFoundError",
    "CommandResolver",
    "ObsoleteCommandError",
    "Resolution",
    "ResolutionKind",
    "check_obsolete",
]
