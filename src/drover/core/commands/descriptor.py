"""Command descriptors and the command-file authoring API.

A command file is a :class:`CommandFile` subclass whose methods are marked with
:func:`command` (and optionally :func:`hook`). The registry instantiates the
class and turns each marked method into a :class:`CommandDescriptor`.
"""

from __future__ import annotations

import dataclasses
import inspect
import logging
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
)

from ..bootstrap import BootLevel

if TYPE_CHECKING:
    from ..runtime import Runtime
    from ..targets import ExecutionTarget

COMMAND_ATTR = "__drover_command__"
HOOK_ATTR = "__drover_hooks__"


class HookType(str, Enum):
    INIT = "init"
    VALIDATE = "validate"
    POST_COMMAND = "post-command"


@dataclasses.dataclass(frozen=True)
class CommandSpec:
    name: str
    aliases: Tuple[str, ...] = ()
    bootstrap: BootLevel = BootLevel.NONE
    obsolete: bool = False
    hidden: bool = False
    handles_remote: bool = False
    usages: Tuple[Tuple[str, str], ...] = ()


@dataclasses.dataclass(frozen=True)
class HookSpec:
    hook_type: HookType
    target: str = "*"


@dataclasses.dataclass
class CommandInvocation:
    name: str
    args: List[str] = dataclasses.field(default_factory=list)
    options: Dict[str, Any] = dataclasses.field(default_factory=dict)
    target: Optional["ExecutionTarget"] = None

    def option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)

    def flag(self, key: str, default: bool = False) -> bool:
        value = self.options.get(key, default)
        if isinstance(value, str):
            return value.strip().lower() not in {"0", "false", "no", "off", ""}
        return bool(value)


@dataclasses.dataclass
class CommandDescriptor:
    name: str
    handler: Callable[[CommandInvocation], Any]
    aliases: Tuple[str, ...] = ()
    description: str = ""
    help: str = ""
    bootstrap: BootLevel = BootLevel.NONE
    obsolete: bool = False
    hidden: bool = False
    handles_remote: bool = False
    usages: Tuple[Tuple[str, str], ...] = ()
    identity: str = ""

    is_remote = False

    @property
    def names(self) -> Tuple[str, ...]:
        return (self.name, *self.aliases)

    @property
    def obsolete_message(self) -> str:
        return self.description

    def execute(self, invocation: CommandInvocation) -> Any:
        return self.handler(invocation)


class CommandFile:
    """Base class for command files.

    Subclasses are instantiated without arguments; the runtime is attached
    afterwards through :meth:`bind` (it is ``None`` in isolated tests).
    """

    runtime: Optional["Runtime"] = None

    def bind(self, runtime: Optional["Runtime"]) -> None:
        self.runtime = runtime

    def require_runtime(self) -> "Runtime":
        if self.runtime is None:
            raise RuntimeError(f"{type(self).__name__} is not bound to a runtime")
        return self.runtime

    @property
    def logger(self) -> logging.Logger:
        return logging.getLogger(f"drover.commands.{type(self).__name__}")


def _split_doc(func: Callable[..., Any]) -> Tuple[str, str]:
    doc = inspect.getdoc(func) or ""
    head, _, rest = doc.partition("\n\n")
    return " ".join(head.split()), rest.strip()


def command(
    name: str,
    *,
    aliases: Sequence[str] = (),
    bootstrap: Any = BootLevel.NONE,
    obsolete: bool = False,
    hidden: bool = False,
    handles_remote: bool = False,
    usages: Sequence[Tuple[str, str]] = (),
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Mark a :class:`CommandFile` method as a command.

    The first docstring paragraph becomes the description (for an obsolete
    command, the retirement message); the rest becomes the help text.
    """

    spec = CommandSpec(
        name=name,
        aliases=tuple(aliases),
        bootstrap=BootLevel.parse(bootstrap),
        obsolete=obsolete,
        hidden=hidden,
        handles_remote=handles_remote,
        usages=tuple((str(u), str(d)) for u, d in usages),
    )

    def wrapper(func: Callable[..., Any]) -> Callable[..., Any]:
        setattr(func, COMMAND_ATTR, spec)
        return func

    return wrapper


def hook(
    hook_type: HookType, *, target: str = "*"
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Mark a :class:`CommandFile` method as a hook for ``target`` (or all commands)."""

    def wrapper(func: Callable[..., Any]) -> Callable[..., Any]:
        specs = list(getattr(func, HOOK_ATTR, ()))
        specs.append(HookSpec(hook_type=HookType(hook_type), target=target))
        setattr(func, HOOK_ATTR, tuple(specs))
        return func

    return wrapper


def _marked_methods(
    instance: object, attr: str
) -> List[Tuple[Callable[..., Any], Any]]:
    found = []
    for attr_name, member in inspect.getmembers(type(instance), inspect.isfunction):
        spec = getattr(member, attr, None)
        if spec is not None:
            found.append((getattr(instance, attr_name), spec))
    return found


def collect_descriptors(instance: object, identity: str) -> List[CommandDescriptor]:
    descriptors = []
    for method, spec in _marked_methods(instance, COMMAND_ATTR):
        description, help_text = _split_doc(method)
        descriptors.append(
            CommandDescriptor(
                name=spec.name,
                handler=method,
                aliases=spec.aliases,
                description=description,
                help=help_text,
                bootstrap=spec.bootstrap,
                obsolete=spec.obsolete,
                hidden=spec.hidden,
                handles_remote=spec.handles_remote,
                usages=spec.usages,
                identity=identity,
            )
        )
    descriptors.sort(key=lambda item: item.name)
    return descriptors


def collect_hooks(instance: object) -> List[Tuple[HookSpec, Callable[..., Any]]]:
    hooks = []
    for method, specs in _marked_methods(instance, HOOK_ATTR):
        for spec in specs:
            hooks.append((spec, method))
    return hooks


def parse_invocation_args(tokens: Sequence[str]) -> Tuple[List[str], Dict[str, Any]]:
    """Split pass-through tokens into positional args and ``--options``.

    ``--key=value`` sets a string, ``--key`` sets ``True``, ``--no-key`` sets
    ``False``. Everything after ``--`` is positional.
    """
    args: List[str] = []
    options: Dict[str, Any] = {}
    positional_only = False
    for token in tokens:
        if positional_only or not token.startswith("--") or token == "-":
            args.append(token)
            continue
        if token == "--":
            positional_only = True
            continue
        key, sep, value = token[2:].partition("=")
        if sep:
            options[key] = value
        elif key.startswith("no-"):
            options[key[3:]] = False
        else:
            options[key] = True
    return args, options


__all__ = [
    "CommandDescriptor",
    "CommandFile",
    "CommandInvocation",
    "CommandSpec",
    "HookSpec",
    "HookType",
    "collect_descriptors",
    "collect_hooks",
    "command",
    "hook",
    "parse_invocation_args",
]
