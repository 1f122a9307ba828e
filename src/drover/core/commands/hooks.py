from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Tuple

from .descriptor import CommandDescriptor, CommandInvocation, HookSpec, HookType

logger = logging.getLogger("drover.core.commands.hooks")

HookCallback = Callable[..., Any]


class HookManager:
    """Hooks collected from command files, keyed by type and target command."""

    def __init__(self) -> None:
        self._hooks: Dict[HookType, List[Tuple[str, HookCallback]]] = {
            hook_type: [] for hook_type in HookType
        }

    def add(self, hook_type: HookType, target: str, callback: HookCallback) -> None:
        self._hooks[HookType(hook_type)].append((target, callback))

    def add_spec(self, spec: HookSpec, callback: HookCallback) -> None:
        self.add(spec.hook_type, spec.target, callback)

    def for_command(
        self, hook_type: HookType, descriptor: CommandDescriptor
    ) -> List[HookCallback]:
        names = set(descriptor.names)
        return [
            callback
            for target, callback in self._hooks[HookType(hook_type)]
            if target == "*" or target in names
        ]

    def run(
        self,
        hook_type: HookType,
        descriptor: CommandDescriptor,
        invocation: CommandInvocation,
    ) -> None:
        for callback in self.for_command(hook_type, descriptor):
            logger.debug(
                "Running %s hook %r for %s", hook_type.value, callback, descriptor.name
            )
            callback(invocation)

    def run_post(
        self,
        descriptor: CommandDescriptor,
        invocation: CommandInvocation,
        result: Any,
    ) -> Any:
        """Post-command hooks may replace the result by returning a non-None value."""
        for callback in self.for_command(HookType.POST_COMMAND, descriptor):
            replaced = callback(invocation, result)
            if replaced is not None:
                result = replaced
        return result


__all__ = ["HookCallback", "HookManager"]
