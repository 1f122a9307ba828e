from .descriptor import (
    CommandDescriptor,
    CommandFile,
    CommandInvocation,
    HookType,
    command,
    hook,
)
from .discovery import (
    DiscoverySourceUnreadable,
    build_module_index,
    discover_from_configuration,
    discover_from_loaded_modules,
    discover_from_paths,
)
from .hooks import HookManager
from .registry import ClassProvider, CommandProvider, CommandRegistry, merge
from .yaml_cli import YamlCliProvider

__all__ = [
    "ClassProvider",
    "CommandDescriptor",
    "CommandFile",
    "CommandInvocation",
    "CommandProvider",
    "CommandRegistry",
    "DiscoverySourceUnreadable",
    "HookManager",
    "HookType",
    "YamlCliProvider",
    "build_module_index",
    "command",
    "discover_from_configuration",
    "discover_from_loaded_modules",
    "discover_from_paths",
    "hook",
    "merge",
]
