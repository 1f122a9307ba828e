"""Bundled YAML helper commands.

These are registered as ``yaml:<name>`` (alias ``y:<name>``) on every registry
and are not subject to discovery. Keys use dot notation: ``a.b.c``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, MutableMapping, Tuple

import yaml

from ..exceptions import PermanentError
from .descriptor import CommandDescriptor, CommandInvocation

SOURCE = "yaml-cli"
ORIGIN = "Bundled YAML helper, modelled on the grasmash/yaml-cli tool."

_MISSING = object()


class YamlCliError(PermanentError):
    pass


def _require(invocation: CommandInvocation, count: int, usage: str) -> List[str]:
    if len(invocation.args) < count:
        raise YamlCliError(f"Not enough arguments. Usage: {usage}")
    return invocation.args[:count]


def _load(path_text: str) -> Any:
    path = Path(path_text)
    if not path.is_file():
        raise YamlCliError(f"The file {path} does not exist.")
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise YamlCliError(f"There was an error parsing {path}: {exc}") from exc


def _load_mapping(path_text: str) -> Dict[str, Any]:
    data = _load(path_text)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise YamlCliError(f"{path_text} does not contain a YAML mapping.")
    return data


def _dump(path_text: str, data: Mapping[str, Any]) -> None:
    Path(path_text).write_text(
        yaml.safe_dump(dict(data), sort_keys=False), encoding="utf-8"
    )


def _lookup(data: Mapping[str, Any], key: str) -> Any:
    current: Any = data
    for part in key.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _parent(
    data: MutableMapping[str, Any], key: str, *, create: bool
) -> Tuple[MutableMapping[str, Any], str]:
    parts = key.split(".")
    current: Any = data
    for depth, part in enumerate(parts[:-1], start=1):
        nxt = current.get(part, _MISSING)
        if nxt is _MISSING:
            if not create:
                raise YamlCliError(f"The key {key} does not exist.")
            nxt = {}
            current[part] = nxt
        elif not isinstance(nxt, MutableMapping):
            prefix = ".".join(parts[:depth])
            if not create:
                raise YamlCliError(f"The key {key} does not exist.")
            raise YamlCliError(f"The key {prefix} cannot be indexed into.")
        current = nxt
    return current, parts[-1]


def get_value(invocation: CommandInvocation) -> Any:
    """Get a value for a specific key in a YAML file."""
    filename, key = _require(invocation, 2, "yaml:get:value <file> <key>")
    value = _lookup(_load_mapping(filename), key)
    if value is _MISSING:
        raise YamlCliError(f"The key {key} does not exist.")
    # Integers would be taken as exit codes; render scalars as text.
    if isinstance(value, (dict, list)):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return "null" if value is None else str(value)


def lint(invocation: CommandInvocation) -> str:
    """Validate that a YAML file has valid syntax."""
    (filename,) = _require(invocation, 1, "yaml:lint <file>")
    _load(filename)
    return f"The file {filename} contains valid YAML."


def update_key(invocation: CommandInvocation) -> str:
    """Change a specific key in a YAML file, keeping its value."""
    filename, key, new_key = _require(
        invocation, 3, "yaml:update:key <file> <key> <new-key>"
    )
    data = _load_mapping(filename)
    value = _lookup(data, key)
    if value is _MISSING:
        raise YamlCliError(f"The key {key} does not exist.")
    parent, leaf = _parent(data, key, create=False)
    del parent[leaf]
    new_parent, new_leaf = _parent(data, new_key, create=True)
    new_parent[new_leaf] = value
    _dump(filename, data)
    return f"The key '{key}' was changed to '{new_key}' in {filename}."


def unset_key(invocation: CommandInvocation) -> str:
    """Unset a specific key in a YAML file."""
    filename, key = _require(invocation, 2, "yaml:unset:key <file> <key>")
    data = _load_mapping(filename)
    if _lookup(data, key) is _MISSING:
        raise YamlCliError(f"The key {key} does not exist.")
    parent, leaf = _parent(data, key, create=False)
    del parent[leaf]
    _dump(filename, data)
    return f"The key '{key}' was removed from {filename}."


def update_value(invocation: CommandInvocation) -> str:
    """Update the value for a specific key in a YAML file.

    The value is parsed as a YAML scalar, so ``true`` and ``3`` keep their types.
    """
    filename, key, raw = _require(
        invocation, 3, "yaml:update:value <file> <key> <value>"
    )
    data = _load_mapping(filename)
    parent, leaf = _parent(data, key, create=True)
    try:
        value = yaml.safe_load(raw) if raw.strip() else raw
    except yaml.YAMLError:
        value = raw
    parent[leaf] = value
    _dump(filename, data)
    return f"The value for key '{key}' was set to '{raw}' in {filename}."


HELPERS: Tuple[Tuple[str, Callable[[CommandInvocation], Any]], ...] = (
    ("get:value", get_value),
    ("lint", lint),
    ("update:key", update_key),
    ("unset:key", unset_key),
    ("update:value", update_value),
)


class YamlCliProvider:
    source = SOURCE

    def provide(self) -> List[CommandDescriptor]:
        descriptors = []
        for name, handler in HELPERS:
            doc = (handler.__doc__ or "").strip()
            description, _, rest = doc.partition("\n\n")
            help_text = "\n\n".join(part for part in (rest.strip(), ORIGIN) if part)
            descriptors.append(
                CommandDescriptor(
                    name=f"yaml:{name}",
                    aliases=(f"y:{name}",),
                    handler=handler,
                    description=description,
                    help=help_text,
                    handles_remote=True,
                    identity=f"{__name__}:{handler.__name__}",
                )
            )
        return descriptors


__all__ = ["HELPERS", "YamlCliError", "YamlCliProvider"]
