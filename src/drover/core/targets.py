from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

import yaml

from .exceptions import PermanentError

logger = logging.getLogger("drover.core.targets")

ALIAS_FILE_SUFFIX = ".site.yml"
NONE_ALIAS = "@none"
TRANSPORTS = ("ssh", "http")


class UnknownAliasError(PermanentError):
    """Raised when a ``@alias`` does not match any alias file entry."""


class TargetConfigError(PermanentError):
    """Raised when an alias file is unreadable or malformed."""


@dataclasses.dataclass
class ExecutionTarget:
    """Where a command should run.

    A target with a ``host`` (ssh) or ``url`` (http) is remote; everything else
    runs in this process.
    """

    name: Optional[str] = None
    root: Optional[Path] = None
    uri: Optional[str] = None
    host: Optional[str] = None
    user: Optional[str] = None
    port: Optional[int] = None
    transport: str = "ssh"
    url: Optional[str] = None
    options: Dict[str, Any] = dataclasses.field(default_factory=dict)

    def is_local(self) -> bool:
        return not self.host and not self.url

    def has_root(self) -> bool:
        return self.root is not None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.name:
            payload["name"] = self.name
        if self.root is not None:
            payload["root"] = str(self.root)
        if self.uri:
            payload["uri"] = self.uri
        if self.host:
            payload["host"] = self.host
        if self.user:
            payload["user"] = self.user
        if self.port is not None:
            payload["port"] = self.port
        if not self.is_local():
            payload["transport"] = self.transport
        if self.url:
            payload["url"] = self.url
        if self.options:
            payload["options"] = dict(self.options)
        return payload


@dataclasses.dataclass(frozen=True)
class TargetParseResult:
    target: ExecutionTarget
    valid: bool
    errors: tuple[str, ...] = ()


def parse_target_record(
    name: str, value: Any, *, base: Optional[Path] = None
) -> TargetParseResult:
    context = f"alias {name}"
    if not isinstance(value, Mapping):
        return TargetParseResult(
            target=ExecutionTarget(name=name),
            valid=False,
            errors=(f"{context}: expected a mapping",),
        )
    errors: list[str] = []

    def _optional_str(key: str) -> Optional[str]:
        raw = value.get(key)
        if raw is None:
            return None
        if not isinstance(raw, str) or not raw.strip():
            errors.append(f"{context}: '{key}' must be a non-empty string")
            return None
        return raw.strip()

    root_text = _optional_str("root")
    root: Optional[Path] = None
    if root_text is not None:
        root = Path(root_text).expanduser()
        if not root.is_absolute() and base is not None:
            root = base / root

    port = value.get("port")
    if port is not None and (isinstance(port, bool) or not isinstance(port, int)):
        errors.append(f"{context}: 'port' must be an integer")
        port = None

    transport = str(value.get("transport") or "ssh").strip().lower()
    if transport not in TRANSPORTS:
        errors.append(f"{context}: unsupported transport '{transport}'")
        transport = "ssh"

    url = _optional_str("url")
    if transport == "http" and url is None:
        errors.append(f"{context}: http transport requires 'url'")

    options = value.get("options") or {}
    if not isinstance(options, Mapping):
        errors.append(f"{context}: 'options' must be a mapping")
        options = {}

    target = ExecutionTarget(
        name=name,
        root=root,
        uri=_optional_str("uri"),
        host=_optional_str("host"),
        user=_optional_str("user"),
        port=port,
        transport=transport,
        url=url,
        options=dict(options),
    )
    return TargetParseResult(target=target, valid=not errors, errors=tuple(errors))


def load_alias_file(path: Path) -> Dict[str, ExecutionTarget]:
    """Load ``<site>.site.yml``; each top-level key is an environment."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise TargetConfigError(f"Invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise TargetConfigError(f"Failed to read alias file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise TargetConfigError(f"Alias file must be a mapping: {path}")

    site = path.name[: -len(ALIAS_FILE_SUFFIX)]
    targets: Dict[str, ExecutionTarget] = {}
    for env_name, record in data.items():
        alias = f"@{site}.{env_name}"
        parsed = parse_target_record(alias, record, base=path.parent)
        if not parsed.valid:
            raise TargetConfigError("; ".join(parsed.errors))
        targets[alias] = parsed.target
    if len(targets) == 1:
        only = next(iter(targets.values()))
        targets[f"@{site}"] = dataclasses.replace(only, name=f"@{site}")
    return targets


class TargetResolver:
    """Keeps the alias table and the active (self) execution target."""

    def __init__(
        self,
        alias_paths: Iterable[Path] = (),
        *,
        self_target: Optional[ExecutionTarget] = None,
    ) -> None:
        self._alias_paths = [Path(path) for path in alias_paths]
        self._aliases: Optional[Dict[str, ExecutionTarget]] = None
        self._self = self_target if self_target is not None else ExecutionTarget()

    def add_alias_paths(self, paths: Sequence[Path]) -> None:
        for path in paths:
            if path not in self._alias_paths:
                self._alias_paths.append(path)
        self._aliases = None

    def _load(self) -> Dict[str, ExecutionTarget]:
        if self._aliases is not None:
            return self._aliases
        aliases: Dict[str, ExecutionTarget] = {}
        for directory in self._alias_paths:
            if not directory.is_dir():
                logger.debug("Alias path %s does not exist; skipping", directory)
                continue
            for path in sorted(directory.glob(f"*{ALIAS_FILE_SUFFIX}")):
                aliases.update(load_alias_file(path))
        self._aliases = aliases
        return aliases

    def all(self) -> Dict[str, ExecutionTarget]:
        return dict(self._load())

    def get(self, alias: str) -> ExecutionTarget:
        name = alias if alias.startswith("@") else f"@{alias}"
        if name == NONE_ALIAS:
            return ExecutionTarget(name=NONE_ALIAS)
        target = self._load().get(name)
        if target is None:
            raise UnknownAliasError(f"The alias {name} could not be found.")
        return target

    def select(self, alias: str) -> ExecutionTarget:
        target = self.get(alias)
        self.set_self(target)
        return target

    def get_self(self) -> ExecutionTarget:
        return self._self

    def set_self(self, target: ExecutionTarget) -> None:
        self._self = target

    def is_local(self) -> bool:
        return self._self.is_local()


__all__ = [
    "ExecutionTarget",
    "TargetConfigError",
    "TargetParseResult",
    "TargetResolver",
    "UnknownAliasError",
    "load_alias_file",
    "parse_target_record",
]
