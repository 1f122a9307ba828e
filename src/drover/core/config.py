import dataclasses
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, cast

import yaml
from dotenv import dotenv_values

from .exceptions import PermanentError

logger = logging.getLogger("drover.core.config")

CONFIG_FILENAME = "drover.yml"
OVERRIDE_FILENAME = "drover.override.yml"
GLOBAL_STATE_DIR = ".drover"
HOME_ENV = "DROVER_HOME"

# Environment variable -> dotted config key.
ENV_OVERRIDES: Dict[str, str] = {
    "DROVER_URI": "options.uri",
    "DROVER_ROOT": "options.root",
    "DROVER_ALIAS_PATH": "drover.paths.alias-path",
}


class ConfigError(PermanentError):
    """Raised when a config file is unreadable or malformed."""


def _default_config() -> Dict[str, Any]:
    return {
        "drover": {
            "commands": [],
            "include": [],
            "namespaces": ["drover.commands"],
            "paths": {
                "alias-path": [],
            },
        },
        "options": {
            "uri": None,
            "root": None,
        },
        "redispatch": {
            "ssh-options": ["PasswordAuthentication=no"],
            "http-timeout": 30.0,
            "http-attempts": 3,
        },
        "cache": {
            "root": None,
        },
    }


def _merge_defaults(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = cast(Dict[str, Any], json.loads(json.dumps(base)))
    for key, value in overrides.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = _merge_defaults(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_yaml_dict(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must be a mapping: {path}")
    return data


def _set_dotted(target: Dict[str, Any], key: str, value: Any) -> None:
    parts = [part for part in key.split(".") if part]
    if not parts:
        raise ConfigError(f"Invalid config key: {key!r}")
    node = target
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def parse_define(text: str) -> Tuple[str, Any]:
    """Parse a ``-D key.path=value`` definition; the value is read as a YAML scalar."""
    key, sep, raw_value = text.partition("=")
    key = key.strip()
    if not sep or not key:
        raise ConfigError(f"Invalid definition {text!r}; expected KEY=VALUE.")
    try:
        value = yaml.safe_load(raw_value) if raw_value.strip() else ""
    except yaml.YAMLError:
        value = raw_value
    return key, value


def find_project_config(start: Path) -> Optional[Path]:
    """Walk up from ``start`` looking for ``drover.yml``."""
    current = start.resolve()
    if current.is_file():
        current = current.parent
    for candidate in (current, *current.parents):
        path = candidate / CONFIG_FILENAME
        if path.is_file():
            return path
    return None


def resolve_home_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    source = env if env is not None else os.environ
    override = source.get(HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / GLOBAL_STATE_DIR


def resolve_env_for_root(
    root: Optional[Path], base_env: Optional[Mapping[str, str]] = None
) -> Dict[str, str]:
    """Merge ``<root>/.env`` over the base env without touching ``os.environ``."""
    env = dict(base_env) if base_env is not None else dict(os.environ)
    if root is None:
        return env
    candidate = root / ".env"
    if candidate.is_file():
        for key, value in dotenv_values(candidate).items():
            if key and value is not None:
                env[str(key)] = str(value)
    return env


@dataclasses.dataclass
class DroverConfig:
    raw: Dict[str, Any]
    project_root: Optional[Path] = None
    home_dir: Optional[Path] = None
    sources: List[Path] = dataclasses.field(default_factory=list)

    def get(self, key: str, default: Any = None) -> Any:
        node: Any = self.raw
        for part in key.split("."):
            if not isinstance(node, Mapping) or part not in node:
                return default
            node = node[part]
        return default if node is None else node

    def set(self, key: str, value: Any) -> None:
        _set_dotted(self.raw, key, value)

    def _paths(self, key: str) -> List[Path]:
        value = self.get(key, [])
        if isinstance(value, Path):
            value = [value]
        elif isinstance(value, str):
            value = [item for item in value.split(os.pathsep) if item]
        base = self.project_root or Path.cwd()
        paths: List[Path] = []
        for item in value or []:
            path = Path(str(item)).expanduser()
            paths.append(path if path.is_absolute() else base / path)
        return paths

    @property
    def declared_commands(self) -> Any:
        return self.get("drover.commands", [])

    @property
    def include_paths(self) -> List[Path]:
        return self._paths("drover.include")

    @property
    def alias_paths(self) -> List[Path]:
        return self._paths("drover.paths.alias-path")

    @property
    def namespaces(self) -> List[str]:
        value = self.get("drover.namespaces", [])
        if isinstance(value, str):
            return [value]
        return [str(item) for item in value]

    @property
    def uri(self) -> Optional[str]:
        value = self.get("options.uri")
        return str(value) if value else None

    @property
    def root(self) -> Optional[Path]:
        value = self.get("options.root")
        return Path(str(value)).expanduser() if value else None

    @property
    def cache_root(self) -> Path:
        value = self.get("cache.root")
        if value:
            return Path(str(value)).expanduser()
        return (self.home_dir or resolve_home_dir()) / "cache"


def load_config(
    start: Path,
    *,
    config_file: Optional[Path] = None,
    defines: Iterable[str] = (),
    env: Optional[Mapping[str, str]] = None,
) -> DroverConfig:
    """Load layered config.

    Precedence (lowest first): defaults, ``~/.drover/drover.yml``, the nearest
    project ``drover.yml``, its ``drover.override.yml``, ``--config``, environment
    (including the project ``.env``), then ``-D`` definitions.
    """
    base_env = env if env is not None else os.environ
    home_dir = resolve_home_dir(base_env)
    merged = _default_config()
    sources: List[Path] = []

    def _layer(path: Path) -> None:
        nonlocal merged
        data = _load_yaml_dict(path)
        if data:
            merged = _merge_defaults(merged, data)
            sources.append(path)

    _layer(home_dir / CONFIG_FILENAME)
    project_config = find_project_config(start)
    project_root = project_config.parent if project_config is not None else None
    if project_config is not None:
        _layer(project_config)
        override_path = project_root / OVERRIDE_FILENAME
        try:
            _layer(override_path)
        except ConfigError as exc:
            raise ConfigError(
                f"Invalid override config {override_path}; fix or delete it: {exc}"
            ) from exc
    if config_file is not None:
        if not config_file.is_file():
            raise ConfigError(f"Config file not found: {config_file}")
        _layer(config_file)

    resolved_env = resolve_env_for_root(project_root, base_env)
    for env_name, key in ENV_OVERRIDES.items():
        value = resolved_env.get(env_name)
        if value is not None and value.strip():
            _set_dotted(merged, key, value.strip())

    for definition in defines:
        key, value = parse_define(definition)
        _set_dotted(merged, key, value)

    logger.debug("Loaded config layers: %s", [str(path) for path in sources])
    return DroverConfig(
        raw=merged, project_root=project_root, home_dir=home_dir, sources=sources
    )


__all__ = [
    "CONFIG_FILENAME",
    "ConfigError",
    "DroverConfig",
    "find_project_config",
    "load_config",
    "parse_define",
    "resolve_env_for_root",
    "resolve_home_dir",
]
