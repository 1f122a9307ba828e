"""Command-file discovery.

Each discovery function returns *identities* (``"package.module:ClassName"``)
for concrete :class:`CommandFile` subclasses. Discovery loads modules but never
instantiates anything; the registry does that lazily through providers.

A single unreadable file or broken class never aborts a scan: it is logged and
skipped.
"""

from __future__ import annotations

import importlib
import importlib.util
import inspect
import logging
import pkgutil
import re
import sys
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..exceptions import PermanentError
from ..logging_utils import log_event
from .descriptor import CommandFile

logger = logging.getLogger("drover.core.commands.discovery")

SEARCH_LOCATIONS = ("commands", "hooks", "generators")
SEARCH_DEPTH = 3
SEARCH_PATTERN = re.compile(r"^.*(command|hook|generator)s?\.py$", re.IGNORECASE)
# Namespace segments dropped from logical module names: (segment, only below).
IGNORED_NAMESPACE_PARTS: Tuple[Tuple[str, Optional[str]], ...] = (
    ("contrib", "commands"),
    ("custom", "commands"),
    ("src", None),
)
MODULE_INDEX_NAMESPACE = "commands"
MODULE_INDEX_SUFFIX = "_commands.py"


class DiscoverySourceUnreadable(PermanentError):
    """A discovery source or candidate could not be loaded or introspected."""


def normalize_identity(identity: str) -> str:
    """Return ``module:QualName``; a dotted ``module.Class`` form is accepted."""
    text = str(identity).strip().lstrip(":")
    if ":" in text:
        module_name, _, qualname = text.partition(":")
    else:
        module_name, _, qualname = text.rpartition(".")
    module_name = module_name.strip().strip(".")
    qualname = qualname.strip()
    if not module_name or not qualname:
        raise DiscoverySourceUnreadable(
            f"Invalid command class identity: {identity!r}"
        )
    return f"{module_name}:{qualname}"


def identity_of(cls: type) -> str:
    return f"{cls.__module__}:{cls.__qualname__}"


def _load_module_from_file(module_name: str, path: Path) -> ModuleType:
    existing = sys.modules.get(module_name)
    if existing is not None:
        existing_file = getattr(existing, "__file__", None)
        if existing_file and Path(existing_file).resolve() == path.resolve():
            return existing
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise DiscoverySourceUnreadable(f"Cannot load command file {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        sys.modules.pop(module_name, None)
        raise DiscoverySourceUnreadable(
            f"Failed to load command file {path}: {exc}"
        ) from exc
    return module


def load_identity(identity: str) -> type:
    """Resolve an identity to its class, importing the module if needed."""
    module_name, _, qualname = normalize_identity(identity).partition(":")
    try:
        module = sys.modules.get(module_name) or importlib.import_module(module_name)
    except Exception as exc:
        raise DiscoverySourceUnreadable(
            f"Cannot import {module_name} for {identity}: {exc}"
        ) from exc
    target: Any = module
    for part in qualname.split("."):
        target = getattr(target, part, None)
        if target is None:
            raise DiscoverySourceUnreadable(f"{identity} does not exist")
    if not isinstance(target, type):
        raise DiscoverySourceUnreadable(f"{identity} is not a class")
    return target


def is_concrete_command_file(candidate: Any) -> bool:
    try:
        return (
            isinstance(candidate, type)
            and issubclass(candidate, CommandFile)
            and candidate is not CommandFile
            and not inspect.isabstract(candidate)
            and not getattr(candidate, "_is_protocol", False)
        )
    except TypeError:
        return False


def _command_classes_in(module: ModuleType) -> List[str]:
    identities = []
    for _name, member in inspect.getmembers(module, inspect.isclass):
        if member.__module__ != module.__name__:
            continue
        if is_concrete_command_file(member):
            identities.append(identity_of(member))
    return identities


def _iter_declared(declared: Any) -> Iterable[Tuple[Optional[str], str]]:
    if declared is None:
        return
    if isinstance(declared, Mapping):
        for hint, identity in declared.items():
            yield str(hint), str(identity)
        return
    if isinstance(declared, (str, bytes)):
        raise DiscoverySourceUnreadable(
            "drover.commands must be a list or mapping of command classes"
        )
    for entry in declared:
        if isinstance(entry, Mapping):
            for hint, identity in entry.items():
                yield str(hint), str(identity)
        else:
            yield None, str(entry)


def discover_from_configuration(
    declared: Any, *, base: Optional[Path] = None
) -> List[str]:
    """Identities declared in config.

    Entries are bare identities or ``hint: identity`` pairs where the hint is the
    file that defines the class. Classes not importable by module name are loaded
    from their hint before being returned.
    """
    identities: List[str] = []
    try:
        entries = list(_iter_declared(declared))
    except DiscoverySourceUnreadable as exc:
        log_event(
            logger,
            logging.WARNING,
            "commands.discovery.skipped",
            source="configuration",
            exc=exc,
        )
        return identities
    for hint, raw_identity in entries:
        try:
            identity = normalize_identity(raw_identity)
            try:
                load_identity(identity)
            except DiscoverySourceUnreadable:
                if not hint:
                    raise
                hint_path = Path(hint).expanduser()
                if not hint_path.is_absolute() and base is not None:
                    hint_path = base / hint_path
                _load_module_from_file(identity.partition(":")[0], hint_path)
                load_identity(identity)
        except DiscoverySourceUnreadable as exc:
            log_event(
                logger,
                logging.WARNING,
                "commands.discovery.skipped",
                source="configuration",
                identity=raw_identity,
                exc=exc,
            )
            continue
        if identity not in identities:
            identities.append(identity)
    return identities


def _logical_parts(parts: Sequence[str]) -> List[str]:
    logical: List[str] = []
    for part in parts:
        previous = logical[-1] if logical else None
        skip = False
        for ignored, below in IGNORED_NAMESPACE_PARTS:
            if part == ignored and (below is None or previous == below):
                skip = True
                break
        if not skip:
            logical.append(part.replace("-", "_"))
    return logical


def _candidate_files(directory: Path) -> Iterable[Tuple[Path, List[str]]]:
    """Yield ``(file, namespace parts)`` pairs below one search path."""
    for path in sorted(directory.glob("*.py")):
        if SEARCH_PATTERN.match(path.name):
            yield path, []
    for location in SEARCH_LOCATIONS:
        base = directory / location
        if not base.is_dir():
            continue
        for path in sorted(base.rglob("*.py")):
            relative = path.relative_to(base)
            if len(relative.parts) > SEARCH_DEPTH:
                continue
            if not SEARCH_PATTERN.match(path.name):
                continue
            yield path, [location, *relative.parts[:-1]]


def discover_from_paths(paths: Iterable[Path], namespace: str) -> List[str]:
    """Scan ``commands``/``hooks``/``generators`` below each path for command files."""
    namespace_parts = [part for part in namespace.strip(".").split(".") if part]
    identities: List[str] = []
    for directory in paths:
        directory = Path(directory)
        if not directory.is_dir():
            logger.debug("Command search path %s does not exist; skipping", directory)
            continue
        for path, parts in _candidate_files(directory):
            module_name = ".".join(
                [*namespace_parts, *_logical_parts([*parts, path.stem])]
            )
            try:
                module = _load_module_from_file(module_name, path)
            except DiscoverySourceUnreadable as exc:
                log_event(
                    logger,
                    logging.WARNING,
                    "commands.discovery.skipped",
                    source="paths",
                    path=path,
                    exc=exc,
                )
                continue
            for identity in _command_classes_in(module):
                if identity not in identities:
                    identities.append(identity)
    return identities


def build_module_index(packages: Iterable[str]) -> Dict[str, Path]:
    """Index importable modules below ``packages`` as ``{module name: file}``."""
    index: Dict[str, Path] = {}

    def _on_error(name: str) -> None:
        log_event(
            logger,
            logging.WARNING,
            "commands.discovery.index_failed",
            package=name,
        )

    for package_name in packages:
        try:
            package = importlib.import_module(package_name)
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "commands.discovery.index_failed",
                package=package_name,
                exc=exc,
            )
            continue
        package_paths = list(getattr(package, "__path__", []))
        for modinfo in pkgutil.walk_packages(
            package_paths, prefix=f"{package_name}.", onerror=_on_error
        ):
            if modinfo.ispkg:
                continue
            finder_path = getattr(modinfo.module_finder, "path", None)
            if finder_path is None:
                continue
            leaf = modinfo.name.rsplit(".", 1)[-1]
            index[modinfo.name] = Path(finder_path) / f"{leaf}.py"
    return index


def discover_from_loaded_modules(module_index: Mapping[str, Any]) -> List[str]:
    """Concrete command classes from indexed ``commands.*_commands`` modules."""
    identities: List[str] = []
    for module_name, file_path in module_index.items():
        if MODULE_INDEX_NAMESPACE not in module_name.split("."):
            continue
        if not Path(str(file_path)).name.endswith(MODULE_INDEX_SUFFIX):
            continue
        try:
            module = importlib.import_module(module_name)
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "commands.discovery.skipped",
                source="modules",
                module=module_name,
                exc=exc,
            )
            continue
        for identity in _command_classes_in(module):
            if identity not in identities:
                identities.append(identity)
    return identities


__all__ = [
    "DiscoverySourceUnreadable",
    "SEARCH_DEPTH",
    "build_module_index",
    "discover_from_configuration",
    "discover_from_loaded_modules",
    "discover_from_paths",
    "identity_of",
    "is_concrete_command_file",
    "load_identity",
    "normalize_identity",
]
