from __future__ import annotations

import dataclasses
import logging
import shutil
from pathlib import Path
from typing import Callable, Dict, List, Protocol, Sequence, runtime_checkable

logger = logging.getLogger("drover.core.cache")

CacheClearHandler = Callable[[Sequence[str]], None]


@dataclasses.dataclass(frozen=True)
class CacheType:
    name: str
    handler: CacheClearHandler
    # Only offered once the site is fully bootstrapped.
    bootstrapped: bool = False
    description: str = ""


class CacheTypeRegistry:
    """Named cache-clear handlers, registered explicitly at startup."""

    def __init__(self) -> None:
        self._types: Dict[str, CacheType] = {}

    def register(
        self,
        name: str,
        handler: CacheClearHandler,
        *,
        bootstrapped: bool = False,
        description: str = "",
    ) -> None:
        key = name.strip()
        if not key:
            raise ValueError("cache type name must be non-empty")
        if key in self._types:
            logger.debug("Cache type %s re-registered; last registration wins", key)
        self._types[key] = CacheType(
            name=key,
            handler=handler,
            bootstrapped=bootstrapped,
            description=description,
        )

    def types(self, include_bootstrapped: bool = False) -> Dict[str, CacheType]:
        return {
            name: cache_type
            for name, cache_type in self._types.items()
            if include_bootstrapped or not cache_type.bootstrapped
        }

    def names(self, include_bootstrapped: bool = False) -> List[str]:
        return list(self.types(include_bootstrapped))

    def get(self, name: str) -> CacheType:
        return self._types[name]

    def __contains__(self, name: object) -> bool:
        return name in self._types


@runtime_checkable
class CacheTypeProvider(Protocol):
    """Capability for command files that contribute cache types."""

    def register_cache_types(self, registry: CacheTypeRegistry) -> None: ...


def clear_directory(path: Path) -> bool:
    """Remove the contents of ``path`` but keep the directory; False if missing."""
    if not path.is_dir():
        return False
    for child in path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()
    return True


__all__ = [
    "CacheClearHandler",
    "CacheType",
    "CacheTypeProvider",
    "CacheTypeRegistry",
    "clear_directory",
]
