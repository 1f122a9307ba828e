"""Command registry assembled from providers.

Providers are queued and only materialized when a lookup or listing needs
them. Every name and alias is a key of its own; when two descriptors claim the
same key, the one registered last wins and a warning names both sources.
"""

from __future__ import annotations

import logging
from typing import (
    TYPE_CHECKING,
    Dict,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    Set,
)

from ..cache import CacheTypeProvider, CacheTypeRegistry
from ..logging_utils import log_event
from .descriptor import CommandDescriptor, collect_descriptors, collect_hooks
from .discovery import DiscoverySourceUnreadable, load_identity
from .hooks import HookManager

if TYPE_CHECKING:
    from ..runtime import Runtime

logger = logging.getLogger("drover.core.commands.registry")


class CommandProvider(Protocol):
    source: str

    def provide(self) -> Sequence[CommandDescriptor]: ...


class ClassProvider:
    """Instantiates command-file classes by identity and describes their commands."""

    def __init__(
        self,
        source: str,
        identities: Sequence[str],
        *,
        runtime: Optional["Runtime"] = None,
        hooks: Optional[HookManager] = None,
        cache_types: Optional[CacheTypeRegistry] = None,
    ) -> None:
        self.source = source
        self.identities = tuple(identities)
        self._runtime = runtime
        self._hooks = hooks if hooks is not None else getattr(runtime, "hooks", None)
        self._cache_types = (
            cache_types
            if cache_types is not None
            else getattr(runtime, "cache_types", None)
        )

    def provide(self) -> List[CommandDescriptor]:
        descriptors: List[CommandDescriptor] = []
        for identity in self.identities:
            try:
                cls = load_identity(identity)
                instance = cls()
            except Exception as exc:
                # Covers DiscoverySourceUnreadable and constructor failures.
                self._skip(identity, exc)
                continue
            bind = getattr(instance, "bind", None)
            if callable(bind):
                bind(self._runtime)
            descriptors.extend(collect_descriptors(instance, identity))
            if self._hooks is not None:
                for spec, callback in collect_hooks(instance):
                    self._hooks.add_spec(spec, callback)
            if self._cache_types is not None and isinstance(
                instance, CacheTypeProvider
            ):
                instance.register_cache_types(self._cache_types)
        return descriptors

    def _skip(self, identity: str, exc: BaseException) -> None:
        log_event(
            logger,
            logging.WARNING,
            "commands.registry.class_skipped",
            source=self.source,
            identity=identity,
            exc=exc,
        )


class CommandRegistry:
    def __init__(self, providers: Iterable[CommandProvider] = ()) -> None:
        self._pending: List[CommandProvider] = list(providers)
        self._names: Dict[str, CommandDescriptor] = {}
        self._identities: Set[str] = set()
        self.sources: List[str] = []

    def add_provider(self, provider: CommandProvider) -> None:
        self._pending.append(provider)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def claim_identities(self, identities: Iterable[str]) -> List[str]:
        """Return identities not seen before (first-seen order) and mark them seen."""
        claimed: List[str] = []
        for identity in identities:
            if identity in self._identities:
                continue
            self._identities.add(identity)
            claimed.append(identity)
        return claimed

    def add(self, descriptor: CommandDescriptor) -> None:
        for key in descriptor.names:
            previous = self._names.get(key)
            if previous is not None and previous is not descriptor:
                log_event(
                    logger,
                    logging.WARNING,
                    "commands.registry.collision",
                    name=key,
                    replaced=previous.identity or previous.name,
                    winner=descriptor.identity or descriptor.name,
                )
            self._names[key] = descriptor

    def materialize(self) -> None:
        while self._pending:
            provider = self._pending.pop(0)
            try:
                descriptors = provider.provide()
            except DiscoverySourceUnreadable as exc:
                log_event(
                    logger,
                    logging.WARNING,
                    "commands.registry.source_skipped",
                    source=provider.source,
                    exc=exc,
                )
                continue
            log_event(
                logger,
                logging.DEBUG,
                "commands.registry.source_loaded",
                source=provider.source,
                command_count=len(descriptors),
            )
            self.sources.append(provider.source)
            for descriptor in descriptors:
                self.add(descriptor)

    def get(self, name: str) -> Optional[CommandDescriptor]:
        if not name:
            return None
        self.materialize()
        found = self._names.get(name)
        if found is None and name.lower() != name:
            found = self._names.get(name.lower())
        return found

    def has(self, name: str) -> bool:
        return self.get(name) is not None

    def list(self) -> List[CommandDescriptor]:
        """Commands that still own their canonical name, ordered by name."""
        self.materialize()
        owned = {
            descriptor.name: descriptor
            for descriptor in self._names.values()
            if self._names.get(descriptor.name) is descriptor
        }
        return [owned[name] for name in sorted(owned)]

    def names(self) -> List[str]:
        self.materialize()
        return sorted(self._names)


def merge(
    *sources: Sequence[str],
    registry: Optional[CommandRegistry] = None,
    runtime: Optional["Runtime"] = None,
    hooks: Optional[HookManager] = None,
    cache_types: Optional[CacheTypeRegistry] = None,
    source_names: Sequence[str] = (),
) -> CommandRegistry:
    """Queue one provider per identity source, deduplicated by identity.

    An identity already contributed by an earlier source (or an earlier merge
    into the same registry) is dropped from later ones.
    """
    target = registry if registry is not None else CommandRegistry()
    for index, identities in enumerate(sources):
        if index < len(source_names):
            name = source_names[index]
        else:
            name = f"source-{index + 1}"
        claimed = target.claim_identities(identities)
        if not claimed:
            continue
        target.add_provider(
            ClassProvider(
                name,
                claimed,
                runtime=runtime,
                hooks=hooks,
                cache_types=cache_types,
            )
        )
    return target


__all__ = ["ClassProvider", "CommandProvider", "CommandRegistry", "merge"]
