"""One drover invocation: config, targets, bootstrap, registry, resolver.

``Runtime.build`` wires the collaborators from CLI options; ``Runtime.run``
executes a single command through the pipeline: refine the uri, resolve, hand
off to a remote target when needed, bootstrap to the declared level, then run
hooks and the command.
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Sequence

import yaml

from .bootstrap import BootContext, BootLevel, BootPhase, BootstrapTracker
from .cache import CacheTypeRegistry
from .commands.descriptor import CommandInvocation, HookType
from .commands.discovery import (
    build_module_index,
    discover_from_configuration,
    discover_from_loaded_modules,
    discover_from_paths,
)
from .commands.hooks import HookManager
from .commands.registry import CommandRegistry, merge
from .commands.yaml_cli import YamlCliProvider
from .config import DroverConfig, load_config
from .exceptions import PermanentError
from .host import default_phases, locate_root, read_site_info
from .logging_utils import log_event
from .remote import Redispatcher, Writer, build_redispatcher, default_writer
from .resolver import CommandResolver
from .targets import ExecutionTarget, TargetResolver

logger = logging.getLogger("drover.core.runtime")

SITE_NAMESPACE = "drover_site"
ALIASES_DIR = "aliases"

ConfirmFn = Callable[[str], bool]
RedispatcherFactory = Callable[[ExecutionTarget], Redispatcher]


class BootstrapFailedError(PermanentError):
    pass


@dataclasses.dataclass
class RuntimeOptions:
    cwd: Path = dataclasses.field(default_factory=Path.cwd)
    root: Optional[Path] = None
    uri: Optional[str] = None
    alias: Optional[str] = None
    yes: bool = False
    no: bool = False
    simulate: bool = False
    debug: bool = False
    verbose: bool = False
    defines: Sequence[str] = ()
    config_file: Optional[Path] = None
    env: Optional[Mapping[str, str]] = None


class Runtime:
    def __init__(
        self,
        *,
        options: RuntimeOptions,
        config: DroverConfig,
        targets: TargetResolver,
        tracker: BootstrapTracker,
        registry: Optional[CommandRegistry] = None,
        hooks: Optional[HookManager] = None,
        cache_types: Optional[CacheTypeRegistry] = None,
        redispatcher_factory: Optional[RedispatcherFactory] = None,
        confirm_fn: Optional[ConfirmFn] = None,
        writer: Writer = default_writer,
    ) -> None:
        self.options = options
        self.config = config
        self.targets = targets
        self.tracker = tracker
        self.registry = registry if registry is not None else CommandRegistry()
        self.hooks = hooks if hooks is not None else HookManager()
        self.cache_types = (
            cache_types if cache_types is not None else CacheTypeRegistry()
        )
        self._redispatcher_factory = redispatcher_factory
        self._confirm_fn = confirm_fn
        self._writer = writer
        self.resolver = CommandResolver(
            self.registry,
            targets=targets,
            tracker=tracker,
            redispatcher_factory=self.redispatcher_for,
        )
        tracker.context.extension_loader = self.load_extensions

    @classmethod
    def build(
        cls,
        options: RuntimeOptions,
        *,
        phases: Optional[Sequence[BootPhase]] = None,
        redispatcher_factory: Optional[RedispatcherFactory] = None,
        confirm_fn: Optional[ConfirmFn] = None,
        writer: Writer = default_writer,
    ) -> "Runtime":
        config = load_config(
            options.cwd,
            config_file=options.config_file,
            defines=options.defines,
            env=options.env,
        )
        alias_paths = list(config.alias_paths)
        site_root = options.root or config.root or locate_root(options.cwd)
        if site_root is not None:
            alias_paths.append(Path(site_root) / ALIASES_DIR)
        targets = TargetResolver(alias_paths)
        if options.alias:
            targets.select(options.alias)

        target = targets.get_self()
        overrides: dict[str, Any] = {}
        if options.root is not None:
            overrides["root"] = options.root
        if options.uri:
            overrides["uri"] = options.uri
        if overrides:
            target = dataclasses.replace(target, **overrides)
            targets.set_self(target)

        context = BootContext(
            cwd=options.cwd,
            config=config,
            requested_root=target.root if target.is_local() else None,
            requested_uri=target.uri if target.is_local() else None,
        )
        tracker = BootstrapTracker(
            phases if phases is not None else default_phases(), context=context
        )
        runtime = cls(
            options=options,
            config=config,
            targets=targets,
            tracker=tracker,
            redispatcher_factory=redispatcher_factory,
            confirm_fn=confirm_fn,
            writer=writer,
        )
        runtime.register_sources()
        return runtime

    def register_sources(self) -> None:
        """Queue every discovery source; classes are instantiated on first lookup."""
        # Bundled helpers go first so any discovered command of the same name wins.
        self.registry.add_provider(YamlCliProvider())
        include_identities: List[str] = []
        for index, path in enumerate(self.config.include_paths):
            include_identities.extend(
                discover_from_paths([path], f"{SITE_NAMESPACE}.include{index}")
            )
        merge(
            discover_from_configuration(
                self.config.declared_commands, base=self.config.project_root
            ),
            include_identities,
            discover_from_loaded_modules(build_module_index(self.config.namespaces)),
            registry=self.registry,
            runtime=self,
            source_names=("configuration", "paths", "modules"),
        )

    def load_extensions(self, paths: Sequence[Path]) -> None:
        identities: List[str] = []
        for path in paths:
            namespace = f"{SITE_NAMESPACE}.extensions.{path.name.replace('-', '_')}"
            identities.extend(discover_from_paths([path], namespace))
        merge(
            identities,
            registry=self.registry,
            runtime=self,
            source_names=("extensions",),
        )

    def redispatcher_for(self, target: ExecutionTarget) -> Redispatcher:
        if self._redispatcher_factory is not None:
            return self._redispatcher_factory(target)
        return build_redispatcher(
            target,
            config=self.config,
            simulate=self.options.simulate,
            writer=self._writer,
        )

    def refine_uri_selection(self, cwd: Path) -> None:
        """Give a local self target without a uri one picked from config or cwd."""
        target = self.targets.get_self()
        if not target.is_local():
            return
        if target.uri:
            self.tracker.set_uri(target.uri)
            return
        # Locate the root without booting any phase.
        root = target.root or self.config.root or locate_root(cwd)
        if root is None:
            return
        root = Path(root).expanduser().resolve()
        uri = self.config.uri or self.tracker.select_uri(
            cwd, root=root, site_info=read_site_info(root)
        )
        self.targets.set_self(dataclasses.replace(target, uri=uri))
        self.tracker.set_uri(uri)
        log_event(logger, logging.DEBUG, "runtime.uri.selected", uri=uri)

    def write(self, text: str, *, err: bool = False) -> None:
        self._writer(text if text.endswith("\n") else f"{text}\n", err)

    def confirm(self, question: str) -> bool:
        if self.options.yes:
            return True
        if self.options.no or self._confirm_fn is None:
            return False
        return bool(self._confirm_fn(question))

    def run(
        self,
        name: str,
        args: Sequence[str] = (),
        options: Optional[Mapping[str, Any]] = None,
    ) -> int:
        options = dict(options or {})
        self.refine_uri_selection(self.options.cwd)
        command = self.resolver.find(name)
        if command is None:
            raise PermanentError("No command given.")
        target = self.targets.get_self()
        invocation = CommandInvocation(
            name=command.name, args=list(args), options=options, target=target
        )

        if command.is_remote:
            return int(command.execute(invocation) or 0)
        if not target.is_local() and not command.handles_remote:
            return self.redispatcher_for(target).redispatch(
                target, command.name, list(args), options
            )

        level = BootLevel.parse(command.bootstrap)
        if level == BootLevel.MAX:
            self.tracker.escalate_to_maximum()
        elif not self.tracker.bootstrap_to(level):
            raise BootstrapFailedError(
                f"Bootstrap to {level.name.lower()} failed."
            )
        # Late providers (extensions) may contribute hooks and cache types.
        self.registry.materialize()

        self.hooks.run(HookType.INIT, command, invocation)
        self.hooks.run(HookType.VALIDATE, command, invocation)
        result = command.execute(invocation)
        result = self.hooks.run_post(command, invocation, result)
        return self.emit(result)

    def emit(self, result: Any) -> int:
        if result is None:
            return 0
        if isinstance(result, bool):
            return 0 if result else 1
        if isinstance(result, int):
            return result
        if isinstance(result, (dict, list, tuple)):
            data = list(result) if isinstance(result, tuple) else result
            self._writer(yaml.safe_dump(data, sort_keys=False), False)
            return 0
        self.write(str(result))
        return 0


__all__ = ["BootstrapFailedError", "Runtime", "RuntimeOptions"]
