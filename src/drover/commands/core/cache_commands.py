from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Sequence

from ...core.bootstrap import BootLevel
from ...core.cache import CacheType, CacheTypeRegistry, clear_directory
from ...core.commands import CommandFile, CommandInvocation, HookType, command, hook
from ...core.exceptions import PermanentError
from ...core.logging_utils import log_event

SITE_CACHE_DIR = "cache"


class CacheTypeError(PermanentError):
    pass


class CacheCommands(CommandFile):
    """Cache clearing. Also contributes the built-in cache types."""

    def register_cache_types(self, registry: CacheTypeRegistry) -> None:
        registry.register(
            "drover",
            self.clear_drover,
            description="Drover's own cache (command discovery, downloads).",
        )
        registry.register(
            "site",
            self.clear_site,
            bootstrapped=True,
            description="Everything below the site's cache directory.",
        )
        registry.register(
            "bin",
            self.clear_bins,
            bootstrapped=True,
            description="Named cache bins, given as further arguments.",
        )

    def _site_cache(self) -> Path:
        site_dir = self.require_runtime().tracker.context.site_dir
        if site_dir is None:
            raise CacheTypeError("No site is selected.")
        return site_dir / SITE_CACHE_DIR

    def clear_drover(self, args: Sequence[str]) -> None:
        clear_directory(self.require_runtime().config.cache_root)

    def clear_site(self, args: Sequence[str]) -> None:
        clear_directory(self._site_cache())

    def clear_bins(self, args: Sequence[str]) -> None:
        base = self._site_cache()
        if not args:
            clear_directory(base)
            return
        for name in args:
            for bin_name in (part.strip() for part in name.split(",")):
                if bin_name:
                    clear_directory(base / bin_name)

    def available_types(self) -> Dict[str, CacheType]:
        runtime = self.require_runtime()
        return runtime.cache_types.types(
            include_bootstrapped=runtime.tracker.has_reached(BootLevel.FULL)
        )

    @hook(HookType.VALIDATE, target="cache:clear")
    def validate_cache_type(self, invocation: CommandInvocation) -> None:
        if not invocation.flag("cache-clear", True) or not invocation.args:
            return
        cache_type = invocation.args[0]
        if cache_type in self.available_types():
            return
        runtime = self.require_runtime()
        if runtime.tracker.has_reached(BootLevel.FULL):
            raise CacheTypeError(f"'{cache_type}' cache is not a valid cache type.")
        if cache_type in runtime.cache_types.types(include_bootstrapped=True):
            raise CacheTypeError(
                f"'{cache_type}' cache requires a working site to operate on. Use "
                "the --root and --uri options, or a site @alias, or cd to a "
                "directory containing a site.yml file."
            )
        raise CacheTypeError(
            f"'{cache_type}' cache is not a valid cache type. There may be more "
            "cache types available if you select a working site."
        )

    @command(
        "cache:clear",
        aliases=("cc", "cache-clear"),
        bootstrap=BootLevel.MAX,
        usages=(
            ("drover cc drover", "Clear drover's own cache."),
            ("drover cc bin render,page", "Clear the render and page cache bins."),
        ),
    )
    def clear(self, invocation: CommandInvocation):
        """Clear a specific cache, or all caches of the selected site.

        Without a type every available cache is cleared after confirmation.
        --no-cache-clear turns the command into a no-op.
        """
        if not invocation.flag("cache-clear", True):
            log_event(
                self.logger,
                logging.INFO,
                "cache.clear.skipped",
                reason="--no-cache-clear",
            )
            return 0
        runtime = self.require_runtime()
        types = self.available_types()
        if not invocation.args:
            names = ", ".join(types)
            if not runtime.confirm(f"Clear every available cache ({names})?"):
                runtime.write("Cancelled.", err=True)
                return 1
            for cache_type in types.values():
                cache_type.handler(())
            return "All available caches were cleared."

        name, extra = invocation.args[0], invocation.args[1:]
        types[name].handler(extra)
        log_event(self.logger, logging.INFO, "cache.clear.done", cache_type=name)
        return f"'{name}' cache was cleared."

    @command(
        "cache:rebuild",
        aliases=("cr", "rebuild"),
        bootstrap=BootLevel.SITE,
        usages=(("drover cr", "Rebuild the selected site's caches."),),
    )
    def rebuild(self, invocation: CommandInvocation):
        """Rebuild a site by clearing every site cache type.

        Works on a site that cannot fully boot, which is when it is needed most.
        """
        if not invocation.flag("cache-clear", True):
            return 0
        runtime = self.require_runtime()
        cleared = []
        for name, cache_type in runtime.cache_types.types(
            include_bootstrapped=True
        ).items():
            if cache_type.bootstrapped:
                cache_type.handler(())
                cleared.append(name)
        log_event(self.logger, logging.INFO, "cache.rebuild.done", cleared=cleared)
        return "Rebuild complete."
