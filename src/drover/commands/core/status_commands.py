from __future__ import annotations

from typing import Any, Dict

from ... import __version__
from ...core.bootstrap import BootLevel
from ...core.commands import CommandFile, CommandInvocation, command
from ...core.exceptions import PermanentError


class StatusCommands(CommandFile):
    @command(
        "core:status",
        aliases=("status", "st"),
        bootstrap=BootLevel.MAX,
        usages=(
            ("drover core:status", "Show the state of the selected site."),
            ("drover st --field=root", "Print only the site root."),
        ),
    )
    def status(self, invocation: CommandInvocation):
        """An overview of the environment, the selected site and how far it booted.

        Fields: root, uri, alias, site, database, bootstrap, extensions, config,
        drover-version.
        """
        data = self.collect()
        field = invocation.option("field")
        if field:
            if field not in data:
                raise PermanentError(f"Unknown status field: {field}")
            value = data[field]
            return value if isinstance(value, list) else str(value)
        return data

    def collect(self) -> Dict[str, Any]:
        runtime = self.require_runtime()
        context = runtime.tracker.context
        target = runtime.targets.get_self()
        data: Dict[str, Any] = {
            "root": str(context.root) if context.root else None,
            "uri": runtime.tracker.uri,
            "alias": target.name,
            "site": str(context.site_dir) if context.site_dir else None,
            "database": str(context.database_path) if context.database_path else None,
            "bootstrap": runtime.tracker.current.name.lower(),
            "extensions": [path.name for path in context.extensions] or None,
            "config": [str(path) for path in runtime.config.sources] or None,
            "drover-version": __version__,
        }
        return {key: value for key, value in data.items() if value is not None}

    @command("sql:conf", obsolete=True)
    def sql_conf(self, invocation: CommandInvocation):
        """sql:conf has been removed. Use core:status --field=database instead."""
