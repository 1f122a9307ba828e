from __future__ import annotations

from typing import Dict, List

from ...core.bootstrap import BootLevel
from ...core.commands import CommandDescriptor, CommandFile, CommandInvocation, command


def _group(name: str) -> str:
    return name.split(":", 1)[0] if ":" in name else "_global"


class HelpCommands(CommandFile):
    @command(
        "list",
        aliases=("ls",),
        bootstrap=BootLevel.MAX,
        usages=(
            ("drover list", "List all commands."),
            ("drover list --all", "Include hidden and obsolete commands."),
            ("drover list --format=yaml", "Names and descriptions as YAML."),
        ),
    )
    def list_commands(self, invocation: CommandInvocation):
        """List available commands.

        Commands are grouped by the namespace in front of the first colon.
        Hidden and obsolete commands are left out unless --all is given.
        """
        show_all = invocation.flag("all")
        commands = [
            item
            for item in self.require_runtime().registry.list()
            if show_all or not (item.hidden or item.obsolete)
        ]
        if invocation.option("format") == "yaml":
            return {item.name: item.description for item in commands}

        groups: Dict[str, List[CommandDescriptor]] = {}
        for item in commands:
            groups.setdefault(_group(item.name), []).append(item)
        width = max((len(self._label(item)) for item in commands), default=0)
        lines = ["Available commands:"]
        for group in sorted(groups):
            if group != "_global":
                lines.append(f"{group}:")
            for item in groups[group]:
                label = self._label(item)
                lines.append(f"  {label.ljust(width)}  {item.description}".rstrip())
        return "\n".join(lines)

    @staticmethod
    def _label(item: CommandDescriptor) -> str:
        if not item.aliases:
            return item.name
        return f"{item.name} ({', '.join(item.aliases)})"

    @command(
        "help",
        usages=(("drover help cache:clear", "Show help for the cache:clear command."),),
    )
    def help(self, invocation: CommandInvocation):
        """Display usage details for a command."""
        if not invocation.args:
            # Same view as `list`, which boots as far as the site allows.
            self.require_runtime().tracker.escalate_to_maximum()
            return self.list_commands(
                CommandInvocation(name="list", options=invocation.options)
            )
        name = invocation.args[0]
        found = self.require_runtime().resolver.find(name, help_request=True)
        if found is None:
            return 1
        if found.is_remote:
            target = found.target.name or "the remote target"
            return f"{name} is not available locally; it will be run on {target}."

        lines = [found.description or found.name, ""]
        lines.append("Usage:")
        lines.append(f"  drover {found.name} [arguments] [options]")
        if found.usages:
            lines.extend(["", "Examples:"])
            for usage, description in found.usages:
                lines.append(f"  {usage}")
                if description:
                    lines.append(f"    {description}")
        if found.aliases:
            lines.extend(["", f"Aliases: {', '.join(found.aliases)}"])
        if found.bootstrap != BootLevel.NONE:
            lines.append(f"Bootstrap: {found.bootstrap.name.lower()}")
        if found.help:
            lines.extend(["", found.help])
        if found.obsolete:
            lines.extend(["", "This command is obsolete."])
        return "\n".join(lines)
