from __future__ import annotations

import logging
import textwrap
from pathlib import Path

import pytest

from drover.core.commands.discovery import (
    DiscoverySourceUnreadable,
    build_module_index,
    discover_from_configuration,
    discover_from_loaded_modules,
    discover_from_paths,
    is_concrete_command_file,
    load_identity,
    normalize_identity,
)
from drover.core.commands.descriptor import CommandFile

COMMAND_FILE = textwrap.dedent(
    """
    import abc

    from drover.core.commands import CommandFile, command


    class {name}(CommandFile):
        @command("{command}")
        def run(self, invocation):
            return "{command}"


    class Abstract{name}(CommandFile, abc.ABC):
        @abc.abstractmethod
        def todo(self): ...


    class NotACommandFile:
        pass
    """
)


def _write(path: Path, name: str, command: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(COMMAND_FILE.format(name=name, command=command), encoding="utf-8")
    return path


def test_normalize_identity_accepts_both_forms() -> None:
    assert normalize_identity("pkg.mod:Thing") == "pkg.mod:Thing"
    assert normalize_identity("pkg.mod.Thing") == "pkg.mod:Thing"
    assert normalize_identity(":pkg.mod:Thing") == "pkg.mod:Thing"
    assert normalize_identity(" .pkg.mod.Thing ") == "pkg.mod:Thing"
    with pytest.raises(DiscoverySourceUnreadable):
        normalize_identity("Thing")


def test_load_identity_resolves_classes_only() -> None:
    assert load_identity("drover.core.commands.descriptor:CommandFile") is CommandFile
    with pytest.raises(DiscoverySourceUnreadable):
        load_identity("drover.core.commands.descriptor:command")
    with pytest.raises(DiscoverySourceUnreadable):
        load_identity("drover.core.commands.descriptor:Missing")
    with pytest.raises(DiscoverySourceUnreadable):
        load_identity("drover_no_such_package.mod:Thing")


def test_is_concrete_command_file() -> None:
    class Concrete(CommandFile):
        pass

    assert is_concrete_command_file(Concrete)
    assert not is_concrete_command_file(CommandFile)
    assert not is_concrete_command_file(object)
    assert not is_concrete_command_file("drover")


def test_discover_from_paths_scans_search_locations(tmp_path: Path) -> None:
    base = tmp_path / "project"
    _write(base / "commands" / "site_commands.py", "SiteCommands", "site:one")
    _write(
        base / "commands" / "contrib" / "extra" / "ExtraCommands.py",
        "ExtraCommands",
        "extra:one",
    )
    _write(base / "hooks" / "audit_hooks.py", "AuditHooks", "audit:one")
    _write(base / "src" / "ignored.py", "Ignored", "ignored:one")
    _write(base / "commands" / "helpers.py", "Helpers", "helpers:one")
    _write(
        base / "commands" / "a" / "b" / "c" / "deep_commands.py",
        "DeepCommands",
        "deep:one",
    )
    _write(base / "base_commands.py", "BaseCommands", "base:one")

    identities = discover_from_paths([base, tmp_path / "missing"], "drover_paths_t1")

    assert sorted(identities) == [
        "drover_paths_t1.base_commands:BaseCommands",
        "drover_paths_t1.commands.extra.ExtraCommands:ExtraCommands",
        "drover_paths_t1.commands.site_commands:SiteCommands",
        "drover_paths_t1.hooks.audit_hooks:AuditHooks",
    ]


def test_discover_from_paths_skips_unreadable_files(tmp_path: Path, caplog) -> None:
    caplog.set_level(logging.WARNING, logger="drover")
    base = tmp_path / "project"
    _write(base / "commands" / "good_commands.py", "GoodCommands", "good:one")
    broken = base / "commands" / "broken_commands.py"
    broken.write_text("this is not python(\n", encoding="utf-8")

    identities = discover_from_paths([base], "drover_paths_t2")

    assert identities == ["drover_paths_t2.commands.good_commands:GoodCommands"]
    assert "commands.discovery.skipped" in caplog.text


def test_discover_from_configuration_loads_from_hint(tmp_path: Path) -> None:
    _write(tmp_path / "custom" / "my_commands.py", "MyCommands", "my:one")
    declared = [
        {"custom/my_commands.py": "drover_config_t1.my_commands:MyCommands"},
        "drover.commands.core.status_commands:StatusCommands",
        ":drover.commands.core.status_commands.StatusCommands",
    ]

    identities = discover_from_configuration(declared, base=tmp_path)

    assert identities == [
        "drover_config_t1.my_commands:MyCommands",
        "drover.commands.core.status_commands:StatusCommands",
    ]
    assert load_identity(identities[0]).__name__ == "MyCommands"


def test_discover_from_configuration_skips_bad_entries(caplog) -> None:
    caplog.set_level(logging.WARNING, logger="drover")
    identities = discover_from_configuration(
        {"missing.py": "drover_config_t2.nope:Nope"}
    )
    assert identities == []
    assert discover_from_configuration("not-a-list") == []
    assert discover_from_configuration(None) == []
    assert "commands.discovery.skipped" in caplog.text


def test_discover_from_loaded_modules_uses_commands_namespace() -> None:
    index = build_module_index(["drover"])

    assert "drover.commands.core.cache_commands" in index
    identities = discover_from_loaded_modules(index)

    assert sorted(identities) == [
        "drover.commands.core.cache_commands:CacheCommands",
        "drover.commands.core.help_commands:HelpCommands",
        "drover.commands.core.status_commands:StatusCommands",
    ]


def test_discover_from_loaded_modules_ignores_other_modules() -> None:
    index = {
        "drover.core.commands.registry": "registry.py",
        "drover.commands.core.help_commands": "help.py",
        "drover_missing.commands.gone_commands": "gone_commands.py",
    }
    assert discover_from_loaded_modules(index) == []


def test_build_module_index_tolerates_missing_packages(caplog) -> None:
    caplog.set_level(logging.WARNING, logger="drover")
    assert build_module_index(["drover_no_such_package"]) == {}
    assert "commands.discovery.index_failed" in caplog.text
