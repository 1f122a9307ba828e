from __future__ import annotations

from pathlib import Path

import pytest

from drover.core.bootstrap import BootLevel
from drover.core.exceptions import PermanentError
from drover.core.resolver import (
    CommandNeedsDatabaseError,
    CommandNeedsRootError,
    ObsoleteCommandError,
)
from drover.core.runtime import BootstrapFailedError, Runtime, RuntimeOptions


class Output:
    def __init__(self) -> None:
        self.out = ""
        self.err = ""

    def __call__(self, text: str, err: bool = False) -> None:
        if err:
            self.err += text
        else:
            self.out += text


class Recorder:
    def __init__(self, code: int = 0) -> None:
        self.code = code
        self.calls = []

    def redispatch(self, target, name, args, options):
        self.calls.append((target.name, name, list(args), dict(options)))
        return self.code


def _runtime(cwd: Path, *, factory=None, **options):
    output = Output()
    runtime = Runtime.build(
        RuntimeOptions(cwd=cwd, **options),
        redispatcher_factory=factory,
        writer=output,
    )
    return runtime, output


def _write_alias(root: Path, body: str) -> None:
    aliases = root / "aliases"
    aliases.mkdir(exist_ok=True)
    (aliases / "shop.site.yml").write_text(body, encoding="utf-8")


def test_sources_are_queued_without_bootstrapping(outside: Path) -> None:
    runtime, _ = _runtime(outside)

    assert runtime.registry.pending >= 2
    assert runtime.tracker.current is BootLevel.NONE
    assert "cache:clear" in runtime.registry.names()
    assert "yaml:lint" in runtime.registry.names()


def test_extension_command_is_found_after_escalation(site) -> None:
    runtime, output = _runtime(site.root)

    assert runtime.run("greeter:hello", ["Ada"]) == 0

    assert output.out == "Hello, Ada!\n"
    assert runtime.tracker.current is BootLevel.FULL


def test_unknown_command_outside_a_site_needs_root(outside: Path) -> None:
    runtime, _ = _runtime(outside)
    with pytest.raises(CommandNeedsRootError) as excinfo:
        runtime.run("greeter:hello")
    assert "Pass --root or a @siteAlias" in excinfo.value.user_message


def test_unknown_command_without_database_needs_database(make_site) -> None:
    env = make_site(database=False)
    runtime, _ = _runtime(env.root)
    with pytest.raises(CommandNeedsDatabaseError):
        runtime.run("greeter:hello")
    assert runtime.tracker.current is BootLevel.CONFIGURATION


def test_root_option_selects_the_site(site, outside: Path) -> None:
    runtime, output = _runtime(outside, root=site.root)

    assert runtime.run("status", [], {"field": "root"}) == 0

    assert output.out == f"{site.root.resolve()}\n"


def test_uri_is_selected_from_site_defaults(site) -> None:
    runtime, output = _runtime(site.root)

    runtime.run("st", [], {"field": "uri"})

    assert output.out == "default\n"
    assert runtime.targets.get_self().uri == "default"


def test_status_reports_bootstrap_and_extensions(site) -> None:
    runtime, output = _runtime(site.root)

    assert runtime.run("core:status") == 0

    assert "bootstrap: full" in output.out
    assert "- greeter" in output.out
    with pytest.raises(PermanentError, match="Unknown status field: nope"):
        runtime.run("core:status", [], {"field": "nope"})


def test_obsolete_command_is_refused(outside: Path) -> None:
    runtime, output = _runtime(outside)
    with pytest.raises(ObsoleteCommandError) as excinfo:
        runtime.run("sql:conf")
    assert excinfo.value.user_message == (
        "sql:conf has been removed. Use core:status --field=database instead."
    )
    assert output.out == ""


def test_command_needing_more_than_reachable_bootstrap_fails(outside: Path) -> None:
    runtime, _ = _runtime(outside)
    with pytest.raises(BootstrapFailedError, match="Bootstrap to site failed."):
        runtime.run("cache:rebuild")


def test_empty_name_is_an_error(outside: Path) -> None:
    runtime, _ = _runtime(outside)
    with pytest.raises(PermanentError, match="No command given."):
        runtime.run("")


def test_unknown_command_on_remote_alias_is_proxied(site) -> None:
    _write_alias(site.root, "prod:\n  host: shop.example.com\n  root: /srv/shop\n")
    recorder = Recorder(code=4)
    runtime, _ = _runtime(
        site.root, alias="@shop.prod", factory=lambda target: recorder
    )

    assert runtime.run("views:list", ["x"], {"format": "json"}) == 4

    assert recorder.calls == [("@shop.prod", "views:list", ["x"], {"format": "json"})]
    assert runtime.tracker.current is BootLevel.NONE


def test_known_command_on_remote_alias_is_redispatched(site) -> None:
    _write_alias(site.root, "prod:\n  host: shop.example.com\n")
    recorder = Recorder()
    runtime, _ = _runtime(site.root, alias="@shop", factory=lambda target: recorder)

    assert runtime.run("cc", ["drover"]) == 0

    assert recorder.calls == [("@shop", "cache:clear", ["drover"], {})]
    assert runtime.tracker.current is BootLevel.NONE


def test_yaml_helpers_run_locally_for_remote_alias(site, tmp_path: Path) -> None:
    _write_alias(site.root, "prod:\n  host: shop.example.com\n")
    data = tmp_path / "data.yml"
    data.write_text("a:\n  b: c\n", encoding="utf-8")
    recorder = Recorder()
    runtime, output = _runtime(
        site.root, alias="@shop.prod", factory=lambda target: recorder
    )

    assert runtime.run("y:get:value", [str(data), "a.b"]) == 0

    assert output.out == "c\n"
    assert recorder.calls == []


def test_emit_maps_results_to_exit_codes(outside: Path) -> None:
    runtime, output = _runtime(outside)

    assert runtime.emit(None) == 0
    assert runtime.emit(True) == 0
    assert runtime.emit(False) == 1
    assert runtime.emit(3) == 3
    assert runtime.emit({"a": 1}) == 0
    assert runtime.emit(("x",)) == 0
    assert runtime.emit("done") == 0
    assert output.out == "a: 1\n- x\ndone\n"


def test_confirm_respects_yes_and_no(outside: Path) -> None:
    asked = []

    def confirm(question: str) -> bool:
        asked.append(question)
        return True

    assert Runtime.build(RuntimeOptions(cwd=outside, yes=True)).confirm("q?")
    assert not Runtime.build(RuntimeOptions(cwd=outside, no=True)).confirm("q?")
    assert not Runtime.build(RuntimeOptions(cwd=outside)).confirm("q?")
    runtime = Runtime.build(RuntimeOptions(cwd=outside), confirm_fn=confirm)
    assert runtime.confirm("Really?")
    assert asked == ["Really?"]


def test_included_command_files_are_registered(outside: Path) -> None:
    (outside / "custom").mkdir()
    (outside / "custom" / "local_commands.py").write_text(
        "from drover.core.commands import CommandFile, command\n\n\n"
        "class LocalCommands(CommandFile):\n"
        '    @command("local:ping")\n'
        "    def ping(self, invocation):\n"
        '        return "pong"\n',
        encoding="utf-8",
    )
    (outside / "drover.yml").write_text(
        "drover:\n  include: [custom]\n", encoding="utf-8"
    )
    runtime, output = _runtime(outside)

    assert runtime.run("local:ping") == 0
    assert output.out == "pong\n"


RECORDING_HOOKS = (
    "from pathlib import Path\n\n"
    "from drover.core.commands import CommandFile, HookType, hook\n\n\n"
    "def _record(entry):\n"
    '    with Path("hooks.log").open("a", encoding="utf-8") as handle:\n'
    '        handle.write(entry + "\\n")\n\n\n'
    "class RecordingHooks(CommandFile):\n"
    '    @hook(HookType.INIT, target="*")\n'
    "    def on_init(self, invocation):\n"
    '        _record("init:" + invocation.name)\n\n'
    '    @hook(HookType.VALIDATE, target="*")\n'
    "    def on_validate(self, invocation):\n"
    '        _record("validate:" + invocation.name)\n'
)


def test_obsolete_command_is_refused_before_any_hook(outside: Path) -> None:
    (outside / "custom").mkdir()
    (outside / "custom" / "recording_hooks.py").write_text(
        RECORDING_HOOKS, encoding="utf-8"
    )
    (outside / "drover.yml").write_text(
        "drover:\n  include: [custom]\n", encoding="utf-8"
    )
    log = outside / "hooks.log"
    runtime, _ = _runtime(outside)

    with pytest.raises(ObsoleteCommandError):
        runtime.run("sql:conf")
    assert not log.exists()

    assert runtime.run("cc", ["drover"]) == 0
    assert log.read_text(encoding="utf-8").splitlines() == [
        "init:cache:clear",
        "validate:cache:clear",
    ]


LINT_OVERRIDE = (
    "from drover.core.commands import CommandFile, command\n\n\n"
    "class {name}(CommandFile):\n"
    '    @command("yaml:lint")\n'
    "    def lint(self, invocation):\n"
    '        return "{output}"\n'
)


def test_discovered_command_replaces_bundled_yaml_helper(outside: Path) -> None:
    (outside / "custom").mkdir()
    (outside / "custom" / "lint_commands.py").write_text(
        LINT_OVERRIDE.format(name="LintCommands", output="custom lint"),
        encoding="utf-8",
    )
    (outside / "drover.yml").write_text(
        "drover:\n  include: [custom]\n", encoding="utf-8"
    )
    runtime, output = _runtime(outside)

    assert runtime.run("yaml:lint") == 0
    assert output.out == "custom lint\n"


def test_extension_command_replaces_bundled_yaml_helper(site) -> None:
    commands_dir = site.root / "extensions" / "greeter" / "commands"
    (commands_dir / "lint_commands.py").write_text(
        LINT_OVERRIDE.format(name="ExtensionLintCommands", output="extension lint"),
        encoding="utf-8",
    )
    runtime, output = _runtime(site.root)

    assert runtime.run("greeter:hello") == 0
    assert runtime.run("yaml:lint") == 0
    assert output.out == "Hello, world!\nextension lint\n"


def test_uri_selection_does_not_bootstrap(site, tmp_path: Path) -> None:
    data = tmp_path / "data.yml"
    data.write_text("a: 1\n", encoding="utf-8")
    runtime, output = _runtime(site.root / "sites" / "default")

    assert runtime.run("yaml:lint", [str(data)]) == 0

    assert runtime.targets.get_self().uri == "default"
    assert runtime.tracker.current is BootLevel.NONE
    assert runtime.tracker.get_root() is None
