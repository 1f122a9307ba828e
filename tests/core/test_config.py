from __future__ import annotations

from pathlib import Path

import pytest

from drover.core.config import (
    ConfigError,
    find_project_config,
    load_config,
    parse_define,
    resolve_env_for_root,
)


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_apply_without_any_files(tmp_path: Path) -> None:
    config = load_config(tmp_path, env={"DROVER_HOME": str(tmp_path / "home")})

    assert config.project_root is None
    assert config.sources == []
    assert config.namespaces == ["drover.commands"]
    assert config.get("redispatch.ssh-options") == ["PasswordAuthentication=no"]
    assert config.uri is None
    assert config.cache_root == tmp_path / "home" / "cache"


def test_layers_apply_in_precedence_order(tmp_path: Path) -> None:
    home = tmp_path / "home"
    project = tmp_path / "project"
    nested = project / "web" / "sites"
    nested.mkdir(parents=True)
    _write(home / "drover.yml", "options:\n  uri: from-home\ncache:\n  root: /c\n")
    _write(project / "drover.yml", "options:\n  uri: from-project\n")
    _write(project / "drover.override.yml", "redispatch:\n  http-attempts: 5\n")
    extra = _write(tmp_path / "extra.yml", "redispatch:\n  http-timeout: 2.5\n")

    config = load_config(nested, config_file=extra, env={"DROVER_HOME": str(home)})

    project = project.resolve()
    assert config.project_root == project
    assert config.uri == "from-project"
    assert config.get("cache.root") == "/c"
    assert config.get("redispatch.http-attempts") == 5
    assert config.get("redispatch.http-timeout") == 2.5
    assert config.get("redispatch.ssh-options") == ["PasswordAuthentication=no"]
    assert config.sources == [
        home / "drover.yml",
        project / "drover.yml",
        project / "drover.override.yml",
        extra,
    ]


def test_environment_and_definitions_win(tmp_path: Path) -> None:
    project = tmp_path / "project"
    _write(project / "drover.yml", "options:\n  uri: from-project\n")
    _write(project / ".env", "DROVER_ROOT=/srv/from-dotenv\n")

    config = load_config(
        project,
        defines=["options.uri=from-define", "custom.flag=true"],
        env={"DROVER_HOME": str(tmp_path / "home"), "DROVER_URI": "from-env"},
    )

    assert config.uri == "from-define"
    assert config.root == Path("/srv/from-dotenv")
    assert config.get("custom.flag") is True


def test_paths_are_relative_to_project_root(tmp_path: Path) -> None:
    project = tmp_path / "project"
    _write(
        project / "drover.yml",
        "drover:\n  include: [custom, /abs/path]\n"
        "  paths:\n    alias-path: aliases\n",
    )

    config = load_config(project, env={"DROVER_HOME": str(tmp_path / "home")})

    project = project.resolve()
    assert config.include_paths == [project / "custom", Path("/abs/path")]
    assert config.alias_paths == [project / "aliases"]


def test_invalid_yaml_raises_config_error(tmp_path: Path) -> None:
    project = tmp_path / "project"
    _write(project / "drover.yml", "options: [unclosed\n")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config(project, env={"DROVER_HOME": str(tmp_path / "home")})


def test_non_mapping_config_is_rejected(tmp_path: Path) -> None:
    project = tmp_path / "project"
    _write(project / "drover.yml", "- just\n- a list\n")
    with pytest.raises(ConfigError, match="must be a mapping"):
        load_config(project, env={"DROVER_HOME": str(tmp_path / "home")})


def test_broken_override_names_the_file(tmp_path: Path) -> None:
    project = tmp_path / "project"
    _write(project / "drover.yml", "{}\n")
    _write(project / "drover.override.yml", "nope: [\n")
    with pytest.raises(ConfigError, match="fix or delete it"):
        load_config(project, env={"DROVER_HOME": str(tmp_path / "home")})


def test_missing_config_file_option(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Config file not found"):
        load_config(
            tmp_path,
            config_file=tmp_path / "absent.yml",
            env={"DROVER_HOME": str(tmp_path / "home")},
        )


def test_parse_define() -> None:
    assert parse_define("options.uri=shop") == ("options.uri", "shop")
    assert parse_define("cache.size=10") == ("cache.size", 10)
    assert parse_define("flag=") == ("flag", "")
    with pytest.raises(ConfigError):
        parse_define("novalue")
    with pytest.raises(ConfigError):
        parse_define("=value")


def test_find_project_config_walks_up(tmp_path: Path) -> None:
    config_path = _write(tmp_path / "a" / "drover.yml", "{}\n")
    (tmp_path / "a" / "b" / "c").mkdir(parents=True)
    assert find_project_config(tmp_path / "a" / "b" / "c") == config_path.resolve()
    assert find_project_config(tmp_path) is None


def test_dotenv_does_not_touch_process_environment(tmp_path: Path) -> None:
    _write(tmp_path / ".env", "DROVER_URI=from-dotenv\n")
    base = {"OTHER": "1"}
    env = resolve_env_for_root(tmp_path, base)
    assert env == {"OTHER": "1", "DROVER_URI": "from-dotenv"}
    assert base == {"OTHER": "1"}
