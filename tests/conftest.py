"""Test harness configuration.

This repo uses a `src/` layout. In some developer environments an older
installed `drover` package can shadow the local sources.

Ensure tests always import the in-repo code.
"""

from __future__ import annotations

import sqlite3
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

import pytest

DEFAULT_NON_INTEGRATION_TIMEOUT_SECONDS = 120

GREETER_COMMANDS = textwrap.dedent(
    '''
    from drover.core.commands import CommandFile, command


    class GreeterCommands(CommandFile):
        @command("greeter:hello", aliases=("hi",))
        def hello(self, invocation):
            """Say hello from an extension."""
            who = invocation.args[0] if invocation.args else "world"
            return f"Hello, {who}!"

        def register_cache_types(self, registry):
            registry.register("greeter", lambda args: None, bootstrapped=True)
    '''
)


def pytest_configure() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src_dir = repo_root / "src"
    src_path = str(src_dir)
    if sys.path[:1] != [src_path] and src_path not in sys.path:
        sys.path.insert(0, src_path)


def pytest_collection_modifyitems(
    session: pytest.Session, config: pytest.Config, items: list[pytest.Item]
) -> None:
    """
    Apply a default per-test timeout to non-integration tests.

    This relies on `pytest-timeout` when installed; if it isn't installed, the
    marker is inert but still documents the intent.
    """
    _ = session, config
    for item in items:
        if item.get_closest_marker("integration") is not None:
            continue
        item.add_marker(pytest.mark.timeout(DEFAULT_NON_INTEGRATION_TIMEOUT_SECONDS))


@pytest.fixture(autouse=True)
def drover_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep user-level config and caches inside the test's tmp dir."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("DROVER_HOME", str(home))
    for name in ("DROVER_URI", "DROVER_ROOT", "DROVER_ALIAS_PATH"):
        monkeypatch.delenv(name, raising=False)
    return home


@dataclass(frozen=True)
class SiteEnv:
    root: Path
    site_dir: Path
    database: Optional[Path]


def build_site(
    base: Path,
    *,
    uri: str = "default",
    database: bool = True,
    extensions: Iterable[str] = ("greeter",),
    settings: bool = True,
) -> SiteEnv:
    """Lay out a site: ``site.yml``, ``sites/<uri>/settings.yml``, sqlite db."""
    root = base / "site"
    site_dir = root / "sites" / uri
    site_dir.mkdir(parents=True)
    (root / "site.yml").write_text(f"default_uri: {uri}\n", encoding="utf-8")
    extensions = list(extensions)
    for name in extensions:
        commands_dir = root / "extensions" / name / "commands"
        commands_dir.mkdir(parents=True)
        (commands_dir / f"{name}_commands.py").write_text(
            GREETER_COMMANDS, encoding="utf-8"
        )
    db_path: Optional[Path] = None
    if settings:
        lines = []
        if database:
            lines.append("database:\n  path: site.sqlite\n")
        (site_dir / "settings.yml").write_text("".join(lines) or "{}\n", "utf-8")
    if database:
        db_path = site_dir / "site.sqlite"
        conn = sqlite3.connect(db_path)
        try:
            conn.execute("CREATE TABLE extensions (name TEXT)")
            conn.executemany(
                "INSERT INTO extensions (name) VALUES (?)",
                [(name,) for name in extensions],
            )
            conn.commit()
        finally:
            conn.close()
    (site_dir / "cache").mkdir()
    return SiteEnv(root=root, site_dir=site_dir, database=db_path)


@pytest.fixture()
def site(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> SiteEnv:
    """A fully bootable site, with the working directory set to its root."""
    env = build_site(tmp_path)
    monkeypatch.chdir(env.root)
    return env


@pytest.fixture()
def outside(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A working directory with no site above it."""
    path = tmp_path / "elsewhere"
    path.mkdir()
    monkeypatch.chdir(path)
    return path


@pytest.fixture()
def make_site(tmp_path: Path):
    def _make(**kwargs) -> SiteEnv:
        return build_site(tmp_path, **kwargs)

    return _make
