"""Default bootstrap phases for a file-based site.

Layout::

    <root>/site.yml                     root marker (``default_uri``)
    <root>/sites/<uri>/settings.yml     per-site settings
    <root>/sites/<uri>/<database.path>  sqlite database
    <root>/extensions/<name>/           extension code, scanned for command files

Each phase returns ``False`` when its precondition is missing; the tracker turns
that into "bootstrap stopped here".
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .bootstrap import DEFAULT_URI, BootContext, BootLevel, BootPhase

logger = logging.getLogger("drover.core.host")

ROOT_MARKER = "site.yml"
SITES_DIR = "sites"
SETTINGS_FILENAME = "settings.yml"
EXTENSIONS_DIR = "extensions"


def _read_mapping(path: Path) -> Optional[Dict[str, Any]]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.debug("Could not read %s: %s", path, exc)
        return None
    if not isinstance(data, dict):
        logger.debug("%s is not a YAML mapping", path)
        return None
    return data


def is_site_root(path: Path) -> bool:
    return (path / ROOT_MARKER).is_file()


def read_site_info(root: Path) -> Dict[str, Any]:
    """The root marker's contents, or an empty mapping when it cannot be read."""
    return _read_mapping(root / ROOT_MARKER) or {}


def locate_root(start: Path) -> Optional[Path]:
    """Walk up from ``start`` to the nearest directory holding ``site.yml``."""
    current = start.resolve()
    for candidate in (current, *current.parents):
        if is_site_root(candidate):
            return candidate
    return None


class RootPhase:
    level = BootLevel.ROOT

    def boot(self, context: BootContext) -> bool:
        requested = context.requested_root
        if requested is None and context.config is not None:
            requested = context.config.root
        if requested is not None:
            root = Path(requested).expanduser().resolve()
            if not is_site_root(root):
                logger.debug("Requested root %s has no %s", root, ROOT_MARKER)
                return False
        else:
            found = locate_root(context.cwd)
            if found is None:
                logger.debug("No %s found above %s", ROOT_MARKER, context.cwd)
                return False
            root = found
        site_info = _read_mapping(root / ROOT_MARKER)
        if site_info is None:
            return False
        context.root = root
        context.site_info = site_info
        logger.debug("Site root is %s", root)
        return True


class SitePhase:
    level = BootLevel.SITE

    def boot(self, context: BootContext) -> bool:
        if context.root is None:
            return False
        uri = context.requested_uri or context.uri
        if not uri and context.config is not None:
            uri = context.config.uri
        if not uri:
            default_uri = context.site_info.get("default_uri")
            uri = str(default_uri) if default_uri else DEFAULT_URI
        site_dir = context.root / SITES_DIR / uri
        if not site_dir.is_dir():
            logger.debug("Site directory %s does not exist", site_dir)
            return False
        context.uri = uri
        context.site_dir = site_dir
        logger.debug("Selected site %s at %s", uri, site_dir)
        return True


class ConfigurationPhase:
    level = BootLevel.CONFIGURATION

    def boot(self, context: BootContext) -> bool:
        if context.site_dir is None:
            return False
        path = context.site_dir / SETTINGS_FILENAME
        if not path.is_file():
            logger.debug("No settings file at %s", path)
            return False
        settings = _read_mapping(path)
        if settings is None:
            return False
        context.settings = settings
        return True


def _database_path(context: BootContext) -> Optional[Path]:
    database = context.settings.get("database")
    if not isinstance(database, dict) or not database.get("path"):
        return None
    path = Path(str(database["path"])).expanduser()
    if not path.is_absolute() and context.site_dir is not None:
        path = context.site_dir / path
    return path


def _connect(path: Path) -> sqlite3.Connection:
    return sqlite3.connect(f"file:{path}?mode=ro", uri=True)


class DatabasePhase:
    level = BootLevel.DATABASE

    def boot(self, context: BootContext) -> bool:
        path = _database_path(context)
        if path is None:
            logger.debug("Settings do not define database.path")
            return False
        if not path.is_file():
            logger.debug("Database %s does not exist", path)
            return False
        try:
            conn = _connect(path)
            try:
                conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            logger.debug("Database %s is not usable: %s", path, exc)
            return False
        context.database_path = path
        return True


def enabled_extensions(context: BootContext) -> List[str]:
    """Extension names from the ``extensions`` table, else from settings."""
    names: List[str] = []
    if context.database_path is not None:
        try:
            conn = _connect(context.database_path)
            try:
                rows = conn.execute(
                    "SELECT name FROM extensions ORDER BY name"
                ).fetchall()
            finally:
                conn.close()
            names = [str(row[0]) for row in rows if row and row[0]]
        except sqlite3.OperationalError as exc:
            logger.debug("No extensions table: %s", exc)
    if not names:
        configured = context.settings.get("extensions") or []
        if isinstance(configured, list):
            names = [str(item) for item in configured if item]
    return names


class FullPhase:
    level = BootLevel.FULL

    def boot(self, context: BootContext) -> bool:
        if context.root is None or context.database_path is None:
            return False
        paths: List[Path] = []
        for name in enabled_extensions(context):
            path = context.root / EXTENSIONS_DIR / name
            if not path.is_dir():
                logger.warning("Extension %s is enabled but %s is missing", name, path)
                continue
            paths.append(path)
        context.extensions = paths
        if context.extension_loader is not None and paths:
            context.extension_loader(paths)
        logger.debug("Loaded %d extension(s)", len(paths))
        return True


def default_phases() -> List[BootPhase]:
    return [
        RootPhase(),
        SitePhase(),
        ConfigurationPhase(),
        DatabasePhase(),
        FullPhase(),
    ]


__all__ = [
    "ConfigurationPhase",
    "DatabasePhase",
    "FullPhase",
    "ROOT_MARKER",
    "RootPhase",
    "SitePhase",
    "default_phases",
    "enabled_extensions",
    "is_site_root",
    "locate_root",
]
