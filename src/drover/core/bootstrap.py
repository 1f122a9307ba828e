"""Staged bootstrap.

A site becomes usable only after an ordered series of phases succeeds. Each
phase may legitimately fail; the tracker records the highest level reached and
never moves backwards. Escalation stops at the first failing phase and never
raises: callers inspect :meth:`BootstrapTracker.has_reached` afterwards to decide
what to tell the user.
"""

from __future__ import annotations

import dataclasses
import logging
from enum import IntEnum
from pathlib import Path
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Iterable,
    Optional,
    Protocol,
    Sequence,
)

from .logging_utils import log_event

if TYPE_CHECKING:
    from .config import DroverConfig

DEFAULT_URI = "default"


class BootLevel(IntEnum):
    NONE = 0
    ROOT = 1
    SITE = 2
    CONFIGURATION = 3
    DATABASE = 4
    FULL = 5
    # Pseudo-level for command requirements: "as far as possible".
    MAX = 6

    @classmethod
    def parse(cls, value: Any) -> "BootLevel":
        if isinstance(value, BootLevel):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        if isinstance(value, str):
            key = value.strip().upper()
            if key in cls.__members__:
                return cls[key]
        raise ValueError(f"Unknown bootstrap level: {value!r}")


# Real phases in order; NONE and MAX are never booted.
PHASE_LEVELS: tuple[BootLevel, ...] = (
    BootLevel.ROOT,
    BootLevel.SITE,
    BootLevel.CONFIGURATION,
    BootLevel.DATABASE,
    BootLevel.FULL,
)


@dataclasses.dataclass
class BootContext:
    """Mutable scratch space shared by the phases of one invocation."""

    cwd: Path = dataclasses.field(default_factory=Path.cwd)
    config: Optional["DroverConfig"] = None
    requested_root: Optional[Path] = None
    requested_uri: Optional[str] = None
    root: Optional[Path] = None
    uri: Optional[str] = None
    site_dir: Optional[Path] = None
    site_info: Dict[str, Any] = dataclasses.field(default_factory=dict)
    settings: Dict[str, Any] = dataclasses.field(default_factory=dict)
    database_path: Optional[Path] = None
    extensions: list[Path] = dataclasses.field(default_factory=list)
    extension_loader: Optional[Callable[[Sequence[Path]], None]] = None


class BootPhase(Protocol):
    level: BootLevel

    def boot(self, context: BootContext) -> bool: ...


@dataclasses.dataclass
class BootstrapState:
    reached: BootLevel = BootLevel.NONE
    # First level whose phase failed; phases are not retried within a process.
    failed: Optional[BootLevel] = None

    def advance(self, level: BootLevel) -> None:
        if level == BootLevel.MAX:
            raise ValueError("MAX is not a reachable bootstrap level")
        if level > self.reached:
            self.reached = level


class BootstrapTracker:
    """Owns the bootstrap state of one invocation and drives the phases."""

    def __init__(
        self,
        phases: Iterable[BootPhase] = (),
        *,
        context: Optional[BootContext] = None,
        state: Optional[BootstrapState] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._phases: Dict[BootLevel, BootPhase] = {}
        for phase in phases:
            level = BootLevel.parse(phase.level)
            if level not in PHASE_LEVELS:
                raise ValueError(
                    f"Phase level must be one of {PHASE_LEVELS}: {level}"
                )
            self._phases[level] = phase
        self.context = context if context is not None else BootContext()
        self.state = state if state is not None else BootstrapState()
        self._logger = logger or logging.getLogger("drover.core.bootstrap")

    @property
    def current(self) -> BootLevel:
        return self.state.reached

    @property
    def max_level(self) -> BootLevel:
        return max(self._phases, default=BootLevel.NONE)

    def _clamp(self, level: BootLevel) -> BootLevel:
        return self.max_level if level == BootLevel.MAX else level

    def has_reached(self, level: Any) -> bool:
        target = self._clamp(BootLevel.parse(level))
        return self.state.reached >= target

    def escalate_to_maximum(self) -> BootLevel:
        """Advance as far as possible; phase failures stop the climb silently."""
        return self._advance(self.max_level)

    def bootstrap_to(self, level: Any) -> bool:
        """Advance to at least ``level`` (``MAX`` meaning the top phase)."""
        target = self._clamp(BootLevel.parse(level))
        self._advance(min(target, self.max_level))
        return self.state.reached >= target

    def _advance(self, target: BootLevel) -> BootLevel:
        for level in PHASE_LEVELS:
            if level <= self.state.reached:
                continue
            if level > target:
                break
            if self.state.failed is not None and level >= self.state.failed:
                break
            phase = self._phases.get(level)
            if phase is None:
                # Nothing to do at this level; later phases still depend on it.
                self.state.advance(level)
                continue
            log_event(
                self._logger, logging.DEBUG, "bootstrap.phase.start", phase=level
            )
            try:
                ok = bool(phase.boot(self.context))
            except Exception as exc:
                log_event(
                    self._logger,
                    logging.DEBUG,
                    "bootstrap.phase.error",
                    phase=level,
                    exc=exc,
                )
                ok = False
            if not ok:
                self.state.failed = level
                log_event(
                    self._logger,
                    logging.DEBUG,
                    "bootstrap.phase.failed",
                    phase=level,
                    reached=self.state.reached,
                )
                break
            self.state.advance(level)
            log_event(self._logger, logging.DEBUG, "bootstrap.phase.done", phase=level)
        return self.state.reached

    def get_root(self) -> Optional[Path]:
        return self.context.root

    @property
    def uri(self) -> str:
        return self.context.uri or DEFAULT_URI

    def set_uri(self, uri: str) -> None:
        self.context.uri = uri

    def select_uri(
        self,
        cwd: Path,
        *,
        root: Optional[Path] = None,
        site_info: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Pick a site uri from the working directory.

        Inside ``<root>/sites/<name>/`` the uri is ``<name>``; otherwise the
        root's ``site.yml`` ``default_uri``; otherwise ``default``. ``root`` and
        ``site_info`` default to what the ROOT phase recorded.
        """
        if root is None:
            root = self.context.root
        if site_info is None:
            site_info = self.context.site_info
        if root is None:
            return DEFAULT_URI
        sites_dir = (root / "sites").resolve()
        try:
            relative = cwd.resolve().relative_to(sites_dir)
        except ValueError:
            relative = None
        if relative is not None and relative.parts:
            return relative.parts[0]
        default_uri = site_info.get("default_uri")
        if isinstance(default_uri, str) and default_uri.strip():
            return default_uri.strip()
        return DEFAULT_URI


__all__ = [
    "BootContext",
    "BootLevel",
    "BootPhase",
    "BootstrapState",
    "BootstrapTracker",
    "DEFAULT_URI",
    "PHASE_LEVELS",
]
