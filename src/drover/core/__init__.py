"""Core runtime primitives."""

from .bootstrap import BootLevel, BootstrapState, BootstrapTracker
from .exceptions import DroverError, PermanentError, TransientError

__all__ = [
    "BootLevel",
    "BootstrapState",
    "BootstrapTracker",
    "DroverError",
    "PermanentError",
    "TransientError",
]
