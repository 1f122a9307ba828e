"""Shared error hierarchy.

Every error surfaced to the user derives from :class:`DroverError` and carries a
``user_message``. Surfaces render that message and exit; they never print a
traceback for these.
"""

from __future__ import annotations

from typing import Optional


class DroverError(Exception):
    """Base error for drover."""

    recoverable = False
    severity = "error"

    def __init__(self, message: str, *, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.user_message = user_message if user_message is not None else message


class PermanentError(DroverError):
    """Non-retryable failure (missing command, bad config, bad input)."""

    recoverable = False
    severity = "error"


class TransientError(DroverError):
    """Retryable failure (network hiccup, peer temporarily unavailable)."""

    recoverable = True
    severity = "warning"


__all__ = ["DroverError", "PermanentError", "TransientError"]
