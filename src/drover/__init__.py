"""Command-line driver for staged, bootstrapped sites."""

import importlib.metadata

try:
    __version__ = importlib.metadata.version("drover")
except importlib.metadata.PackageNotFoundError:
    __version__ = "unknown"
