from __future__ import annotations

import logging
from typing import NoReturn, Optional

import typer

logger = logging.getLogger("drover.cli")


def get_drover_version() -> str:
    import importlib.metadata

    try:
        return importlib.metadata.version("drover")
    except Exception:
        return "unknown"


def raise_exit(message: str, *, cause: Optional[BaseException] = None) -> NoReturn:
    typer.echo(message, err=True)
    if cause is not None:
        raise typer.Exit(code=1) from cause
    raise typer.Exit(code=1)


def echo_writer(text: str, err: bool = False) -> None:
    typer.echo(text, nl=False, err=err)
