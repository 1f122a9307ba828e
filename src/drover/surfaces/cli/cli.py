import logging

import typer

from .commands.dispatch import register_dispatch_command
from .commands.utils import raise_exit as _raise_exit

logger = logging.getLogger("drover.cli")

app = typer.Typer(add_completion=False)

register_dispatch_command(app, raise_exit=_raise_exit)


def main() -> None:
    """Entrypoint for CLI execution."""
    app()
