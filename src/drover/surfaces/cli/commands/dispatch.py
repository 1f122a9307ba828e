from pathlib import Path
from typing import Callable, List, NoReturn, Optional

import typer

from ....core.commands.descriptor import parse_invocation_args
from ....core.exceptions import DroverError
from ....core.logging_utils import configure_logging, verbosity_to_level
from ....core.runtime import Runtime, RuntimeOptions
from .utils import echo_writer, get_drover_version

DEFAULT_COMMAND = "list"


def _version_callback(value: bool) -> None:
    if not value:
        return
    typer.echo(f"drover {get_drover_version()}")
    raise typer.Exit(code=0)


def register_dispatch_command(
    app: typer.Typer,
    *,
    raise_exit: Callable[..., NoReturn],
    build_runtime: Callable[..., Runtime] = Runtime.build,
) -> None:
    @app.command(
        context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
        help="Run a drover command: drover [@alias] <command> [args] [--options].",
    )
    def dispatch(
        ctx: typer.Context,
        root: Optional[Path] = typer.Option(
            None, "--root", "-r", help="Site root directory"
        ),
        uri: Optional[str] = typer.Option(
            None, "--uri", "-l", help="Site to select below <root>/sites"
        ),
        debug: bool = typer.Option(False, "--debug", "-d", help="Debug logging"),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Info logging"),
        yes: bool = typer.Option(False, "--yes", "-y", help="Answer yes to prompts"),
        no: bool = typer.Option(False, "--no", help="Answer no to prompts"),
        simulate: bool = typer.Option(
            False, "--simulate", help="Print remote calls instead of running them"
        ),
        define: List[str] = typer.Option(
            [], "--define", "-D", help="Override a config value: KEY=VALUE"
        ),
        config: Optional[Path] = typer.Option(
            None, "--config", help="Extra config file, layered over project config"
        ),
        version: bool = typer.Option(
            False,
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show the version and exit.",
        ),
    ) -> None:
        configure_logging(verbosity_to_level(verbose=verbose, debug=debug))
        args, options = parse_invocation_args(list(ctx.args))
        alias = args.pop(0) if args and args[0].startswith("@") else None
        name = args.pop(0) if args else DEFAULT_COMMAND

        runtime_options = RuntimeOptions(
            cwd=Path.cwd(),
            root=root,
            uri=uri,
            alias=alias,
            yes=yes,
            no=no,
            simulate=simulate,
            debug=debug,
            verbose=verbose,
            defines=tuple(define),
            config_file=config,
        )
        try:
            runtime = build_runtime(
                runtime_options, confirm_fn=typer.confirm, writer=echo_writer
            )
            exit_code = runtime.run(name, args, options)
        except DroverError as exc:
            raise_exit(exc.user_message, cause=exc)
        if exit_code:
            raise typer.Exit(code=exit_code)
