from __future__ import annotations

import os
from pathlib import Path

import typer

from rp import __version__
from rp.cli.commands.event_cmd import handle_event
from rp.cli.commands.gate_cmd import dispatch, notify, status
from rp.cli.commands.merge_cmd import automerge
from rp.cli.commands.run_cmd import run
from rp.cli.commands.version_cmd import version
from rp.cli.context import CONFIG_ENV, ROOT_ENV
from rp.core.errors import ErrorCode


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

gate_app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="Downstream dispatch gate",
)


# Commands
app.command()(run)
app.command()(version)
app.command()(automerge)
app.command("handle-event")(handle_event)

# Sub-apps
gate_app.command()(notify)
gate_app.command()(dispatch)
gate_app.command()(status)
app.add_typer(gate_app, name="gate")


def _show_version(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit(code=0)


@app.callback()
def _main(  # pyright: ignore[reportUnusedFunction]
    show_version: bool = typer.Option(
        False,
        "--version",
        callback=_show_version,
        is_eager=True,
        help="Show version and exit.",
    ),
    root: Path | None = typer.Option(
        None,
        "--root",
        help="Project root holding the Cargo manifest (default: current directory)",
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        help="Release config file (default: <root>/release.toml when present)",
    ),
) -> None:
    del show_version

    if root is not None:
        try:
            resolved = root.expanduser().resolve()
        except OSError as e:
            typer.echo(f"error: invalid --root: {e}", err=True)
            raise typer.Exit(code=int(ErrorCode.USER_ERROR))

        if not resolved.is_dir():
            typer.echo(f"error: --root '{resolved}' is not a directory", err=True)
            raise typer.Exit(code=int(ErrorCode.ENV_ERROR))

        os.environ[ROOT_ENV] = str(resolved)

    if config is not None:
        os.environ[CONFIG_ENV] = str(config.expanduser())


def main() -> None:
    app()
