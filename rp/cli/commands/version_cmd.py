"""Version command - print the canonical version and release tag."""

from __future__ import annotations

from pathlib import Path

import typer

from rp.cli.commands._helpers import unwrap_or_exit
from rp.cli.context import build_context
from rp.release.version import resolve_version


def version(
    github_env: Path | None = typer.Option(
        None,
        "--github-env",
        envvar="GITHUB_ENV",
        help="Append VERSION and TAG to this file (GitHub Actions env file)",
        show_default=False,
    ),
) -> None:
    """Resolve VERSION and TAG from the project manifest."""
    ctx = build_context()
    tag = unwrap_or_exit(resolve_version(ctx.manifest), ctx)

    lines = f"VERSION={tag.version}\nTAG={tag.tag}\n"
    typer.echo(lines, nl=False)
    if github_env is not None:
        with github_env.open("a", encoding="utf-8") as handle:
            handle.write(lines)
