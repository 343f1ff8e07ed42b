"""Run command - one pipeline run per requested OS family."""

from __future__ import annotations

from pathlib import Path

import typer

from rp.cli.commands._helpers import build_gate, credential_for, exit_with_error, unwrap_or_exit
from rp.cli.context import CLIContext, build_context
from rp.core.errors import ErrorCode
from rp.output.console import Style
from rp.output.errors import pipeline_error_exit_code
from rp.release.build import CargoBuildExecutor
from rp.release.cycle import run_release_cycle
from rp.release.errors import PipelineError
from rp.release.gate import JsonGateStore
from rp.release.gh import ensure_gh_available
from rp.release.model import PipelineRunResult, ReleaseTag
from rp.release.pipeline import PipelineRun
from rp.release.suite_gate import CargoSuiteGate
from rp.release.upload import DirectoryReleaseStore, GhReleaseUploader, Uploader
from rp.release.version import parse_tag_ref


def _uploader(ctx: CLIContext, local_release: Path | None) -> Uploader:
    if local_release is not None:
        return DirectoryReleaseStore(ctx.root / local_release)

    unwrap_or_exit(ensure_gh_available(), ctx)
    credential = credential_for(ctx, "upload")
    assert credential is not None
    return GhReleaseUploader(
        repo=ctx.config.repository,
        credential=credential,
        workspace_root=ctx.root,
        console=ctx.console,
    )


def run_families(
    ctx: CLIContext,
    *,
    families: list[str],
    tag: ReleaseTag | None,
    out: Path,
    build_root: Path,
    local_release: Path | None,
    notify: bool,
    dry_run_dispatch: bool,
) -> list[PipelineRunResult]:
    cfg = ctx.config
    selected = []
    for name in families or list(cfg.family_names):
        family = cfg.family(name)
        if family is None:
            ctx.console.error(f"unknown family: {name}")
            ctx.console.print(f"Available: {', '.join(cfg.family_names)}", Style.DIM)
            raise typer.Exit(code=int(ErrorCode.USER_ERROR))
        selected.append(family)

    uploader = _uploader(ctx, local_release)
    runs = [
        PipelineRun(
            family=family,
            tool=cfg.tool,
            manifest=ctx.manifest,
            workdir=ctx.root,
            out_dir=ctx.root / out,
            suite_gate=CargoSuiteGate(console=ctx.console, command=cfg.test_command),
            builder=CargoBuildExecutor(
                tool=cfg.tool,
                build_root=ctx.root / build_root,
                console=ctx.console,
            ),
            uploader=uploader,
            console=ctx.console,
            archive_ext=cfg.archive_ext,
            build_workers=cfg.build_workers,
            pushed_tag=tag,
        )
        for family in selected
    ]

    if not notify:
        return [run.execute() for run in runs]

    # One process runs every family here, so the local state file is the store.
    gate = build_gate(ctx, dry_run=dry_run_dispatch, store=JsonGateStore(ctx.gate_state))
    report = run_release_cycle(runs, gate)
    for error in report.errors:
        exit_with_error(error, ctx)
    return list(report.results)


def exit_for_results(results: list[PipelineRunResult]) -> None:
    failed = [r for r in results if r.conclusion != "success"]
    if not failed:
        return
    first = failed[0].error or PipelineError(kind="build_failed", message="run failed")
    raise typer.Exit(code=pipeline_error_exit_code(first))


def run(
    family: list[str] = typer.Option(
        [],
        "--family",
        help="OS family to release (repeatable; default: every configured family)",
        show_default=False,
    ),
    tag: str | None = typer.Option(
        None,
        "--tag",
        help="Pushed release tag (vMAJOR.MINOR.PATCH); must match the manifest version",
        show_default=False,
    ),
    out: Path = typer.Option(Path("dist"), "--out", help="Archive output directory"),
    build_root: Path = typer.Option(
        Path("target/rp"), "--build-root", help="Per-target cargo target directories"
    ),
    local_release: Path | None = typer.Option(
        None,
        "--local-release",
        help="Upload into <dir>/<tag>/ instead of the GitHub release",
        show_default=False,
    ),
    notify: bool = typer.Option(
        False, "--notify", help="Feed run conclusions to the dispatch gate"
    ),
    dry_run_dispatch: bool = typer.Option(
        False, "--dry-run-dispatch", help="Print the downstream dispatch instead of sending it"
    ),
) -> None:
    """Test, build, package and upload the release for OS families."""
    ctx = build_context()

    pushed: ReleaseTag | None = None
    if tag is not None:
        pushed = parse_tag_ref(tag)
        if pushed is None:
            ctx.console.error(f"not a release tag: {tag}")
            raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    results = run_families(
        ctx,
        families=family,
        tag=pushed,
        out=out,
        build_root=build_root,
        local_release=local_release,
        notify=notify,
        dry_run_dispatch=dry_run_dispatch,
    )
    exit_for_results(results)
