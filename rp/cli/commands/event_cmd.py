"""handle-event command - route one GitHub Actions trigger to its handler."""

from __future__ import annotations

from pathlib import Path

import typer

from rp.cli.commands._helpers import unwrap_or_exit
from rp.cli.commands.gate_cmd import dispatch_now, notify_result
from rp.cli.commands.merge_cmd import automerge_change_request
from rp.cli.commands.run_cmd import exit_for_results, run_families
from rp.cli.context import CLIContext, build_context
from rp.core.errors import ErrorCode
from rp.output.console import Style
from rp.release.events import (
    ChangeRequest,
    InboundEvent,
    ManualDispatch,
    ManualRun,
    RunConcluded,
    TagPushed,
    load_event_payload,
    normalize_conclusion,
    parse_github_event,
)


def route_event(
    ctx: CLIContext,
    event: InboundEvent,
    *,
    family: str | None,
    out: Path,
    build_root: Path,
    ci_conclusion: str,
    dry_run: bool,
) -> None:
    match event:
        case TagPushed(tag=tag):
            results = run_families(
                ctx,
                families=[family] if family else [],
                tag=tag,
                out=out,
                build_root=build_root,
                local_release=None,
                notify=False,
                dry_run_dispatch=dry_run,
            )
            exit_for_results(results)
        case ManualRun(family=requested, tag=tag):
            chosen = requested or family
            results = run_families(
                ctx,
                families=[chosen] if chosen else [],
                tag=tag,
                out=out,
                build_root=build_root,
                local_release=None,
                notify=False,
                dry_run_dispatch=dry_run,
            )
            exit_for_results(results)
        case RunConcluded(result=result):
            notify_result(ctx, result, dry_run=dry_run)
        case ManualDispatch(cycle=cycle):
            dispatch_now(ctx, cycle, dry_run=dry_run)
        case ChangeRequest(number=number, actor=actor, bump=bump):
            automerge_change_request(
                ctx,
                number=number,
                actor=actor,
                bump=bump,
                ci_conclusion=normalize_conclusion(ci_conclusion),
                dry_run=dry_run,
            )


def handle_event(
    event_name: str = typer.Option(
        ..., "--event-name", envvar="GITHUB_EVENT_NAME", help="GitHub event name"
    ),
    event_path: Path = typer.Option(
        ..., "--event-path", envvar="GITHUB_EVENT_PATH", help="Path to the event JSON payload"
    ),
    family: str | None = typer.Option(
        None,
        "--family",
        help="OS family this job releases (tag pushes and manual runs)",
        show_default=False,
    ),
    out: Path = typer.Option(Path("dist"), "--out", help="Archive output directory"),
    build_root: Path = typer.Option(
        Path("target/rp"), "--build-root", help="Per-target cargo target directories"
    ),
    ci_conclusion: str = typer.Option(
        "success", "--ci-conclusion", help="CI conclusion for change request events"
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Print dispatches and merges instead of running them"
    ),
) -> None:
    """Handle the GitHub Actions event that started this job."""
    ctx = build_context()
    payload = unwrap_or_exit(load_event_payload(event_path), ctx)
    event = unwrap_or_exit(parse_github_event(event_name, payload, ctx.config), ctx)

    if event is None:
        ctx.console.print(f"{event_name}: nothing to do", Style.DIM)
        raise typer.Exit(code=int(ErrorCode.OK))

    ctx.console.header(f"{event_name}: {type(event).__name__}")
    route_event(
        ctx,
        event,
        family=family,
        out=out,
        build_root=build_root,
        ci_conclusion=ci_conclusion,
        dry_run=dry_run,
    )
