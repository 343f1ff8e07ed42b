"""Gate commands - record run conclusions, dispatch downstream, show state."""

from __future__ import annotations

from datetime import UTC, datetime

import typer

from rp.cli.commands._helpers import build_gate, gate_store, unwrap_or_exit
from rp.cli.context import CLIContext, build_context
from rp.core.errors import ErrorCode
from rp.output.console import Style
from rp.release.events import normalize_conclusion
from rp.release.gate import GateDecision
from rp.release.model import PipelineRunResult
from rp.release.version import parse_tag_ref


def report_decision(ctx: CLIContext, decision: GateDecision) -> None:
    if decision.fired:
        return
    if decision.missing:
        ctx.console.print(f"missing: {', '.join(decision.missing)}", Style.DIM)


def notify_result(ctx: CLIContext, result: PipelineRunResult, *, dry_run: bool) -> GateDecision:
    if ctx.config.family(result.family) is None:
        ctx.console.error(f"unknown family: {result.family}")
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    gate = build_gate(ctx, dry_run=dry_run)
    decision = unwrap_or_exit(gate.notify(result), ctx)
    report_decision(ctx, decision)
    return decision


def notify(
    family: str = typer.Option(..., "--family", help="OS family whose run concluded"),
    conclusion: str = typer.Option(
        ..., "--conclusion", help="Run conclusion (success, failure, cancelled, ...)"
    ),
    tag: str = typer.Option(..., "--tag", help="Release tag of the cycle (vMAJOR.MINOR.PATCH)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the dispatch instead of sending it"),
) -> None:
    """Record a concluded run; dispatch downstream once every family succeeded."""
    ctx = build_context()
    release = parse_tag_ref(tag)
    if release is None:
        ctx.console.error(f"not a release tag: {tag}")
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    notify_result(
        ctx,
        PipelineRunResult(
            family=family,
            tag=release,
            conclusion=normalize_conclusion(conclusion),
            timestamp=datetime.now(UTC).isoformat(timespec="seconds"),
        ),
        dry_run=dry_run,
    )


def dispatch_now(ctx: CLIContext, cycle: str | None, *, dry_run: bool) -> None:
    gate = build_gate(ctx, dry_run=dry_run)
    unwrap_or_exit(gate.dispatch_manual(cycle), ctx)


def dispatch(
    tag: str | None = typer.Option(
        None, "--tag", help="Mark this release cycle as dispatched", show_default=False
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the dispatch instead of sending it"),
) -> None:
    """Dispatch to the downstream repository now, bypassing the gate."""
    ctx = build_context()
    cycle: str | None = None
    if tag is not None:
        release = parse_tag_ref(tag)
        if release is None:
            ctx.console.error(f"not a release tag: {tag}")
            raise typer.Exit(code=int(ErrorCode.USER_ERROR))
        cycle = release.tag
    dispatch_now(ctx, cycle, dry_run=dry_run)


def status() -> None:
    """Show recorded conclusions per release cycle."""
    ctx = build_context()
    required = ctx.config.gate.required
    records = unwrap_or_exit(gate_store(ctx).cycles(), ctx)

    if not records:
        ctx.console.print("no release cycles recorded", Style.DIM)
        return

    ctx.console.header(f"required: {', '.join(sorted(required))}")
    for cycle, record in sorted(records.items()):
        seen = ", ".join(f"{f}={c}" for f, c in sorted(record.conclusions.items())) or "-"
        if record.dispatched:
            how = "manual" if record.manual else "gate"
            when = f", {record.dispatched_at}" if record.dispatched_at else ""
            ctx.console.success(f"{cycle}: dispatched ({how}{when}) [{seen}]")
            if record.dispatch_error:
                ctx.console.warning(f"{cycle}: last dispatch failed: {record.dispatch_error}")
        elif record.failed & required:
            ctx.console.error(f"{cycle}: blocked by {', '.join(sorted(record.failed & required))} [{seen}]")
        else:
            missing = ", ".join(record.missing(required))
            ctx.console.info(f"{cycle}: waiting for {missing} [{seen}]")
