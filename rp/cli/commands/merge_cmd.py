"""Automerge command - approve and merge dependency-bot updates."""

from __future__ import annotations

import typer

from rp.cli.commands._helpers import credential_for, unwrap_or_exit
from rp.cli.context import CLIContext, build_context
from rp.core.errors import ErrorCode
from rp.output.console import Style
from rp.release.automerge import evaluate, merge_change_request
from rp.release.events import bump_from_title, normalize_conclusion
from rp.release.model import BUMP_ORDER, BumpClass, ChangeRequestFacts, Conclusion, MergeDecision


def automerge_change_request(
    ctx: CLIContext,
    *,
    number: int,
    actor: str,
    bump: BumpClass | None,
    ci_conclusion: Conclusion,
    dry_run: bool,
) -> MergeDecision | None:
    """Evaluate the merge policy and merge on approval.

    A change request whose bump cannot be classified is declined. Declining
    is a normal outcome, not an error.
    """
    if bump is None:
        ctx.console.print(f"#{number}: update size unknown, not auto-merging", Style.DIM)
        return None

    decision = evaluate(
        ChangeRequestFacts(actor=actor, bump=bump, ci_conclusion=ci_conclusion),
        ctx.config.automerge,
    )
    if not decision.approved:
        ctx.console.info(f"#{number}: not auto-merging ({'; '.join(decision.reasons)})")
        return decision

    credential = credential_for(ctx, "merge", dry_run=dry_run)
    unwrap_or_exit(
        merge_change_request(
            number=number,
            repo=ctx.config.repository,
            credential=credential,
            workspace_root=ctx.root,
            console=ctx.console,
            dry_run=dry_run,
        ),
        ctx,
    )
    ctx.console.success(f"#{number}: {decision.bump} update from {actor} merged")
    return decision


def automerge(
    number: int = typer.Option(..., "--number", help="Change request number"),
    actor: str = typer.Option(..., "--actor", help="Login of the change request author"),
    bump: str | None = typer.Option(
        None, "--bump", help="Update size: patch, minor or major", show_default=False
    ),
    title: str | None = typer.Option(
        None,
        "--title",
        help="Change request title; the bump is derived from 'from X to Y'",
        show_default=False,
    ),
    ci_conclusion: str = typer.Option(
        "success", "--ci-conclusion", help="Conclusion of the required CI checks"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the merge instead of running it"),
) -> None:
    """Merge a dependency update when the auto-merge policy approves it."""
    ctx = build_context()

    bump_class: BumpClass | None = None
    if bump is not None:
        if bump not in BUMP_ORDER:
            ctx.console.error(f"invalid --bump: {bump}")
            ctx.console.print(f"Expected one of: {', '.join(BUMP_ORDER)}", Style.DIM)
            raise typer.Exit(code=int(ErrorCode.USER_ERROR))
        bump_class = bump  # type: ignore[assignment]
    elif title is not None:
        bump_class = bump_from_title(title)

    automerge_change_request(
        ctx,
        number=number,
        actor=actor,
        bump=bump_class,
        ci_conclusion=normalize_conclusion(ci_conclusion),
        dry_run=dry_run,
    )
