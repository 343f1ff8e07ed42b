"""Shared helpers for CLI commands."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, NoReturn, TypeVar

import typer

from rp.core.result import Err, Ok, Result
from rp.output.errors import pipeline_error_exit_code, print_pipeline_error
from rp.release.credentials import Credential, CredentialScope, load_credential
from rp.release.errors import PipelineError
from rp.release.gate import DispatchGate, GateStore, GhRepositoryDispatcher, JsonGateStore
from rp.release.gate_github import GhRunGateStore

if TYPE_CHECKING:
    from rp.cli.context import CLIContext


T = TypeVar("T")

ACTIONS_ENV = "GITHUB_ACTIONS"


def exit_with_error(error: PipelineError, ctx: CLIContext) -> NoReturn:
    print_pipeline_error(error, ctx.console)
    raise typer.Exit(code=pipeline_error_exit_code(error))


def unwrap_or_exit[T](result: Result[T, PipelineError], ctx: CLIContext) -> T:
    """Return the Ok value, or print the error and exit with its code."""
    if isinstance(result, Err):
        exit_with_error(result.error, ctx)
    return result.value


def _load(ctx: CLIContext, scope: CredentialScope) -> Result[Credential, PipelineError]:
    creds = ctx.config.credentials
    env_var = {"upload": creds.upload, "dispatch": creds.dispatch, "merge": creds.merge}[scope]
    return load_credential(scope=scope, env_var=env_var)


def credential_for(
    ctx: CLIContext, scope: CredentialScope, *, dry_run: bool = False
) -> Credential | None:
    """Load a credential; a dry run tolerates its absence."""
    loaded = _load(ctx, scope)
    if isinstance(loaded, Ok):
        return loaded.value
    if dry_run:
        return None
    exit_with_error(loaded.error, ctx)


def gate_store(ctx: CLIContext) -> GateStore:
    """The configured gate store; ``auto`` means GitHub-backed inside Actions."""
    kind = ctx.config.gate.store
    if kind == "auto":
        kind = "github" if os.environ.get(ACTIONS_ENV) == "true" else "file"
    if kind == "file":
        return JsonGateStore(ctx.gate_state)

    loaded = _load(ctx, "upload")
    return GhRunGateStore(
        repo=ctx.config.repository,
        families=tuple(f for f in ctx.config.families if f.name in ctx.config.gate.required),
        workspace_root=ctx.root,
        env=loaded.value.child_env() if isinstance(loaded, Ok) else None,
        namespace=ctx.config.gate.marker_namespace,
    )


def build_gate(ctx: CLIContext, *, dry_run: bool, store: GateStore | None = None) -> DispatchGate:
    """Gate over ``store``, or the configured store when none is given.

    The dispatch credential is only needed once the gate fires, so its absence
    is reported by the dispatcher rather than up front.
    """
    loaded = _load(ctx, "dispatch")
    dispatcher = GhRepositoryDispatcher(
        credential=loaded.value if isinstance(loaded, Ok) else None,
        workspace_root=ctx.root,
        console=ctx.console,
        dry_run=dry_run,
    )
    return DispatchGate(
        required=ctx.config.gate.required,
        downstream=ctx.config.downstream,
        store=store if store is not None else gate_store(ctx),
        dispatcher=dispatcher,
        console=ctx.console,
    )
