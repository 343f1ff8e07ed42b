"""Auto-merge policy for dependency-update change requests.

A pure predicate: approve iff the actor is the dependency bot, the semver bump
is no wider than the configured target, and CI concluded success.
"""

from __future__ import annotations

from pathlib import Path

from rp.core.result import Err, Ok, Result
from rp.output.console import ConsoleProtocol, Style
from rp.platform.process import run as run_process
from rp.release.config import AutoMergeConfig
from rp.release.credentials import Credential
from rp.release.errors import PipelineError
from rp.release.gh import classify_gh_failure
from rp.release.model import BUMP_ORDER, BumpClass, ChangeRequestFacts, MergeDecision
from rp.release.timeouts import GH_TIMEOUT_SECONDS
from rp.release.version import parse_version


def bump_within(bump: BumpClass, target: BumpClass) -> bool:
    return BUMP_ORDER.index(bump) <= BUMP_ORDER.index(target)


def evaluate(facts: ChangeRequestFacts, config: AutoMergeConfig) -> MergeDecision:
    actor_is_bot = facts.actor == config.bot

    reasons: list[str] = []
    if not actor_is_bot:
        reasons.append(f"actor {facts.actor} is not {config.bot}")
    if not bump_within(facts.bump, config.target):
        reasons.append(f"{facts.bump} update exceeds {config.target}")
    if facts.ci_conclusion != "success":
        reasons.append(f"CI concluded {facts.ci_conclusion}")

    return MergeDecision(
        actor_is_bot=actor_is_bot,
        bump=facts.bump,
        ci_conclusion=facts.ci_conclusion,
        approved=not reasons,
        reasons=tuple(reasons),
    )


def classify_bump(old: str, new: str) -> BumpClass | None:
    """Semver class of a dependency update, from its old and new versions.

    A leading ``v`` is accepted. Returns None when either side is not
    MAJOR.MINOR.PATCH, in which case the update is not auto-mergeable.
    """
    before = parse_version(old.strip().removeprefix("v"))
    after = parse_version(new.strip().removeprefix("v"))
    if before is None or after is None:
        return None
    if after.major != before.major:
        return "major"
    if after.minor != before.minor:
        return "minor"
    return "patch"


def merge_change_request(
    *,
    number: int,
    repo: str,
    credential: Credential | None,
    workspace_root: Path,
    console: ConsoleProtocol,
    dry_run: bool = False,
) -> Result[None, PipelineError]:
    cmd = ["gh", "pr", "merge", str(number), "--repo", repo, "--merge", "--auto"]
    console.print(" ".join(cmd), Style.DIM)
    if dry_run:
        return Ok(None)
    if credential is None:
        return Err(PipelineError(kind="credential_missing", message="merge credential missing"))
    result = run_process(
        cmd,
        cwd=workspace_root,
        env=credential.child_env(),
        timeout=GH_TIMEOUT_SECONDS,
    )
    if isinstance(result, Err):
        e = result.error
        return Err(
            PipelineError(
                kind=classify_gh_failure(e, default="merge_failed"),
                message=f"merge of #{number} failed",
                hint=e.stderr.strip() or None,
            )
        )
    return Ok(None)
