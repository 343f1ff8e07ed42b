from __future__ import annotations

import json
import shutil
from collections.abc import Mapping
from pathlib import Path
from time import sleep

from rp.core.result import Err, Ok, Result
from rp.core.structured import as_obj_list, as_str_dict, get_str
from rp.platform.process import ProcessError
from rp.platform.process import run as run_process
from rp.release.errors import PipelineError, PipelineErrorKind
from rp.release.timeouts import (
    GH_READ_RETRY_ATTEMPTS,
    GH_READ_RETRY_DELAY_SECONDS,
    GH_TIMEOUT_SECONDS,
)

_TRANSIENT_MARKERS = (
    "timed out",
    "timeout",
    "connection reset",
    "connection refused",
    "temporarily unavailable",
    "service unavailable",
    "bad gateway",
    "gateway timeout",
    "tls handshake timeout",
    "network is unreachable",
    "http 429",
    "http 500",
    "http 502",
    "http 503",
    "http 504",
)

_NOT_FOUND_MARKERS = ("release not found", "http 404")
_PERMISSION_MARKERS = (
    "http 401",
    "http 403",
    "bad credentials",
    "resource not accessible by integration",
    "must have push access",
    "permission denied",
)


def _error_text(error: ProcessError) -> str:
    return f"{error.stderr}\n{error.stdout}".lower()


def is_transient_gh_error(error: ProcessError) -> bool:
    text = _error_text(error)
    if error.returncode == -1 and "timed out" in text:
        return True
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def classify_gh_failure(error: ProcessError, *, default: PipelineErrorKind) -> PipelineErrorKind:
    """Map a failed gh write to a pipeline error kind."""
    text = _error_text(error)
    if any(marker in text for marker in _PERMISSION_MARKERS):
        return "permission_denied"
    if any(marker in text for marker in _NOT_FOUND_MARKERS):
        return "release_missing" if default == "upload_failed" else default
    return default


def ensure_gh_available() -> Result[None, PipelineError]:
    if shutil.which("gh") is None:
        return Err(
            PipelineError(
                kind="gh_missing",
                message="gh: missing",
                hint="Install GitHub CLI: https://cli.github.com/",
            )
        )
    return Ok(None)


def run_gh_read(
    *,
    workspace_root: Path,
    cmd: list[str],
    kind: PipelineErrorKind,
    message: str,
    env: Mapping[str, str] | None = None,
    hint: str | None = None,
    timeout: float = GH_TIMEOUT_SECONDS,
    retry_attempts: int = GH_READ_RETRY_ATTEMPTS,
) -> Result[str, PipelineError]:
    """Run an idempotent gh read, retrying transient network failures."""
    attempts = max(1, retry_attempts)
    for attempt in range(attempts):
        result = run_process(cmd, cwd=workspace_root, env=env, timeout=timeout)
        if isinstance(result, Ok):
            return result

        error = result.error
        if attempt < attempts - 1 and is_transient_gh_error(error):
            sleep(GH_READ_RETRY_DELAY_SECONDS * (attempt + 1))
            continue

        return Err(
            PipelineError(
                kind=classify_gh_failure(error, default=kind),
                message=message,
                hint=error.stderr.strip() or hint,
            )
        )

    return Err(PipelineError(kind=kind, message=message, hint=hint))


def release_asset_names(
    *,
    workspace_root: Path,
    repo: str,
    tag: str,
    env: Mapping[str, str] | None = None,
) -> Result[list[str], PipelineError]:
    """Names of the assets attached to the release for ``tag``.

    Fails with ``release_missing`` when the release object does not exist.
    """
    result = run_gh_read(
        workspace_root=workspace_root,
        cmd=["gh", "release", "view", tag, "--repo", repo, "--json", "assets"],
        kind="upload_failed",
        message=f"release {tag} not readable in {repo}",
        env=env,
        hint=f"Create the release first: gh release create {tag} --repo {repo}",
    )
    if isinstance(result, Err):
        return result

    try:
        obj: object = json.loads(result.value)
    except json.JSONDecodeError as e:
        return Err(
            PipelineError(
                kind="upload_failed",
                message=f"invalid JSON from gh release view: {e}",
                hint=repo,
            )
        )

    data = as_str_dict(obj)
    assets = as_obj_list(data.get("assets")) if data is not None else None
    if assets is None:
        return Err(
            PipelineError(kind="upload_failed", message="unexpected gh release view payload")
        )

    names: list[str] = []
    for item in assets:
        d = as_str_dict(item)
        if d is None:
            continue
        name = get_str(d, "name")
        if name is not None:
            names.append(name)
    return Ok(names)
