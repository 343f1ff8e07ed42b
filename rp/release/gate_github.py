"""Gate store rebuilt from GitHub Actions run history.

In CI every family workflow concludes into its own ``workflow_run`` job on a
fresh runner, so no state file is shared between the notifications of one
release cycle. This store asks GitHub instead:

- a family's conclusion is that of its newest completed run on the tag
  (``gh run list --workflow <family workflow> --branch <tag>``);
- a family with any failed run on the tag is failed for the cycle;
- the dispatched flag is a git ref ``refs/<namespace>/<tag>``.

Creating a ref is a compare-and-set on GitHub's side (a second create is
rejected with "Reference already exists"), so concurrent notifiers agree on a
single dispatch. ``manual``, ``dispatched_at`` and ``dispatch_error`` are not
kept remotely.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from pathlib import Path

from rp.core.result import Err, Ok, Result
from rp.core.structured import as_obj_list, as_str_dict, get_str
from rp.platform.process import run as run_process
from rp.release.config import GATE_MARKER_NAMESPACE, FamilyConfig
from rp.release.errors import PipelineError
from rp.release.events import normalize_conclusion
from rp.release.gate import CycleRecord
from rp.release.gh import classify_gh_failure, run_gh_read
from rp.release.timeouts import GH_TIMEOUT_SECONDS
from rp.release.version import parse_tag_ref

__all__ = ["GhRunGateStore"]

_RUN_LIST_LIMIT = 20
_RELEASE_LIST_LIMIT = 10
_REF_EXISTS_MARKER = "reference already exists"


def _parse_list(payload: str, what: str) -> Result[list[dict[str, object]], PipelineError]:
    try:
        obj: object = json.loads(payload)
    except json.JSONDecodeError as e:
        return Err(PipelineError(kind="invalid_input", message=f"invalid JSON from {what}: {e}"))

    raw = as_obj_list(obj)
    if raw is None:
        return Err(PipelineError(kind="invalid_input", message=f"unexpected {what} payload"))

    items: list[dict[str, object]] = []
    for item in raw:
        d = as_str_dict(item)
        if d is not None:
            items.append(d)
    return Ok(items)


class GhRunGateStore:
    def __init__(
        self,
        *,
        repo: str,
        families: tuple[FamilyConfig, ...],
        workspace_root: Path,
        env: Mapping[str, str] | None = None,
        namespace: str = GATE_MARKER_NAMESPACE,
    ) -> None:
        self._repo = repo
        self._families = families
        self._workspace_root = workspace_root
        self._env = env
        self._namespace = namespace

    def marker_ref(self, cycle: str) -> str:
        return f"refs/{self._namespace}/{cycle}"

    def _read(self, cmd: list[str], message: str) -> Result[str, PipelineError]:
        return run_gh_read(
            workspace_root=self._workspace_root,
            cmd=cmd,
            kind="invalid_input",
            message=message,
            env=self._env,
        )

    def _family_runs(
        self, family: FamilyConfig, cycle: str
    ) -> Result[list[dict[str, object]], PipelineError]:
        listed = self._read(
            [
                "gh",
                "run",
                "list",
                "--repo",
                self._repo,
                "--workflow",
                family.workflow,
                "--branch",
                cycle,
                "--limit",
                str(_RUN_LIST_LIMIT),
                "--json",
                "databaseId,status,conclusion",
            ],
            f"failed to list {family.workflow} runs for {cycle}",
        )
        if isinstance(listed, Err):
            return listed
        return _parse_list(listed.value, "gh run list")

    def _dispatched(self, cycle: str) -> Result[bool, PipelineError]:
        ref = self.marker_ref(cycle)
        listed = self._read(
            ["gh", "api", f"repos/{self._repo}/git/matching-refs/{ref.removeprefix('refs/')}"],
            f"failed to read {ref} in {self._repo}",
        )
        if isinstance(listed, Err):
            return listed
        items = _parse_list(listed.value, "gh api matching-refs")
        if isinstance(items, Err):
            return items
        # matching-refs is a prefix match: v1.2.1 also matches v1.2.10.
        return Ok(any(get_str(d, "ref") == ref for d in items.value))

    def load(self, cycle: str) -> Result[CycleRecord, PipelineError]:
        record = CycleRecord()
        for family in self._families:
            runs = self._family_runs(family, cycle)
            if isinstance(runs, Err):
                return runs

            # gh lists newest first.
            completed = [
                normalize_conclusion(get_str(d, "conclusion"))
                for d in runs.value
                if get_str(d, "status") == "completed"
            ]
            if completed:
                record.conclusions[family.name] = completed[0]
            if "failure" in completed:
                record.failed.add(family.name)

        dispatched = self._dispatched(cycle)
        if isinstance(dispatched, Err):
            return dispatched
        record.dispatched = dispatched.value
        return Ok(record)

    def _claim(self, cycle: str) -> Result[bool, PipelineError]:
        """Create the dispatched marker. Ok(False) when another notifier won."""
        sha = self._read(
            ["gh", "api", f"repos/{self._repo}/commits/{cycle}", "--jq", ".sha"],
            f"failed to resolve {cycle} in {self._repo}",
        )
        if isinstance(sha, Err):
            return sha

        ref = self.marker_ref(cycle)
        created = run_process(
            [
                "gh",
                "api",
                "--method",
                "POST",
                f"repos/{self._repo}/git/refs",
                "-f",
                f"ref={ref}",
                "-f",
                f"sha={sha.value.strip()}",
            ],
            cwd=self._workspace_root,
            env=self._env,
            timeout=GH_TIMEOUT_SECONDS,
        )
        if isinstance(created, Ok):
            return Ok(True)

        e = created.error
        if _REF_EXISTS_MARKER in f"{e.stderr}\n{e.stdout}".lower():
            return Ok(False)
        return Err(
            PipelineError(
                kind=classify_gh_failure(e, default="dispatch_failed"),
                message=f"cannot create {ref} in {self._repo}",
                hint=e.stderr.strip() or "The token needs contents: write on the repository",
            )
        )

    def update[T](
        self, cycle: str, change: Callable[[CycleRecord], T]
    ) -> Result[T, PipelineError]:
        # A lost claim means the marker now exists, so the second pass sees a
        # dispatched cycle and decides accordingly.
        for _ in range(2):
            loaded = self.load(cycle)
            if isinstance(loaded, Err):
                return loaded
            record = loaded.value
            was_dispatched = record.dispatched

            out = change(record)
            if not record.dispatched or was_dispatched:
                return Ok(out)

            claimed = self._claim(cycle)
            if isinstance(claimed, Err):
                return claimed
            if claimed.value:
                return Ok(out)

        return Err(
            PipelineError(
                kind="dispatch_failed",
                message=f"{self.marker_ref(cycle)} exists but reads as missing",
                hint=f"Check the refs of {self._repo}",
            )
        )

    def cycles(self) -> Result[dict[str, CycleRecord], PipelineError]:
        """Records for the most recent releases."""
        listed = self._read(
            [
                "gh",
                "release",
                "list",
                "--repo",
                self._repo,
                "--limit",
                str(_RELEASE_LIST_LIMIT),
                "--json",
                "tagName",
            ],
            f"failed to list releases of {self._repo}",
        )
        if isinstance(listed, Err):
            return listed
        items = _parse_list(listed.value, "gh release list")
        if isinstance(items, Err):
            return items

        out: dict[str, CycleRecord] = {}
        for d in items.value:
            tag = parse_tag_ref(get_str(d, "tagName") or "")
            if tag is None:
                continue
            record = self.load(tag.tag)
            if isinstance(record, Err):
                return record
            out[tag.tag] = record.value
        return Ok(out)
