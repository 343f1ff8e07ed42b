from __future__ import annotations

import json
from pathlib import Path

import pytest

from rp.core.result import Err, Ok, Result
from rp.output.console import MockConsole
from rp.platform.process import ProcessError
from rp.release import gate_github as gate_github_mod
from rp.release import gh as gh_mod
from rp.release.config import DownstreamConfig, default_families
from rp.release.gate import DispatchGate
from rp.release.gate_github import GhRunGateStore
from rp.release.model import Conclusion, PipelineRunResult, ReleaseTag

from ._fakes import FakeDispatcher, fixed_clock

REPO = "alanvardy/tod"
V231 = ReleaseTag(version="2.3.1", tag="v2.3.1")
LINUX_WORKFLOW = "Linux Build & Release"
MACOS_WORKFLOW = "macOS Build & Release"


class FakeGitHub:
    """Actions run history and git refs of one repository."""

    def __init__(self) -> None:
        self.runs: dict[tuple[str, str], list[dict[str, object]]] = {}
        self.refs: dict[str, str] = {}
        self.releases: list[str] = []
        self.race_ref_on_create = False
        self.calls: list[list[str]] = []

    def conclude(self, workflow: str, tag: str, conclusion: str) -> None:
        runs = self.runs.setdefault((workflow, tag), [])
        runs.insert(0, {"databaseId": 100 + len(runs), "status": "completed", "conclusion": conclusion})

    def start(self, workflow: str, tag: str) -> None:
        runs = self.runs.setdefault((workflow, tag), [])
        runs.insert(0, {"databaseId": 100 + len(runs), "status": "in_progress", "conclusion": ""})

    def _arg(self, cmd: list[str], flag: str) -> str:
        return cmd[cmd.index(flag) + 1]

    def run(
        self, cmd: list[str], *, cwd: Path, env=None, timeout: float | None = None
    ) -> Result[str, ProcessError]:
        del cwd, env, timeout
        self.calls.append(cmd)
        if cmd[:3] == ["gh", "run", "list"]:
            key = (self._arg(cmd, "--workflow"), self._arg(cmd, "--branch"))
            return Ok(json.dumps(self.runs.get(key, [])))
        if cmd[:3] == ["gh", "release", "list"]:
            return Ok(json.dumps([{"tagName": t} for t in self.releases]))
        if cmd[:2] == ["gh", "api"] and "--method" not in cmd:
            path = cmd[2]
            if "/git/matching-refs/" in path:
                prefix = "refs/" + path.split("/git/matching-refs/", 1)[1]
                return Ok(json.dumps([{"ref": r} for r in sorted(self.refs) if r.startswith(prefix)]))
            if "/commits/" in path:
                return Ok("0123abcd\n")
        if cmd[:4] == ["gh", "api", "--method", "POST"] and cmd[4] == f"repos/{REPO}/git/refs":
            ref = self._arg(cmd, "-f").removeprefix("ref=")
            if self.race_ref_on_create:
                self.refs[ref] = "0123abcd"
            if ref in self.refs:
                return Err(
                    ProcessError(
                        command=tuple(cmd),
                        returncode=1,
                        stdout="",
                        stderr="gh: Reference already exists (HTTP 422)",
                    )
                )
            self.refs[ref] = cmd[-1].removeprefix("sha=")
            return Ok("{}")
        raise AssertionError(f"unexpected command: {cmd}")


@pytest.fixture
def github(monkeypatch: pytest.MonkeyPatch) -> FakeGitHub:
    fake = FakeGitHub()
    monkeypatch.setattr(gh_mod, "run_process", fake.run)
    monkeypatch.setattr(gate_github_mod, "run_process", fake.run)
    return fake


def _store(tmp_path: Path) -> GhRunGateStore:
    return GhRunGateStore(repo=REPO, families=default_families(), workspace_root=tmp_path)


def _job(tmp_path: Path, dispatcher: FakeDispatcher) -> DispatchGate:
    """A notifier as one workflow_run job builds it: fresh store, fresh gate."""
    return DispatchGate(
        required=frozenset({"linux", "macos"}),
        downstream=DownstreamConfig(),
        store=_store(tmp_path),
        dispatcher=dispatcher,
        console=MockConsole(),
        clock=fixed_clock,
    )


def _result(family: str, conclusion: Conclusion) -> PipelineRunResult:
    return PipelineRunResult(
        family=family, tag=V231, conclusion=conclusion, timestamp="2024-05-01T12:00:00+00:00"
    )


def _kind(result: object) -> str:
    assert isinstance(result, Ok)
    return result.value.kind


def test_separate_jobs_fire_once_both_families_succeeded(
    github: FakeGitHub, tmp_path: Path
) -> None:
    dispatcher = FakeDispatcher()

    github.conclude(LINUX_WORKFLOW, "v2.3.1", "success")
    github.start(MACOS_WORKFLOW, "v2.3.1")
    assert _kind(_job(tmp_path, dispatcher).notify(_result("linux", "success"))) == "recorded"
    assert dispatcher.sent == []

    github.runs[(MACOS_WORKFLOW, "v2.3.1")][0].update(status="completed", conclusion="success")
    assert _kind(_job(tmp_path, dispatcher).notify(_result("macos", "success"))) == "dispatched"
    assert len(dispatcher.sent) == 1
    assert github.refs == {"refs/release-gate/v2.3.1": "0123abcd"}

    # A re-delivered event finds the marker and does not dispatch again.
    assert _kind(_job(tmp_path, dispatcher).notify(_result("macos", "success"))) == "already_dispatched"
    assert len(dispatcher.sent) == 1


def test_lost_claim_does_not_dispatch(github: FakeGitHub, tmp_path: Path) -> None:
    dispatcher = FakeDispatcher()
    github.conclude(LINUX_WORKFLOW, "v2.3.1", "success")
    github.conclude(MACOS_WORKFLOW, "v2.3.1", "success")
    # The other job creates the marker between our read and our create.
    github.race_ref_on_create = True

    assert _kind(_job(tmp_path, dispatcher).notify(_result("linux", "success"))) == "already_dispatched"
    assert dispatcher.sent == []


def test_failed_run_blocks_even_after_a_later_success(github: FakeGitHub, tmp_path: Path) -> None:
    dispatcher = FakeDispatcher()
    github.conclude(LINUX_WORKFLOW, "v2.3.1", "failure")
    github.conclude(LINUX_WORKFLOW, "v2.3.1", "success")
    github.conclude(MACOS_WORKFLOW, "v2.3.1", "success")

    assert _kind(_job(tmp_path, dispatcher).notify(_result("macos", "success"))) == "blocked"
    assert dispatcher.sent == []
    assert github.refs == {}


def test_cancelled_run_does_not_block(github: FakeGitHub, tmp_path: Path) -> None:
    dispatcher = FakeDispatcher()
    github.conclude(LINUX_WORKFLOW, "v2.3.1", "cancelled")
    github.conclude(LINUX_WORKFLOW, "v2.3.1", "success")
    github.conclude(MACOS_WORKFLOW, "v2.3.1", "success")

    assert _kind(_job(tmp_path, dispatcher).notify(_result("macos", "success"))) == "dispatched"


def test_marker_match_is_exact(github: FakeGitHub, tmp_path: Path) -> None:
    github.refs["refs/release-gate/v2.3.10"] = "ffff"
    loaded = _store(tmp_path).load("v2.3.1")
    assert isinstance(loaded, Ok)
    assert not loaded.value.dispatched


def test_manual_dispatch_claims_the_marker(github: FakeGitHub, tmp_path: Path) -> None:
    dispatcher = FakeDispatcher()
    github.conclude(LINUX_WORKFLOW, "v2.3.1", "failure")

    assert _kind(_job(tmp_path, dispatcher).dispatch_manual("v2.3.1")) == "dispatched"
    assert "refs/release-gate/v2.3.1" in github.refs
    assert len(dispatcher.sent) == 1


def test_cycles_reads_recent_releases(github: FakeGitHub, tmp_path: Path) -> None:
    github.releases = ["v2.3.1", "nightly"]
    github.conclude(LINUX_WORKFLOW, "v2.3.1", "success")

    records = _store(tmp_path).cycles()
    assert isinstance(records, Ok)
    assert list(records.value) == ["v2.3.1"]
    assert records.value["v2.3.1"].conclusions == {"linux": "success"}
    assert records.value["v2.3.1"].missing({"linux", "macos"}) == ("macos",)


def test_run_list_failure_is_an_error(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    def fake_run(cmd: list[str], *, cwd: Path, env=None, timeout: float | None = None):
        del cwd, env, timeout
        return Err(ProcessError(command=tuple(cmd), returncode=1, stdout="", stderr="HTTP 403: Forbidden"))

    monkeypatch.setattr(gh_mod, "run_process", fake_run)
    loaded = _store(tmp_path).load("v2.3.1")
    assert isinstance(loaded, Err)
    assert loaded.error.kind == "permission_denied"
