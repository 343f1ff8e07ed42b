from __future__ import annotations

import threading
from collections.abc import Mapping
from pathlib import Path

import pytest

from rp.core.result import Err, Ok, Result
from rp.output.console import MockConsole
from rp.platform.process import ProcessError
from rp.release import build as build_mod
from rp.release.build import CargoBuildExecutor, build_all
from rp.release.errors import PipelineError
from rp.release.model import BuiltBinary, TargetSpec

AMD64 = TargetSpec("linux", "x86_64-unknown-linux-gnu", "amd64", "ubuntu-latest")
ARM64 = TargetSpec("linux", "aarch64-unknown-linux-gnu", "arm64", "ubuntu-24.04-arm")


class RecordingBuilder:
    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.built: list[str] = []
        self._lock = threading.Lock()

    def build(self, target: TargetSpec, *, workdir: Path) -> Result[BuiltBinary, PipelineError]:
        del workdir
        with self._lock:
            self.built.append(target.triple)
        if target.triple in self.failing:
            return Err(PipelineError(kind="build_failed", message=f"{target.triple} broke"))
        return Ok(BuiltBinary(target=target, binary=target.arch.encode()))


def test_build_all_keeps_target_order_and_runs_every_target(tmp_path: Path) -> None:
    builder = RecordingBuilder(failing={AMD64.triple})
    outcomes = build_all(builder, [AMD64, ARM64], workdir=tmp_path, max_workers=2)

    assert [t for t, _ in outcomes] == [AMD64, ARM64]
    assert isinstance(outcomes[0][1], Err)
    assert isinstance(outcomes[1][1], Ok)
    assert sorted(builder.built) == sorted([AMD64.triple, ARM64.triple])


def test_build_all_empty(tmp_path: Path) -> None:
    assert build_all(RecordingBuilder(), [], workdir=tmp_path, max_workers=4) == []


def test_cargo_command_uses_per_target_dir(tmp_path: Path) -> None:
    executor = CargoBuildExecutor(tool="tod", build_root=tmp_path / "b", console=MockConsole())
    assert executor.command(ARM64) == [
        "cargo",
        "build",
        "--release",
        "--target",
        "aarch64-unknown-linux-gnu",
        "--target-dir",
        str(tmp_path / "b" / "aarch64-unknown-linux-gnu"),
    ]
    assert executor.binary_path(ARM64) == (
        tmp_path / "b" / "aarch64-unknown-linux-gnu" / "aarch64-unknown-linux-gnu" / "release" / "tod"
    )


def test_cargo_build_reads_binary(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    console = MockConsole()
    executor = CargoBuildExecutor(tool="tod", build_root=tmp_path / "b", console=console, env={})
    seen_env: list[Mapping[str, str] | None] = []

    def fake_run_silent(cmd: list[str], *, cwd: Path, env=None, timeout: float | None = None):
        del cmd, cwd, timeout
        seen_env.append(env)
        out = executor.binary_path(AMD64)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(b"ELF")
        return Ok(None)

    monkeypatch.setattr(build_mod, "run_silent", fake_run_silent)

    result = executor.build(AMD64, workdir=tmp_path)
    assert result == Ok(BuiltBinary(target=AMD64, binary=b"ELF"))
    assert seen_env[0] is not None
    assert seen_env[0]["CARGO_PROFILE_RELEASE_LTO"] == "true"
    assert console.find("[linux-amd64] cargo build")


def test_cargo_build_failure(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    def fake_run_silent(cmd: list[str], *, cwd: Path, env=None, timeout: float | None = None):
        del cwd, env, timeout
        return Err(ProcessError(command=tuple(cmd), returncode=101, stdout="", stderr=""))

    monkeypatch.setattr(build_mod, "run_silent", fake_run_silent)

    executor = CargoBuildExecutor(tool="tod", build_root=tmp_path, console=MockConsole(), env={})
    result = executor.build(ARM64, workdir=tmp_path)
    assert isinstance(result, Err)
    assert result.error.kind == "build_failed"
    assert "exit 101" in result.error.message


def test_cargo_build_missing_output(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    def fake_run_silent(cmd: list[str], *, cwd: Path, env=None, timeout: float | None = None):
        del cmd, cwd, env, timeout
        return Ok(None)

    monkeypatch.setattr(build_mod, "run_silent", fake_run_silent)

    executor = CargoBuildExecutor(tool="tod", build_root=tmp_path, console=MockConsole(), env={})
    result = executor.build(ARM64, workdir=tmp_path)
    assert isinstance(result, Err)
    assert "missing" in result.error.message
