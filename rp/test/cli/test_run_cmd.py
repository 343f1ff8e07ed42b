from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

import rp.cli.commands.run_cmd as run_cmd
from rp.cli.app import app
from rp.cli.context import CONFIG_ENV, ROOT_ENV
from rp.test.release._fakes import FakeBuilder, FakeSuiteGate

runner = CliRunner()


@pytest.fixture
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    (tmp_path / "Cargo.toml").write_text(
        '[package]\nname = "tod"\nversion = "2.3.1"\n', encoding="utf-8"
    )
    (tmp_path / "releases" / "v2.3.1").mkdir(parents=True)
    monkeypatch.setenv(ROOT_ENV, str(tmp_path))
    monkeypatch.setenv("COLUMNS", "200")
    monkeypatch.delenv(CONFIG_ENV, raising=False)
    return tmp_path


def _fake_toolchain(monkeypatch: pytest.MonkeyPatch, builder: FakeBuilder) -> None:
    def suite_gate(**kwargs: object) -> FakeSuiteGate:
        del kwargs
        return FakeSuiteGate()

    def build_executor(**kwargs: object) -> FakeBuilder:
        del kwargs
        return builder

    monkeypatch.setattr(run_cmd, "CargoSuiteGate", suite_gate)
    monkeypatch.setattr(run_cmd, "CargoBuildExecutor", build_executor)


def test_run_into_local_release(project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _fake_toolchain(monkeypatch, FakeBuilder())

    result = runner.invoke(
        app, ["run", "--family", "linux", "--tag", "v2.3.1", "--local-release", "releases"]
    )

    assert result.exit_code == 0, result.output
    assets = sorted(p.name for p in (project / "releases" / "v2.3.1").iterdir())
    assert assets == [
        "tod-2.3.1-linux-amd64.tar.gz",
        "tod-2.3.1-linux-amd64.tar.gz.sha256",
        "tod-2.3.1-linux-arm64.tar.gz",
        "tod-2.3.1-linux-arm64.tar.gz.sha256",
    ]


def test_failed_target_exits_with_build_error(
    project: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _fake_toolchain(monkeypatch, FakeBuilder(failing={"x86_64-unknown-linux-gnu"}))

    result = runner.invoke(app, ["run", "--family", "linux", "--local-release", "releases"])

    assert result.exit_code == 3
    assert list((project / "releases" / "v2.3.1").iterdir()) == []


def test_notify_runs_every_family_and_dispatches(
    project: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _fake_toolchain(monkeypatch, FakeBuilder())

    result = runner.invoke(
        app, ["run", "--local-release", "releases", "--notify", "--dry-run-dispatch"]
    )

    assert result.exit_code == 0, result.output
    assert "repos/alanvardy/homebrew-tod/dispatches" in result.output
    assert len(list((project / "releases" / "v2.3.1").iterdir())) == 8


def test_unknown_family(project: Path) -> None:
    result = runner.invoke(app, ["run", "--family", "bsd", "--local-release", "releases"])
    assert result.exit_code == 1


def test_bad_tag(project: Path) -> None:
    result = runner.invoke(app, ["run", "--tag", "latest", "--local-release", "releases"])
    assert result.exit_code == 1
