from __future__ import annotations

import threading
from pathlib import Path

from rp.release.model import ReleaseTag, RunState, TargetSpec
from rp.release.upload import DirectoryReleaseStore

from ._fakes import LINUX, FakeBuilder, FakeSuiteGate, make_run, write_manifest

TAG = ReleaseTag(version="2.3.1", tag="v2.3.1")


def _store(tmp_path: Path) -> DirectoryReleaseStore:
    store = DirectoryReleaseStore(tmp_path / "releases")
    store.create_release(TAG)
    return store


def test_successful_run_uploads_archives_and_checksums(tmp_path: Path) -> None:
    write_manifest(tmp_path)
    store = _store(tmp_path)
    run = make_run(tmp_path, LINUX, store=store)

    result = run.execute()

    assert result.conclusion == "success"
    assert result.tag == TAG
    assert result.error is None
    assert result.timestamp == "2024-05-01T12:00:00+00:00"
    assert run.history == (
        RunState.PENDING,
        RunState.TEST_GATE,
        RunState.BUILDING,
        RunState.PACKAGING,
        RunState.UPLOADING,
        RunState.SUCCEEDED,
    )
    assert store.assets(TAG) == [
        "tod-2.3.1-linux-amd64.tar.gz",
        "tod-2.3.1-linux-amd64.tar.gz.sha256",
        "tod-2.3.1-linux-arm64.tar.gz",
        "tod-2.3.1-linux-arm64.tar.gz.sha256",
    ]


def test_failing_suite_blocks_everything(tmp_path: Path) -> None:
    write_manifest(tmp_path)
    store = _store(tmp_path)
    builder = FakeBuilder()
    run = make_run(tmp_path, LINUX, store=store, suite_gate=FakeSuiteGate(passes=False), builder=builder)

    result = run.execute()

    assert result.conclusion == "failure"
    assert result.error is not None
    assert result.error.kind == "tests_failed"
    assert builder.built == []
    assert store.assets(TAG) == []
    assert RunState.BUILDING not in run.history


def test_one_failed_target_fails_the_family_without_uploads(tmp_path: Path) -> None:
    write_manifest(tmp_path)
    store = _store(tmp_path)
    builder = FakeBuilder(failing={"aarch64-unknown-linux-gnu"})
    run = make_run(tmp_path, LINUX, store=store, builder=builder)

    result = run.execute()

    assert result.conclusion == "failure"
    assert result.error is not None
    assert result.error.kind == "build_failed"
    assert "1 of 2" in result.error.message
    # The sibling target still built, but nothing was packaged or uploaded.
    assert sorted(builder.built) == ["aarch64-unknown-linux-gnu", "x86_64-unknown-linux-gnu"]
    assert run.artifacts == ()
    assert store.assets(TAG) == []
    assert not (tmp_path / "dist" / "linux").exists()


def test_pushed_tag_must_match_manifest(tmp_path: Path) -> None:
    write_manifest(tmp_path, "2.3.0")
    store = _store(tmp_path)
    builder = FakeBuilder()
    run = make_run(tmp_path, LINUX, store=store, builder=builder, pushed_tag=TAG)

    result = run.execute()

    assert result.conclusion == "failure"
    assert result.error is not None
    assert result.error.kind == "version_invalid"
    assert builder.built == []


def test_invalid_manifest_leaves_result_untagged(tmp_path: Path) -> None:
    (tmp_path / "Cargo.toml").write_text('[package]\nname = "tod"\n', encoding="utf-8")
    run = make_run(tmp_path, LINUX, store=_store(tmp_path))

    result = run.execute()

    assert result.conclusion == "failure"
    assert result.tag is None
    assert result.cycle is None


def test_missing_release_fails_upload(tmp_path: Path) -> None:
    write_manifest(tmp_path)
    store = DirectoryReleaseStore(tmp_path / "releases")
    run = make_run(tmp_path, LINUX, store=store)

    result = run.execute()

    assert result.conclusion == "failure"
    assert result.error is not None
    assert result.error.kind == "release_missing"
    assert run.state is RunState.FAILED


def test_cancel_before_start(tmp_path: Path) -> None:
    write_manifest(tmp_path)
    suite = FakeSuiteGate()
    run = make_run(tmp_path, LINUX, store=_store(tmp_path), suite_gate=suite)
    run.cancel()

    result = run.execute()

    assert result.conclusion == "cancelled"
    assert result.error is not None
    assert result.error.kind == "cancelled"
    assert suite.calls == 0


def test_cancel_during_build_stops_before_packaging(tmp_path: Path) -> None:
    write_manifest(tmp_path)
    store = _store(tmp_path)
    cancel = threading.Event()

    def cancel_on_build(target: TargetSpec) -> None:
        del target
        cancel.set()

    run = make_run(
        tmp_path,
        LINUX,
        store=store,
        builder=FakeBuilder(on_build=cancel_on_build),
        cancel_event=cancel,
    )

    result = run.execute()

    assert result.conclusion == "cancelled"
    assert run.history[-1] is RunState.CANCELLED
    # Cancellation is honoured at the next boundary, before packaging runs.
    assert run.artifacts == ()
    assert not (tmp_path / "dist" / "linux").exists()
    assert store.assets(TAG) == []


def test_execute_is_final(tmp_path: Path) -> None:
    write_manifest(tmp_path)
    suite = FakeSuiteGate()
    run = make_run(tmp_path, LINUX, store=_store(tmp_path), suite_gate=suite)

    first = run.execute()
    second = run.execute()

    assert first is second
    assert suite.calls == 1


def test_rerun_overwrites_identical_assets(tmp_path: Path) -> None:
    write_manifest(tmp_path)
    store = _store(tmp_path)

    make_run(tmp_path, LINUX, store=store).execute()
    before = {n: (store.release_dir(TAG) / n).read_bytes() for n in store.assets(TAG)}
    make_run(tmp_path, LINUX, store=store).execute()
    after = {n: (store.release_dir(TAG) / n).read_bytes() for n in store.assets(TAG)}

    assert before == after
