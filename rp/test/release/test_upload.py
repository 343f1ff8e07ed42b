from __future__ import annotations

from pathlib import Path

import pytest

from rp.core.result import Err, Ok
from rp.output.console import MockConsole
from rp.platform.process import ProcessError
from rp.release import gh as gh_mod
from rp.release import upload as upload_mod
from rp.release.credentials import Credential
from rp.release.model import ReleaseTag
from rp.release.upload import DirectoryReleaseStore, GhReleaseUploader

TAG = ReleaseTag(version="2.3.1", tag="v2.3.1")


def _file(tmp_path: Path, name: str, content: bytes) -> Path:
    path = tmp_path / "dist" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


class TestDirectoryReleaseStore:
    def test_upload_requires_existing_release(self, tmp_path: Path) -> None:
        store = DirectoryReleaseStore(tmp_path / "releases")
        result = store.upload(TAG, _file(tmp_path, "a.tar.gz", b"a"))
        assert isinstance(result, Err)
        assert result.error.kind == "release_missing"

    def test_repeated_upload_leaves_one_asset(self, tmp_path: Path) -> None:
        store = DirectoryReleaseStore(tmp_path / "releases")
        store.create_release(TAG)

        assert store.upload(TAG, _file(tmp_path, "tod-2.3.1-linux-amd64.tar.gz", b"v1")) == Ok(None)
        assert store.upload(TAG, _file(tmp_path, "tod-2.3.1-linux-amd64.tar.gz", b"v2")) == Ok(None)

        assert store.assets(TAG) == ["tod-2.3.1-linux-amd64.tar.gz"]
        asset = store.release_dir(TAG) / "tod-2.3.1-linux-amd64.tar.gz"
        assert asset.read_bytes() == b"v2"

    def test_assets_of_unknown_release(self, tmp_path: Path) -> None:
        assert DirectoryReleaseStore(tmp_path).assets(TAG) == []


def _credential() -> Credential:
    return Credential(scope="upload", env_var="TOD_CONTENTS_READ_WRITE", token="tok")


class TestGhReleaseUploader:
    def test_checks_release_once_then_uploads_with_clobber(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        calls: list[list[str]] = []
        envs: list[dict[str, str] | None] = []

        def fake_run(cmd: list[str], *, cwd: Path, env=None, timeout: float | None = None):
            del cwd, timeout
            calls.append(cmd)
            envs.append(dict(env) if env is not None else None)
            if cmd[:3] == ["gh", "release", "view"]:
                return Ok('{"assets": []}')
            return Ok("")

        monkeypatch.setattr(gh_mod, "run_process", fake_run)
        monkeypatch.setattr(upload_mod, "run_process", fake_run)

        uploader = GhReleaseUploader(
            repo="alanvardy/tod",
            credential=_credential(),
            workspace_root=tmp_path,
            console=MockConsole(),
        )
        archive = _file(tmp_path, "tod-2.3.1-linux-amd64.tar.gz", b"x")
        assert uploader.upload(TAG, archive) == Ok(None)
        assert uploader.upload(TAG, archive) == Ok(None)

        views = [c for c in calls if c[:3] == ["gh", "release", "view"]]
        uploads = [c for c in calls if c[:3] == ["gh", "release", "upload"]]
        assert len(views) == 1
        assert len(uploads) == 2
        assert uploads[0] == [
            "gh",
            "release",
            "upload",
            "v2.3.1",
            str(archive),
            "--repo",
            "alanvardy/tod",
            "--clobber",
        ]
        assert all(e is not None and e["GH_TOKEN"] == "tok" for e in envs)
        assert all("tok" not in part for c in calls for part in c)

    def test_missing_release_is_reported(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        def fake_run(cmd: list[str], *, cwd: Path, env=None, timeout: float | None = None):
            del cmd, cwd, env, timeout
            return Err(
                ProcessError(
                    command=("gh", "release", "view"),
                    returncode=1,
                    stdout="",
                    stderr="release not found",
                )
            )

        monkeypatch.setattr(gh_mod, "run_process", fake_run)
        monkeypatch.setattr(upload_mod, "run_process", fake_run)

        uploader = GhReleaseUploader(
            repo="alanvardy/tod",
            credential=_credential(),
            workspace_root=tmp_path,
            console=MockConsole(),
        )
        result = uploader.upload(TAG, _file(tmp_path, "a.tar.gz", b"x"))
        assert isinstance(result, Err)
        assert result.error.kind == "release_missing"
