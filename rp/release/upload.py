"""Artifact upload with clobber semantics.

An upload attaches a named file to the release object identified by a tag and
replaces any same-named asset instead of failing. That makes a whole pipeline
run safe to repeat: a retried run recomputes identical names and overwrites.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from rp.core.result import Err, Ok, Result
from rp.output.console import ConsoleProtocol, Style
from rp.platform.files import atomic_write_bytes
from rp.platform.process import run as run_process
from rp.release.credentials import Credential
from rp.release.errors import PipelineError
from rp.release.gh import classify_gh_failure, release_asset_names
from rp.release.model import ReleaseTag
from rp.release.timeouts import GH_UPLOAD_TIMEOUT_SECONDS


class Uploader(Protocol):
    def upload(self, tag: ReleaseTag, path: Path) -> Result[None, PipelineError]: ...


class GhReleaseUploader:
    """Uploads through ``gh release upload --clobber``.

    The release object must already exist (it is created by the release
    tooling that pushed the tag); it is checked once before the first upload.
    """

    def __init__(
        self,
        *,
        repo: str,
        credential: Credential,
        workspace_root: Path,
        console: ConsoleProtocol,
    ) -> None:
        self._repo = repo
        self._credential = credential
        self._workspace_root = workspace_root
        self._console = console
        self._checked: set[str] = set()

    def _ensure_release(self, tag: ReleaseTag) -> Result[None, PipelineError]:
        if tag.tag in self._checked:
            return Ok(None)
        result = release_asset_names(
            workspace_root=self._workspace_root,
            repo=self._repo,
            tag=tag.tag,
            env=self._credential.child_env(),
        )
        if isinstance(result, Err):
            return result
        self._checked.add(tag.tag)
        return Ok(None)

    def upload(self, tag: ReleaseTag, path: Path) -> Result[None, PipelineError]:
        exists = self._ensure_release(tag)
        if isinstance(exists, Err):
            return exists

        cmd = ["gh", "release", "upload", tag.tag, str(path), "--repo", self._repo, "--clobber"]
        self._console.print(" ".join(cmd), Style.DIM)
        result = run_process(
            cmd,
            cwd=self._workspace_root,
            env=self._credential.child_env(),
            timeout=GH_UPLOAD_TIMEOUT_SECONDS,
        )
        if isinstance(result, Err):
            e = result.error
            return Err(
                PipelineError(
                    kind=classify_gh_failure(e, default="upload_failed"),
                    message=f"upload of {path.name} to {tag.tag} failed",
                    hint=e.stderr.strip() or None,
                )
            )
        return Ok(None)


class DirectoryReleaseStore:
    """Release objects as directories: ``<root>/<tag>/<asset>``.

    Used for dry runs and local rehearsals. Same contract as the GitHub
    uploader: the release directory must exist, same-named assets are replaced
    atomically (last writer wins).
    """

    def __init__(self, root: Path) -> None:
        self._root = root

    def release_dir(self, tag: ReleaseTag) -> Path:
        return self._root / tag.tag

    def create_release(self, tag: ReleaseTag) -> Path:
        path = self.release_dir(tag)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def assets(self, tag: ReleaseTag) -> list[str]:
        path = self.release_dir(tag)
        if not path.is_dir():
            return []
        return sorted(p.name for p in path.iterdir() if p.is_file() and not p.name.startswith("."))

    def upload(self, tag: ReleaseTag, path: Path) -> Result[None, PipelineError]:
        release = self.release_dir(tag)
        if not release.is_dir():
            return Err(
                PipelineError(
                    kind="release_missing",
                    message=f"release {tag.tag} does not exist",
                    hint=str(release),
                )
            )
        try:
            atomic_write_bytes(release / path.name, path.read_bytes())
        except OSError as e:
            return Err(
                PipelineError(
                    kind="upload_failed",
                    message=f"upload of {path.name} to {tag.tag} failed: {e}",
                )
            )
        return Ok(None)
