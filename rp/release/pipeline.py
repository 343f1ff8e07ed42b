"""One pipeline run for one OS family.

    pending -> test_gate -> building -> packaging -> uploading -> succeeded
                  |            |            |            |
                  +------------+------------+------------+--> failed | cancelled

Each state has one handler returning the next state or an error. The first
error fails the run; there are no retries at this layer. The building state
fans out one build per target and only advances once every target concluded.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from pathlib import Path

from rp.core.result import Err, Ok, Result
from rp.output.console import ConsoleProtocol, Style
from rp.release.build import BuildExecutor, build_all
from rp.release.config import FamilyConfig
from rp.release.errors import PipelineError
from rp.release.model import (
    BuildArtifact,
    BuiltBinary,
    PipelineRunResult,
    ReleaseTag,
    RunState,
)
from rp.release.package import package_binary
from rp.release.suite_gate import SuiteGate
from rp.release.upload import Uploader
from rp.release.version import resolve_version, verify_tag_matches

type StateHandler = Callable[[], Result[RunState, PipelineError]]
type Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class PipelineRun:
    """Runs tests, version resolution, builds, packaging and upload for a family.

    ``execute`` is meant to be called once; the result it returns is final and
    repeated calls return the same result without running anything.
    """

    def __init__(
        self,
        *,
        family: FamilyConfig,
        tool: str,
        manifest: Path,
        workdir: Path,
        out_dir: Path,
        suite_gate: SuiteGate,
        builder: BuildExecutor,
        uploader: Uploader,
        console: ConsoleProtocol,
        archive_ext: str = "tar.gz",
        build_workers: int = 4,
        pushed_tag: ReleaseTag | None = None,
        cancel_event: threading.Event | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._family = family
        self._tool = tool
        self._manifest = manifest
        self._workdir = workdir
        self._out_dir = out_dir
        self._suite_gate = suite_gate
        self._builder = builder
        self._uploader = uploader
        self._console = console
        self._archive_ext = archive_ext
        self._build_workers = build_workers
        self._pushed_tag = pushed_tag
        self._cancel = cancel_event or threading.Event()
        self._clock = clock

        self._state = RunState.PENDING
        self._history: list[RunState] = [RunState.PENDING]
        self._tag: ReleaseTag | None = pushed_tag
        self._built: list[BuiltBinary] = []
        self._artifacts: list[BuildArtifact] = []
        self._uploaded: list[str] = []
        self._result: PipelineRunResult | None = None

        self._handlers: Mapping[RunState, StateHandler] = {
            RunState.PENDING: self._start,
            RunState.TEST_GATE: self._run_test_gate,
            RunState.BUILDING: self._run_builds,
            RunState.PACKAGING: self._run_packaging,
            RunState.UPLOADING: self._run_uploads,
        }

    @property
    def family(self) -> str:
        return self._family.name

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def history(self) -> tuple[RunState, ...]:
        return tuple(self._history)

    @property
    def tag(self) -> ReleaseTag | None:
        return self._tag

    @property
    def artifacts(self) -> tuple[BuildArtifact, ...]:
        return tuple(self._artifacts)

    @property
    def uploaded(self) -> tuple[str, ...]:
        return tuple(self._uploaded)

    @property
    def result(self) -> PipelineRunResult | None:
        return self._result

    def cancel(self) -> None:
        """Request cancellation; honoured at the next state boundary."""
        self._cancel.set()

    def execute(self) -> PipelineRunResult:
        if self._result is not None:
            return self._result

        self._console.header(f"{self.family}: release run")
        while not self._state.is_terminal:
            if self._cancel.is_set():
                return self._finish(
                    RunState.CANCELLED,
                    PipelineError(kind="cancelled", message=f"run cancelled during {self._state}"),
                )

            handler = self._handlers.get(self._state)
            if handler is None:
                raise AssertionError(f"no handler for state: {self._state}")

            outcome = handler()
            if isinstance(outcome, Err):
                return self._finish(RunState.FAILED, outcome.error)
            if outcome.value is RunState.SUCCEEDED:
                return self._finish(RunState.SUCCEEDED, None)
            self._transition(outcome.value)

        raise AssertionError("terminal state reached without a result")

    # -- transitions -----------------------------------------------------

    def _transition(self, state: RunState) -> None:
        self._state = state
        self._history.append(state)
        self._console.print(f"{self.family}: {state}", Style.HEADER)

    def _finish(self, state: RunState, error: PipelineError | None) -> PipelineRunResult:
        if self._result is not None:
            raise AssertionError("pipeline run finalized twice")
        self._transition(state)

        if error is None:
            self._console.success(f"{self.family}: {self._tag} released ({len(self._uploaded)} files)")
        elif state is RunState.CANCELLED:
            self._console.warning(f"{self.family}: {error.pretty()}")
        else:
            self._console.error(f"{self.family}: {error.pretty()}")

        self._result = PipelineRunResult(
            family=self.family,
            tag=self._tag,
            conclusion=state.conclusion,
            timestamp=self._clock().isoformat(timespec="seconds"),
            error=error,
        )
        return self._result

    # -- state handlers --------------------------------------------------

    def _start(self) -> Result[RunState, PipelineError]:
        return Ok(RunState.TEST_GATE)

    def _run_test_gate(self) -> Result[RunState, PipelineError]:
        passed = self._suite_gate.run(workdir=self._workdir)
        if isinstance(passed, Err):
            return passed

        resolved = resolve_version(self._manifest)
        if isinstance(resolved, Err):
            return resolved
        if self._pushed_tag is not None:
            matches = verify_tag_matches(resolved.value, self._pushed_tag)
            if isinstance(matches, Err):
                return matches

        self._tag = resolved.value
        self._console.info(f"version {self._tag.version} (tag {self._tag.tag})")
        return Ok(RunState.BUILDING)

    def _run_builds(self) -> Result[RunState, PipelineError]:
        outcomes = build_all(
            self._builder,
            self._family.targets,
            workdir=self._workdir,
            max_workers=self._build_workers,
        )

        failed: list[PipelineError] = []
        for _target, outcome in outcomes:
            if isinstance(outcome, Err):
                failed.append(outcome.error)
            else:
                self._built.append(outcome.value)

        if failed:
            # No partial family releases: nothing built here is packaged.
            for error in failed:
                self._console.error(error.pretty())
            return Err(
                PipelineError(
                    kind="build_failed",
                    message=f"{len(failed)} of {len(outcomes)} target builds failed",
                    hint="; ".join(e.message for e in failed),
                )
            )
        return Ok(RunState.PACKAGING)

    def _run_packaging(self) -> Result[RunState, PipelineError]:
        if self._tag is None:
            raise AssertionError("packaging without a resolved tag")

        for built in self._built:
            packaged = package_binary(
                built,
                tag=self._tag,
                tool=self._tool,
                out_dir=self._out_dir,
                ext=self._archive_ext,
            )
            if isinstance(packaged, Err):
                return packaged
            artifact = packaged.value
            self._artifacts.append(artifact)
            self._console.print(f"{artifact.checksum}  {artifact.archive_name}", Style.DIM)
        return Ok(RunState.UPLOADING)

    def _run_uploads(self) -> Result[RunState, PipelineError]:
        if self._tag is None:
            raise AssertionError("uploading without a resolved tag")

        for artifact in self._artifacts:
            for path in (artifact.archive_path, artifact.checksum_path):
                sent = self._uploader.upload(self._tag, path)
                if isinstance(sent, Err):
                    return sent
                self._uploaded.append(path.name)
        return Ok(RunState.SUCCEEDED)
