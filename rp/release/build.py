"""Per-target release builds.

Each target builds in its own cargo target directory so concurrent builds never
share mutable state. ``build_all`` fans out one build per target and waits for
every one of them before reporting.
"""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Protocol

from rp.core.result import Err, Ok, Result
from rp.output.console import ConsoleProtocol, PrefixedConsole, Style
from rp.platform.process import run_silent
from rp.release.errors import PipelineError
from rp.release.model import BuiltBinary, TargetSpec
from rp.release.timeouts import BUILD_TIMEOUT_SECONDS

# Release profile used for every published binary.
RELEASE_ENV: dict[str, str] = {
    "CARGO_TERM_COLOR": "always",
    "CARGO_INCREMENTAL": "0",
    "CARGO_PROFILE_TEST_DEBUG": "0",
    "CARGO_PROFILE_RELEASE_LTO": "true",
    "CARGO_PROFILE_RELEASE_CODEGEN_UNITS": "1",
}

type BuildOutcome = tuple[TargetSpec, Result[BuiltBinary, PipelineError]]


class BuildExecutor(Protocol):
    def build(self, target: TargetSpec, *, workdir: Path) -> Result[BuiltBinary, PipelineError]: ...


def target_dir(build_root: Path, target: TargetSpec) -> Path:
    return build_root / target.triple


class CargoBuildExecutor:
    """Invokes ``cargo build --release --target <triple>`` and reads the binary."""

    def __init__(
        self,
        *,
        tool: str,
        build_root: Path,
        console: ConsoleProtocol,
        env: Mapping[str, str] | None = None,
        timeout: float = BUILD_TIMEOUT_SECONDS,
    ) -> None:
        self._tool = tool
        self._build_root = build_root
        self._console = console
        self._env = {**(os.environ if env is None else env), **RELEASE_ENV}
        self._timeout = timeout

    def command(self, target: TargetSpec) -> list[str]:
        return [
            "cargo",
            "build",
            "--release",
            "--target",
            target.triple,
            "--target-dir",
            str(target_dir(self._build_root, target)),
        ]

    def binary_path(self, target: TargetSpec) -> Path:
        return (
            target_dir(self._build_root, target)
            / target.triple
            / "release"
            / f"{self._tool}{target.exe_suffix}"
        )

    def build(self, target: TargetSpec, *, workdir: Path) -> Result[BuiltBinary, PipelineError]:
        console = PrefixedConsole(self._console, target.label)
        cmd = self.command(target)
        console.print(" ".join(cmd), Style.DIM)

        result = run_silent(cmd, cwd=workdir, env=self._env, timeout=self._timeout)
        if isinstance(result, Err):
            e = result.error
            return Err(
                PipelineError(
                    kind="build_failed",
                    message=f"build failed for {target.triple} (exit {e.returncode})",
                    hint=e.stderr.strip() or None,
                )
            )

        out = self.binary_path(target)
        try:
            binary = out.read_bytes()
        except FileNotFoundError:
            return Err(
                PipelineError(
                    kind="build_failed",
                    message=f"build output missing for {target.triple}",
                    hint=str(out),
                )
            )
        except OSError as e:
            return Err(
                PipelineError(
                    kind="build_failed",
                    message=f"cannot read build output for {target.triple}: {e}",
                    hint=str(out),
                )
            )

        console.success(f"built {out.name} ({len(binary)} bytes)")
        return Ok(BuiltBinary(target=target, binary=binary))


def build_all(
    executor: BuildExecutor,
    targets: Sequence[TargetSpec],
    *,
    workdir: Path,
    max_workers: int,
) -> list[BuildOutcome]:
    """Build every target concurrently and wait for all of them.

    Returns one outcome per target, in the order of ``targets``. A failed
    target does not cancel its siblings; the caller decides what a partial
    failure means.
    """
    if not targets:
        return []

    workers = max(1, min(max_workers, len(targets)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rp-build") as pool:
        futures = [pool.submit(executor.build, target, workdir=workdir) for target in targets]
        return [(target, future.result()) for target, future in zip(targets, futures)]
