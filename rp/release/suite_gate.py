"""Test-suite gate run before anything is built.

A failing suite is a hard precondition failure for the run: there is no retry
here and nothing downstream of the gate executes.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

from rp.core.result import Err, Ok, Result
from rp.output.console import ConsoleProtocol, Style
from rp.platform.process import run_silent
from rp.release.config import TEST_COMMAND
from rp.release.errors import PipelineError
from rp.release.timeouts import TEST_TIMEOUT_SECONDS


class SuiteGate(Protocol):
    def run(self, *, workdir: Path) -> Result[None, PipelineError]: ...


class CargoSuiteGate:
    """Runs ``cargo nextest run --all-features`` against the checkout."""

    def __init__(
        self,
        *,
        console: ConsoleProtocol,
        command: tuple[str, ...] = TEST_COMMAND,
        env: Mapping[str, str] | None = None,
        timeout: float = TEST_TIMEOUT_SECONDS,
    ) -> None:
        self._console = console
        self._command = command
        self._env = env
        self._timeout = timeout

    def run(self, *, workdir: Path) -> Result[None, PipelineError]:
        cmd = list(self._command)
        self._console.print(" ".join(cmd), Style.DIM)
        result = run_silent(cmd, cwd=workdir, env=self._env, timeout=self._timeout)
        if isinstance(result, Err):
            e = result.error
            return Err(
                PipelineError(
                    kind="tests_failed",
                    message=f"test suite failed (exit {e.returncode})",
                    hint=e.stderr.strip() or None,
                )
            )
        return Ok(None)
