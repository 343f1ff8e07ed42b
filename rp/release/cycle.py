"""Local release cycle: every family's run in parallel, gate fed on completion.

In CI each family runs as its own workflow and the gate hears about them
through ``workflow_run`` events. This reproduces the same shape in one
process: runs share nothing and the gate sees results in completion order.
"""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

from rp.core.result import Err
from rp.release.errors import PipelineError
from rp.release.gate import DispatchGate, GateDecision
from rp.release.model import PipelineRunResult
from rp.release.pipeline import PipelineRun


@dataclass(frozen=True, slots=True)
class CycleReport:
    results: tuple[PipelineRunResult, ...]  # completion order
    decisions: tuple[GateDecision, ...]
    errors: tuple[PipelineError, ...]

    @property
    def dispatched(self) -> bool:
        return any(d.fired for d in self.decisions)

    @property
    def succeeded(self) -> bool:
        return all(r.conclusion == "success" for r in self.results) and not self.errors


def run_release_cycle(runs: Sequence[PipelineRun], gate: DispatchGate) -> CycleReport:
    results: list[PipelineRunResult] = []
    decisions: list[GateDecision] = []
    errors: list[PipelineError] = []

    with ThreadPoolExecutor(max_workers=max(1, len(runs)), thread_name_prefix="rp-run") as pool:
        futures = [pool.submit(run.execute) for run in runs]
        for future in as_completed(futures):
            result = future.result()
            results.append(result)
            decision = gate.notify(result)
            if isinstance(decision, Err):
                errors.append(decision.error)
            else:
                decisions.append(decision.value)

    return CycleReport(results=tuple(results), decisions=tuple(decisions), errors=tuple(errors))
