"""Downstream dispatch gate.

Each OS family's pipeline reports its conclusion independently and in any
order. The gate records conclusions per release cycle (the release tag) and
fires one repository dispatch when every required family has succeeded.

Rules, per cycle:
- a Failure from a required family is sticky: that cycle never fires on its
  own again (manual dispatch is the recovery path);
- a Cancelled run only leaves its family unsatisfied, a later Success counts;
- the record-and-check step is one ``GateStore.update`` (atomic in every
  store) and the ``dispatched`` flag is set before the dispatch call, so two
  qualifying notifications can never both fire;
- a failed dispatch call is reported, not retried; the cycle stays marked
  dispatched and needs a manual re-dispatch.

There is no staleness timeout: a family that never reports leaves the cycle
open forever. ``DispatchGate.pending`` lists what each open cycle waits for.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal, Protocol

from rp.core.result import Err, Ok, Result
from rp.core.structured import as_str_dict, get_str, get_str_list, get_table
from rp.output.console import ConsoleProtocol, Style
from rp.platform.files import atomic_write_text, exclusive_lock
from rp.platform.process import run as run_process
from rp.release.config import DownstreamConfig
from rp.release.credentials import Credential
from rp.release.errors import PipelineError
from rp.release.gh import classify_gh_failure
from rp.release.model import Conclusion, DispatchEvent, PipelineRunResult
from rp.release.timeouts import GH_TIMEOUT_SECONDS

__all__ = [
    "CycleRecord",
    "DispatchGate",
    "Dispatcher",
    "GateDecision",
    "GateStore",
    "GhRepositoryDispatcher",
    "JsonGateStore",
    "MemoryGateStore",
]

_STATE_VERSION = 1
_CONCLUSIONS: tuple[Conclusion, ...] = ("success", "failure", "cancelled")

DecisionKind = Literal["recorded", "dispatched", "already_dispatched", "blocked", "ignored"]


def _empty_conclusions() -> dict[str, Conclusion]:
    return {}


def _empty_failed() -> set[str]:
    return set()


@dataclass
class CycleRecord:
    conclusions: dict[str, Conclusion] = field(default_factory=_empty_conclusions)
    failed: set[str] = field(default_factory=_empty_failed)
    dispatched: bool = False
    dispatched_at: str | None = None
    manual: bool = False
    dispatch_error: str | None = None

    def missing(self, required: Iterable[str]) -> tuple[str, ...]:
        return tuple(sorted(f for f in required if self.conclusions.get(f) != "success"))

    def copy(self) -> CycleRecord:
        return replace(self, conclusions=dict(self.conclusions), failed=set(self.failed))

    def to_json(self) -> dict[str, object]:
        return {
            "conclusions": dict(sorted(self.conclusions.items())),
            "failed": sorted(self.failed),
            "dispatched": self.dispatched,
            "dispatched_at": self.dispatched_at,
            "manual": self.manual,
            "dispatch_error": self.dispatch_error,
        }

    @classmethod
    def from_json(cls, data: dict[str, object]) -> CycleRecord | None:
        conclusions: dict[str, Conclusion] = {}
        for family, value in (get_table(data, "conclusions") or {}).items():
            if value not in _CONCLUSIONS:
                return None
            conclusions[family] = value  # type: ignore[assignment]

        dispatched = data.get("dispatched", False)
        manual = data.get("manual", False)
        if not isinstance(dispatched, bool) or not isinstance(manual, bool):
            return None

        return cls(
            conclusions=conclusions,
            failed=set(get_str_list(data, "failed") or []),
            dispatched=dispatched,
            dispatched_at=get_str(data, "dispatched_at"),
            manual=manual,
            dispatch_error=get_str(data, "dispatch_error"),
        )


@dataclass(frozen=True, slots=True)
class GateDecision:
    kind: DecisionKind
    cycle: str | None
    missing: tuple[str, ...] = ()
    event: DispatchEvent | None = None

    @property
    def fired(self) -> bool:
        return self.kind == "dispatched"


class GateStore(Protocol):
    """Keyed store of per-cycle records.

    ``update`` is the only write. It applies ``change`` to the current record
    and persists the outcome as one atomic step, so notifiers running at the
    same time never lose each other's conclusions.
    """

    def load(self, cycle: str) -> Result[CycleRecord, PipelineError]: ...

    def update[T](
        self, cycle: str, change: Callable[[CycleRecord], T]
    ) -> Result[T, PipelineError]: ...

    def cycles(self) -> Result[dict[str, CycleRecord], PipelineError]: ...


class MemoryGateStore:
    def __init__(self) -> None:
        self._records: dict[str, CycleRecord] = {}
        self._lock = threading.Lock()

    def load(self, cycle: str) -> Result[CycleRecord, PipelineError]:
        with self._lock:
            stored = self._records.get(cycle)
            return Ok(stored.copy() if stored is not None else CycleRecord())

    def update[T](
        self, cycle: str, change: Callable[[CycleRecord], T]
    ) -> Result[T, PipelineError]:
        with self._lock:
            stored = self._records.get(cycle)
            # Work on a copy so a change that raises never leaks into the store.
            record = stored.copy() if stored is not None else CycleRecord()
            out = change(record)
            self._records[cycle] = record
            return Ok(out)

    def cycles(self) -> Result[dict[str, CycleRecord], PipelineError]:
        with self._lock:
            return Ok({k: v.copy() for k, v in self._records.items()})


class JsonGateStore:
    """Gate state in a JSON file, shared by notifiers on one machine.

    ``update`` holds an exclusive lock on a ``.lock`` sibling across the read,
    the change and the write, so separate processes (or separate stores over
    the same file) serialize. Writes are atomic (temp file + replace).
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @property
    def lock_path(self) -> Path:
        return self._path.with_name(f"{self._path.name}.lock")

    def _read(self) -> Result[dict[str, CycleRecord], PipelineError]:
        if not self._path.exists():
            return Ok({})
        try:
            obj: object = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            return Err(
                PipelineError(
                    kind="invalid_input",
                    message=f"unreadable gate state: {e}",
                    hint=str(self._path),
                )
            )

        data = as_str_dict(obj)
        if data is None or data.get("version") != _STATE_VERSION:
            return Err(
                PipelineError(
                    kind="invalid_input",
                    message="unsupported gate state format",
                    hint=str(self._path),
                )
            )

        out: dict[str, CycleRecord] = {}
        for cycle, raw in (get_table(data, "cycles") or {}).items():
            d = as_str_dict(raw)
            record = CycleRecord.from_json(d) if d is not None else None
            if record is None:
                return Err(
                    PipelineError(
                        kind="invalid_input",
                        message=f"invalid gate record for {cycle}",
                        hint=str(self._path),
                    )
                )
            out[cycle] = record
        return Ok(out)

    def load(self, cycle: str) -> Result[CycleRecord, PipelineError]:
        records = self._read()
        if isinstance(records, Err):
            return records
        return Ok(records.value.get(cycle) or CycleRecord())

    def _write(self, records: dict[str, CycleRecord]) -> Result[None, PipelineError]:
        payload = {
            "version": _STATE_VERSION,
            "cycles": {k: records[k].to_json() for k in sorted(records)},
        }
        try:
            atomic_write_text(self._path, json.dumps(payload, indent=2) + "\n")
        except OSError as e:
            return Err(
                PipelineError(
                    kind="invalid_input",
                    message=f"cannot write gate state: {e}",
                    hint=str(self._path),
                )
            )
        return Ok(None)

    def update[T](
        self, cycle: str, change: Callable[[CycleRecord], T]
    ) -> Result[T, PipelineError]:
        try:
            with exclusive_lock(self.lock_path):
                records = self._read()
                if isinstance(records, Err):
                    return records
                record = records.value.get(cycle) or CycleRecord()
                out = change(record)
                written = self._write({**records.value, cycle: record})
                if isinstance(written, Err):
                    return written
                return Ok(out)
        except OSError as e:
            return Err(
                PipelineError(
                    kind="invalid_input",
                    message=f"cannot lock gate state: {e}",
                    hint=str(self.lock_path),
                )
            )

    def cycles(self) -> Result[dict[str, CycleRecord], PipelineError]:
        return self._read()


class Dispatcher(Protocol):
    def send(self, event: DispatchEvent) -> Result[None, PipelineError]: ...


class GhRepositoryDispatcher:
    """Sends a ``repository_dispatch`` event through ``gh api``.

    Fire-and-forget: the response body is not consumed and failures are not
    retried.
    """

    def __init__(
        self,
        *,
        credential: Credential | None,
        workspace_root: Path,
        console: ConsoleProtocol,
        dry_run: bool = False,
    ) -> None:
        self._credential = credential
        self._workspace_root = workspace_root
        self._console = console
        self._dry_run = dry_run

    def command(self, event: DispatchEvent) -> list[str]:
        return [
            "gh",
            "api",
            "--method",
            "POST",
            f"repos/{event.repository}/dispatches",
            "-f",
            f"event_type={event.event_type}",
        ]

    def send(self, event: DispatchEvent) -> Result[None, PipelineError]:
        cmd = self.command(event)
        self._console.print(" ".join(cmd), Style.DIM)
        if self._dry_run:
            return Ok(None)
        if self._credential is None:
            return Err(
                PipelineError(
                    kind="credential_missing",
                    message="dispatch credential missing",
                    hint="Set the variable named by credentials.dispatch (default TOD_DISPATCH_TOKEN)",
                )
            )
        result = run_process(
            cmd,
            cwd=self._workspace_root,
            env=self._credential.child_env(),
            timeout=GH_TIMEOUT_SECONDS,
        )
        if isinstance(result, Err):
            e = result.error
            return Err(
                PipelineError(
                    kind=classify_gh_failure(e, default="dispatch_failed"),
                    message=f"dispatch {event.event_type} to {event.repository} failed",
                    hint=e.stderr.strip() or "Re-dispatch manually: rp gate dispatch --tag <tag>",
                )
            )
        return Ok(None)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class DispatchGate:
    def __init__(
        self,
        *,
        required: frozenset[str],
        downstream: DownstreamConfig,
        store: GateStore,
        dispatcher: Dispatcher,
        console: ConsoleProtocol,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        if not required:
            raise ValueError("dispatch gate needs at least one required family")
        self._required = required
        self._event = DispatchEvent(
            repository=downstream.repository,
            event_type=downstream.event_type,
            credential_scope="dispatch",
        )
        self._store = store
        self._dispatcher = dispatcher
        self._console = console
        self._clock = clock

    @property
    def event(self) -> DispatchEvent:
        return self._event

    def notify(self, result: PipelineRunResult) -> Result[GateDecision, PipelineError]:
        """Record one run conclusion and fire if the conjunction just became true."""
        cycle = result.cycle
        if cycle is None:
            self._console.warning(f"{result.family}: run has no release tag, not recorded")
            return Ok(GateDecision(kind="ignored", cycle=None))

        decided = self._store.update(
            cycle, lambda record: self._record(record, cycle, result.family, result.conclusion)
        )
        if isinstance(decided, Err):
            return decided

        decision = decided.value
        match decision.kind:
            case "dispatched":
                return self._send(cycle, decision)
            case "recorded":
                self._console.info(f"{cycle}: waiting for {', '.join(decision.missing)}")
            case "blocked":
                self._console.warning(f"{cycle}: {result.family} did not succeed, no dispatch")
            case "already_dispatched":
                self._console.print(f"{cycle}: already dispatched", Style.DIM)
            case "ignored":
                self._console.print(f"{cycle}: {result.family} is not a required family", Style.DIM)
        return Ok(decision)

    def _record(
        self, record: CycleRecord, cycle: str, family: str, conclusion: Conclusion
    ) -> GateDecision:
        # Runs inside the store's update, so the check and the dispatched flag
        # are written together.
        record.conclusions[family] = conclusion
        if conclusion == "failure":
            record.failed.add(family)

        missing = record.missing(self._required)
        if family not in self._required:
            return GateDecision(kind="ignored", cycle=cycle, missing=missing)
        if record.dispatched:
            return GateDecision(kind="already_dispatched", cycle=cycle)
        if conclusion != "success" or record.failed & self._required:
            return GateDecision(kind="blocked", cycle=cycle, missing=missing)
        if missing:
            return GateDecision(kind="recorded", cycle=cycle, missing=missing)

        record.dispatched = True
        record.dispatched_at = self._clock().isoformat(timespec="seconds")
        return GateDecision(kind="dispatched", cycle=cycle, event=self._event)

    def _mark_manual(self, record: CycleRecord) -> None:
        record.dispatched = True
        record.manual = True
        record.dispatched_at = self._clock().isoformat(timespec="seconds")

    def dispatch_manual(self, cycle: str | None = None) -> Result[GateDecision, PipelineError]:
        """Operator override: dispatch now, regardless of recorded conclusions."""
        if cycle is not None:
            marked = self._store.update(cycle, self._mark_manual)
            if isinstance(marked, Err):
                return marked

        self._console.info(f"manual dispatch{f' for {cycle}' if cycle else ''}")
        return self._send(cycle, GateDecision(kind="dispatched", cycle=cycle, event=self._event))

    def _send(self, cycle: str | None, decision: GateDecision) -> Result[GateDecision, PipelineError]:
        sent = self._dispatcher.send(self._event)
        if isinstance(sent, Err):
            if cycle is not None:
                self._remember_dispatch_error(cycle, sent.error.message)
            return sent

        self._console.success(
            f"dispatched {self._event.event_type} to {self._event.repository}"
            + (f" for {cycle}" if cycle else "")
        )
        return Ok(decision)

    def _remember_dispatch_error(self, cycle: str, message: str) -> None:
        def remember(record: CycleRecord) -> None:
            record.dispatch_error = message

        stored = self._store.update(cycle, remember)
        if isinstance(stored, Err):
            self._console.warning(f"{cycle}: dispatch error not recorded: {stored.error.message}")

    def pending(self) -> Result[dict[str, tuple[str, ...]], PipelineError]:
        """Open cycles and the required families they still wait for."""
        records = self._store.cycles()
        if isinstance(records, Err):
            return records
        out: dict[str, tuple[str, ...]] = {}
        for cycle, record in sorted(records.value.items()):
            if record.dispatched or record.failed & self._required:
                continue
            out[cycle] = record.missing(self._required)
        return Ok(out)
