from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Literal

from rp.release.errors import PipelineError

Conclusion = Literal["success", "failure", "cancelled"]
BumpClass = Literal["patch", "minor", "major"]

# Narrowest first; an auto-merge target admits itself and everything before it.
BUMP_ORDER: tuple[BumpClass, ...] = ("patch", "minor", "major")


class RunState(Enum):
    """States of one pipeline run, in execution order."""

    PENDING = "pending"
    TEST_GATE = "test_gate"
    BUILDING = "building"
    PACKAGING = "packaging"
    UPLOADING = "uploading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.SUCCEEDED, RunState.FAILED, RunState.CANCELLED)

    @property
    def conclusion(self) -> Conclusion:
        match self:
            case RunState.SUCCEEDED:
                return "success"
            case RunState.CANCELLED:
                return "cancelled"
            case RunState.FAILED:
                return "failure"
            case _:
                raise AssertionError(f"state has no conclusion yet: {self}")


@dataclass(frozen=True, slots=True, order=True)
class ReleaseTag:
    """Canonical version of a release and its display tag (``2.3.1`` / ``v2.3.1``)."""

    version: str
    tag: str

    def __str__(self) -> str:
        return self.tag


@dataclass(frozen=True, slots=True)
class TargetSpec:
    family: str
    triple: str  # e.g. aarch64-unknown-linux-gnu
    arch: str  # name used in archive file names (amd64, arm64)
    runner: str  # execution environment label (ubuntu-latest, macos-latest)
    exe_suffix: str = ""

    @property
    def label(self) -> str:
        return f"{self.family}-{self.arch}"


@dataclass(frozen=True, slots=True)
class BuiltBinary:
    target: TargetSpec
    binary: bytes


@dataclass(frozen=True, slots=True)
class BuildArtifact:
    target: TargetSpec
    binary: bytes = field(repr=False)
    archive_name: str
    archive_path: Path
    checksum: str  # sha256, lowercase hex
    checksum_path: Path


@dataclass(frozen=True, slots=True)
class PipelineRunResult:
    """Terminal record of one run, consumed by the dispatch gate."""

    family: str
    tag: ReleaseTag | None  # None when the run failed before a version was known
    conclusion: Conclusion
    timestamp: str  # ISO-8601, UTC
    error: PipelineError | None = None

    @property
    def cycle(self) -> str | None:
        return self.tag.tag if self.tag is not None else None


@dataclass(frozen=True, slots=True)
class DispatchEvent:
    repository: str  # owner/name
    event_type: str
    credential_scope: str


@dataclass(frozen=True, slots=True)
class ChangeRequestFacts:
    """What the auto-merge predicate needs to know about one change request."""

    actor: str
    bump: BumpClass
    ci_conclusion: Conclusion


@dataclass(frozen=True, slots=True)
class MergeDecision:
    actor_is_bot: bool
    bump: BumpClass
    ci_conclusion: Conclusion
    approved: bool
    reasons: tuple[str, ...] = ()
