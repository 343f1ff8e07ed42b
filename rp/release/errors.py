from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

PipelineErrorKind = Literal[
    "invalid_input",
    "invalid_config",
    "version_invalid",
    "tests_failed",
    "build_failed",
    "package_failed",
    "upload_failed",
    "release_missing",
    "credential_missing",
    "permission_denied",
    "dispatch_failed",
    "merge_failed",
    "gh_missing",
    "cancelled",
]


@dataclass(frozen=True, slots=True)
class PipelineError:
    """Canonical error payload shared by every pipeline step.

    It is stable across steps and can be rendered by the CLI without importing
    the step that produced it.
    """

    kind: PipelineErrorKind
    message: str
    hint: str | None = None

    def pretty(self) -> str:
        if self.hint:
            return f"{self.message} (hint: {self.hint})"
        return self.message
