"""Error presentation utilities.

Centralized error formatting and exit code mapping for consistent UX.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rp.core.errors import ErrorCode
from rp.output.console import Style
from rp.release.errors import PipelineError

if TYPE_CHECKING:
    from rp.output.console import ConsoleProtocol

__all__ = ["pipeline_error_exit_code", "print_pipeline_error"]


def print_pipeline_error(error: PipelineError, console: ConsoleProtocol) -> None:
    console.error(error.message)
    if error.hint:
        console.print(f"hint: {error.hint}", Style.DIM)


def pipeline_error_exit_code(error: PipelineError) -> int:
    match error.kind:
        case "invalid_input":
            return int(ErrorCode.USER_ERROR)
        case "invalid_config" | "credential_missing" | "permission_denied" | "gh_missing":
            return int(ErrorCode.ENV_ERROR)
        case "tests_failed" | "build_failed" | "cancelled":
            return int(ErrorCode.BUILD_ERROR)
        case "upload_failed" | "release_missing" | "dispatch_failed" | "merge_failed":
            return int(ErrorCode.NETWORK_ERROR)
        case "version_invalid" | "package_failed":
            return int(ErrorCode.IO_ERROR)
    return int(ErrorCode.USER_ERROR)
