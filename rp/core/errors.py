"""Error codes for CLI exit status.

The numeric values are part of the CLI contract: CI steps branch on them.
- 0: Success
- 1: User error (bad input, malformed event payload)
- 2: Environment error (missing gh, missing credential, bad config)
- 3: Build error (tests or compilation failed, run cancelled)
- 4: Network error (upload, dispatch or merge call failed)
- 5: I/O error (manifest unreadable, archive could not be written)
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Exit codes for CLI commands."""

    OK = 0
    USER_ERROR = 1
    ENV_ERROR = 2
    BUILD_ERROR = 3
    NETWORK_ERROR = 4
    IO_ERROR = 5

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK
