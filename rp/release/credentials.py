"""Credentials injected through the environment.

Tokens are read from environment variables named in the config and are only
ever passed to child processes through their environment, never on a command
line and never echoed.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal

from rp.core.result import Err, Ok, Result
from rp.release.errors import PipelineError

CredentialScope = Literal["upload", "dispatch", "merge"]


@dataclass(frozen=True, slots=True)
class Credential:
    scope: CredentialScope
    env_var: str
    token: str = field(repr=False)

    def __repr__(self) -> str:
        return f"Credential(scope={self.scope!r}, env_var={self.env_var!r}, token='***')"

    def child_env(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """Environment for a gh child process authenticated with this token."""
        env = dict(os.environ if base is None else base)
        env["GH_TOKEN"] = self.token
        env.pop("GITHUB_TOKEN", None)
        return env


def load_credential(
    *,
    scope: CredentialScope,
    env_var: str,
    environ: Mapping[str, str] | None = None,
) -> Result[Credential, PipelineError]:
    source = os.environ if environ is None else environ
    token = (source.get(env_var) or "").strip()
    if not token:
        return Err(
            PipelineError(
                kind="credential_missing",
                message=f"{scope} credential missing",
                hint=f"Set {env_var} (injected by the CI secret store)",
            )
        )
    return Ok(Credential(scope=scope, env_var=env_var, token=token))
