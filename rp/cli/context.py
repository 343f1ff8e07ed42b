from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import typer

from rp.core.result import Err
from rp.output.console import ConsoleProtocol, RichConsole
from rp.output.errors import pipeline_error_exit_code, print_pipeline_error
from rp.release.config import CONFIG_FILE, ReleaseConfig, load_config, load_config_or_default

ROOT_ENV = "RP_ROOT"
CONFIG_ENV = "RP_CONFIG"


@dataclass(frozen=True, slots=True)
class CLIContext:
    root: Path
    config: ReleaseConfig
    console: ConsoleProtocol

    @property
    def manifest(self) -> Path:
        return self.root / self.config.manifest

    @property
    def gate_state(self) -> Path:
        return self.root / self.config.gate.state_file


def project_root() -> Path:
    env = os.environ.get(ROOT_ENV)
    if env:
        return Path(env)
    return Path.cwd()


def build_context() -> CLIContext:
    console = RichConsole()
    root = project_root()

    explicit = os.environ.get(CONFIG_ENV)
    if explicit:
        loaded = load_config(Path(explicit))
    else:
        loaded = load_config_or_default(root / CONFIG_FILE)
    if isinstance(loaded, Err):
        print_pipeline_error(loaded.error, console)
        raise typer.Exit(code=pipeline_error_exit_code(loaded.error))

    return CLIContext(root=root, config=loaded.value, console=console)
