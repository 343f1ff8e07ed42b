"""Typed release configuration.

``release.toml`` is optional; without it the defaults below describe the tod
release: two OS families built by separate workflows, a Homebrew tap as the
downstream repository and Dependabot as the only auto-merged actor.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from rp.core.result import Err, Ok, Result
from rp.core.structured import (
    StrDict,
    as_str_dict,
    get_int,
    get_list,
    get_str,
    get_str_list,
    get_table,
)
from rp.release.errors import PipelineError
from rp.release.model import BUMP_ORDER, BumpClass, TargetSpec

__all__ = [
    "ARCHIVE_EXTENSIONS",
    "AutoMergeConfig",
    "CredentialsConfig",
    "DownstreamConfig",
    "FamilyConfig",
    "GateConfig",
    "ReleaseConfig",
    "default_families",
    "load_config",
    "load_config_or_default",
]

CONFIG_FILE = "release.toml"

TOOL_NAME = "tod"
MANIFEST_FILE = "Cargo.toml"
RELEASE_REPO = "alanvardy/tod"
ARCHIVE_EXTENSIONS = ("tar.gz", "zip")

DOWNSTREAM_REPO = "alanvardy/homebrew-tod"
DOWNSTREAM_EVENT = "update-homebrew"

DEPENDABOT_LOGIN = "dependabot[bot]"
AUTOMERGE_TARGET: BumpClass = "minor"

UPLOAD_TOKEN_ENV = "TOD_CONTENTS_READ_WRITE"
DISPATCH_TOKEN_ENV = "TOD_DISPATCH_TOKEN"
MERGE_TOKEN_ENV = "TOD_MERGE_TOKEN"

TEST_COMMAND = ("cargo", "nextest", "run", "--all-features")
GATE_STATE_FILE = ".rp/gate-state.json"
GATE_MARKER_NAMESPACE = "release-gate"
GATE_STORES = ("auto", "file", "github")

GateStoreKind = Literal["auto", "file", "github"]


@dataclass(frozen=True, slots=True)
class FamilyConfig:
    """One OS family: the targets one workflow builds together."""

    name: str
    workflow: str
    targets: tuple[TargetSpec, ...]


def default_families() -> tuple[FamilyConfig, ...]:
    return (
        FamilyConfig(
            name="linux",
            workflow="Linux Build & Release",
            targets=(
                TargetSpec("linux", "x86_64-unknown-linux-gnu", "amd64", "ubuntu-latest"),
                TargetSpec("linux", "aarch64-unknown-linux-gnu", "arm64", "ubuntu-24.04-arm"),
            ),
        ),
        FamilyConfig(
            name="macos",
            workflow="macOS Build & Release",
            targets=(
                TargetSpec("macos", "x86_64-apple-darwin", "amd64", "macos-13"),
                TargetSpec("macos", "aarch64-apple-darwin", "arm64", "macos-latest"),
            ),
        ),
    )


@dataclass(frozen=True, slots=True)
class GateConfig:
    """Which families the gate waits for and where it keeps its state.

    ``store`` picks the backend: ``file`` is the JSON state file, ``github``
    rebuilds each cycle from Actions run history, ``auto`` uses ``github``
    inside GitHub Actions and ``file`` elsewhere.
    """

    required: frozenset[str] = frozenset({"linux", "macos"})
    state_file: str = GATE_STATE_FILE
    store: GateStoreKind = "auto"
    marker_namespace: str = GATE_MARKER_NAMESPACE


@dataclass(frozen=True, slots=True)
class DownstreamConfig:
    repository: str = DOWNSTREAM_REPO
    event_type: str = DOWNSTREAM_EVENT


@dataclass(frozen=True, slots=True)
class AutoMergeConfig:
    bot: str = DEPENDABOT_LOGIN
    target: BumpClass = AUTOMERGE_TARGET


@dataclass(frozen=True, slots=True)
class CredentialsConfig:
    """Names of the environment variables holding each credential."""

    upload: str = UPLOAD_TOKEN_ENV
    dispatch: str = DISPATCH_TOKEN_ENV
    merge: str = MERGE_TOKEN_ENV


@dataclass(frozen=True, slots=True)
class ReleaseConfig:
    tool: str = TOOL_NAME
    manifest: str = MANIFEST_FILE
    repository: str = RELEASE_REPO
    archive_ext: str = "tar.gz"
    build_workers: int = 4
    test_command: tuple[str, ...] = TEST_COMMAND
    families: tuple[FamilyConfig, ...] = field(default_factory=default_families)
    gate: GateConfig = field(default_factory=GateConfig)
    downstream: DownstreamConfig = field(default_factory=DownstreamConfig)
    automerge: AutoMergeConfig = field(default_factory=AutoMergeConfig)
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)

    def family(self, name: str) -> FamilyConfig | None:
        for fam in self.families:
            if fam.name == name:
                return fam
        return None

    def family_for_workflow(self, workflow: str) -> FamilyConfig | None:
        for fam in self.families:
            if fam.workflow == workflow:
                return fam
        return None

    @property
    def family_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.families)


def _invalid(message: str, path: Path | None) -> Err[PipelineError]:
    return Err(
        PipelineError(
            kind="invalid_config",
            message=message,
            hint=str(path) if path is not None else None,
        )
    )


def _parse_targets(family: str, raw: list[object]) -> tuple[TargetSpec, ...] | None:
    out: list[TargetSpec] = []
    for item in raw:
        d = as_str_dict(item)
        if d is None:
            return None
        triple = get_str(d, "triple")
        arch = get_str(d, "arch")
        runner = get_str(d, "runner")
        if triple is None or arch is None or runner is None:
            return None
        suffix = get_str(d, "exe_suffix") or ""
        out.append(TargetSpec(family, triple, arch, runner, suffix))
    return tuple(out)


def _parse_families(data: Mapping[str, object], path: Path | None) -> Result[
    tuple[FamilyConfig, ...], PipelineError
]:
    raw = get_list(data, "families")
    if raw is None:
        return Ok(default_families())

    families: list[FamilyConfig] = []
    for item in raw:
        d = as_str_dict(item)
        if d is None:
            return _invalid("families entries must be tables", path)
        name = get_str(d, "name")
        workflow = get_str(d, "workflow")
        if name is None or workflow is None:
            return _invalid("family requires name and workflow", path)
        targets = _parse_targets(name, get_list(d, "targets") or [])
        if not targets:
            return _invalid(f"family '{name}' needs targets with triple, arch and runner", path)
        families.append(FamilyConfig(name=name, workflow=workflow, targets=targets))

    names = [f.name for f in families]
    if len(set(names)) != len(names):
        return _invalid("family names must be unique", path)
    workflows = [f.workflow for f in families]
    if len(set(workflows)) != len(workflows):
        return _invalid("family workflows must be unique", path)
    return Ok(tuple(families))


def config_from_dict(
    data: Mapping[str, object], *, path: Path | None = None
) -> Result[ReleaseConfig, PipelineError]:
    """Build and validate a config from parsed TOML."""
    defaults = ReleaseConfig()

    families = _parse_families(data, path)
    if isinstance(families, Err):
        return families
    family_names = {f.name for f in families.value}

    archive_ext = get_str(data, "archive_ext") or defaults.archive_ext
    if archive_ext not in ARCHIVE_EXTENSIONS:
        return _invalid(f"archive_ext must be one of {', '.join(ARCHIVE_EXTENSIONS)}", path)

    build_workers = get_int(data, "build_workers") or defaults.build_workers
    if build_workers < 1:
        return _invalid("build_workers must be >= 1", path)

    test_tbl: StrDict = get_table(data, "test_gate") or {}
    test_command = get_str_list(test_tbl, "command")
    if "command" in test_tbl and not test_command:
        return _invalid("test_gate.command must be a non-empty list of strings", path)

    gate_tbl: StrDict = get_table(data, "gate") or {}
    required = get_str_list(gate_tbl, "required")
    if "required" in gate_tbl and not required:
        return _invalid("gate.required must be a non-empty list of family names", path)
    required_set = frozenset(required) if required else frozenset(family_names)
    unknown = sorted(required_set - family_names)
    if unknown:
        return _invalid(f"gate.required names unknown families: {', '.join(unknown)}", path)
    store = get_str(gate_tbl, "store") or "auto"
    if store not in GATE_STORES:
        return _invalid("gate.store must be auto, file or github", path)

    downstream_tbl: StrDict = get_table(data, "downstream") or {}
    automerge_tbl: StrDict = get_table(data, "automerge") or {}
    target = get_str(automerge_tbl, "target") or AUTOMERGE_TARGET
    if target not in BUMP_ORDER:
        return _invalid("automerge.target must be patch, minor or major", path)
    creds_tbl: StrDict = get_table(data, "credentials") or {}

    return Ok(
        ReleaseConfig(
            tool=get_str(data, "tool") or defaults.tool,
            manifest=get_str(data, "manifest") or defaults.manifest,
            repository=get_str(data, "repository") or defaults.repository,
            archive_ext=archive_ext,
            build_workers=build_workers,
            test_command=tuple(test_command) if test_command else TEST_COMMAND,
            families=families.value,
            gate=GateConfig(
                required=required_set,
                state_file=get_str(gate_tbl, "state_file") or GATE_STATE_FILE,
                store=store,  # type: ignore[arg-type]
                marker_namespace=get_str(gate_tbl, "marker_namespace") or GATE_MARKER_NAMESPACE,
            ),
            downstream=DownstreamConfig(
                repository=get_str(downstream_tbl, "repository") or DOWNSTREAM_REPO,
                event_type=get_str(downstream_tbl, "event_type") or DOWNSTREAM_EVENT,
            ),
            automerge=AutoMergeConfig(
                bot=get_str(automerge_tbl, "bot") or DEPENDABOT_LOGIN,
                target=target,  # type: ignore[arg-type]
            ),
            credentials=CredentialsConfig(
                upload=get_str(creds_tbl, "upload") or UPLOAD_TOKEN_ENV,
                dispatch=get_str(creds_tbl, "dispatch") or DISPATCH_TOKEN_ENV,
                merge=get_str(creds_tbl, "merge") or MERGE_TOKEN_ENV,
            ),
        )
    )


def _parse_toml(path: Path) -> Result[StrDict, PipelineError]:
    import tomllib

    try:
        data_obj: object = tomllib.loads(path.read_bytes().decode("utf-8"))
    except FileNotFoundError:
        return _invalid(f"config file not found: {path}", path)
    except PermissionError:
        return _invalid(f"permission denied reading: {path}", path)
    except tomllib.TOMLDecodeError as e:
        return _invalid(f"invalid TOML syntax: {e}", path)
    except UnicodeDecodeError as e:
        return _invalid(f"error reading config: {e}", path)

    data = as_str_dict(data_obj)
    if data is None:
        return _invalid("config root must be a TOML table", path)
    return Ok(data)


def load_config(path: Path) -> Result[ReleaseConfig, PipelineError]:
    """Load and validate ``release.toml``.

    Returns:
        Ok(ReleaseConfig) on success, Err(PipelineError) with kind
        ``invalid_config`` otherwise.
    """
    parsed = _parse_toml(path)
    if isinstance(parsed, Err):
        return parsed
    return config_from_dict(parsed.value, path=path)


def load_config_or_default(path: Path) -> Result[ReleaseConfig, PipelineError]:
    """Like load_config, but a missing file yields the built-in defaults."""
    if not path.exists():
        return Ok(ReleaseConfig())
    return load_config(path)
