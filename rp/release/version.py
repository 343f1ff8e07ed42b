"""Canonical version resolution from the Cargo manifest.

Reads the same field ``cargo get package.version`` reports and derives the
display tag (``--pretty`` form, ``v`` prefixed) used as the release key.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from rp.core.result import Err, Ok, Result
from rp.core.structured import StrDict, as_str_dict, get_str, get_table
from rp.release.errors import PipelineError
from rp.release.model import ReleaseTag

__all__ = [
    "SemVer",
    "parse_tag_ref",
    "parse_version",
    "resolve_version",
    "verify_tag_matches",
]

_VERSION_RE = re.compile(r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)$")
_TAG_RE = re.compile(r"^v(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)$")
_TAG_REF_PREFIX = "refs/tags/"


@dataclass(frozen=True, slots=True, order=True)
class SemVer:
    major: int
    minor: int
    patch: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    def to_release_tag(self) -> ReleaseTag:
        return ReleaseTag(version=str(self), tag=f"v{self}")


def parse_version(text: str) -> SemVer | None:
    m = _VERSION_RE.match(text)
    if m is None:
        return None
    return SemVer(int(m.group(1)), int(m.group(2)), int(m.group(3)))


def parse_tag_ref(ref: str) -> ReleaseTag | None:
    """Parse a pushed ref (``v2.3.1`` or ``refs/tags/v2.3.1``).

    Returns None for anything that is not a release tag, which means the push
    is not a release trigger.
    """
    name = ref.removeprefix(_TAG_REF_PREFIX)
    m = _TAG_RE.match(name)
    if m is None:
        return None
    return SemVer(int(m.group(1)), int(m.group(2)), int(m.group(3))).to_release_tag()


def _invalid(message: str, manifest: Path, hint: str | None = None) -> Err[PipelineError]:
    return Err(PipelineError(kind="version_invalid", message=message, hint=hint or str(manifest)))


def _read_manifest(manifest: Path) -> Result[StrDict, PipelineError]:
    import tomllib

    try:
        data_obj: object = tomllib.loads(manifest.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return _invalid(f"manifest not found: {manifest}", manifest)
    except (OSError, UnicodeDecodeError) as e:
        return _invalid(f"cannot read manifest: {e}", manifest)
    except tomllib.TOMLDecodeError as e:
        return _invalid(f"invalid TOML in manifest: {e}", manifest)

    data = as_str_dict(data_obj)
    if data is None:
        return _invalid("manifest root must be a table", manifest)
    return Ok(data)


def _declared_version(data: StrDict) -> str | None:
    package = get_table(data, "package")
    if package is None:
        return None

    inherited = get_table(package, "version")
    if inherited is not None:
        # version.workspace = true
        if inherited.get("workspace") is not True:
            return None
        workspace = get_table(data, "workspace") or {}
        ws_package = get_table(workspace, "package") or {}
        return get_str(ws_package, "version")

    return get_str(package, "version")


def resolve_version(manifest: Path) -> Result[ReleaseTag, PipelineError]:
    """Resolve ``(version, tag)`` from the manifest at the checked-out commit.

    Deterministic and side-effect free: the same manifest content always
    yields the same ReleaseTag.

    Returns:
        Ok(ReleaseTag) or Err(PipelineError) with kind ``version_invalid``.
    """
    parsed = _read_manifest(manifest)
    if isinstance(parsed, Err):
        return parsed

    declared = _declared_version(parsed.value)
    if declared is None:
        return _invalid("manifest declares no package.version", manifest)

    semver = parse_version(declared)
    if semver is None:
        return _invalid(
            f"package.version is not MAJOR.MINOR.PATCH: {declared!r}",
            manifest,
            hint="Release versions must look like 2.3.1",
        )
    return Ok(semver.to_release_tag())


def verify_tag_matches(resolved: ReleaseTag, pushed: ReleaseTag) -> Result[None, PipelineError]:
    """A pushed tag must name the version declared at that commit."""
    if resolved != pushed:
        return Err(
            PipelineError(
                kind="version_invalid",
                message=f"tag {pushed.tag} does not match manifest version {resolved.version}",
                hint="Bump the manifest version before tagging",
            )
        )
    return Ok(None)
